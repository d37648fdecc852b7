from fastapi import APIRouter, Header, Request

from creditledger.services import payments as payments_service

router = APIRouter()


@router.post("/webhook")
async def payment_webhook(request: Request, x_payment_signature: str = Header(..., alias="X-Payment-Signature")):
    """Payment provider webhook: payment.completed -> apply credits (idempotent on external_reference)."""
    body = await request.body()
    return await payments_service.handle_webhook(body, x_payment_signature)
