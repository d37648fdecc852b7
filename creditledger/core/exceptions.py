from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    retriable = False

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized", code: str = "UNAUTHORIZED"):
        super().__init__(message, code=code, status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found", code: str = "NOT_FOUND", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", code: str = "CONFLICT", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", code: str = "BAD_REQUEST", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Ledger error kinds


class InvalidCredentialError(UnauthorizedError):
    def __init__(self, message: str = "Invalid credential"):
        super().__init__(message, code="INVALID_CREDENTIAL")


class InsufficientCreditsError(AppError):
    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Need {required}, have {available}",
            code="INSUFFICIENT_CREDITS",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"required": required, "available": available},
        )


class AlreadyUnlockedError(ConflictError):
    def __init__(self, series_id: str, episode_number: int):
        super().__init__(
            "Episode already unlocked",
            code="ALREADY_UNLOCKED",
            details={"series_id": series_id, "episode_number": episode_number},
        )


class AlreadyVotedError(ConflictError):
    def __init__(self, submission_id: str):
        super().__init__(
            "Already voted for this submission",
            code="ALREADY_VOTED",
            details={"submission_id": submission_id},
        )


class NoVotesRemainingError(ConflictError):
    def __init__(self, vote_type: str):
        super().__init__(f"No {vote_type} votes remaining", code="NO_VOTES_REMAINING", details={"vote_type": vote_type})


class AlreadyClaimedTodayError(ConflictError):
    def __init__(self, contest_id: str):
        super().__init__("Already claimed today", code="ALREADY_CLAIMED_TODAY", details={"contest_id": contest_id})


class AccountNotFoundError(NotFoundError):
    def __init__(self, account_id: str | None = None, email: str | None = None):
        details = {k: v for k, v in (("account_id", account_id), ("email", email)) if v}
        super().__init__("Account not found", code="ACCOUNT_NOT_FOUND", details=details)


class NoDuplicatesFoundError(NotFoundError):
    def __init__(self, email: str):
        super().__init__("No accounts found for email", code="NO_DUPLICATES_FOUND", details={"email": email})


class DuplicateExternalReferenceError(ConflictError):
    def __init__(self, external_reference: str):
        super().__init__(
            "Payment reference already applied",
            code="DUPLICATE_EXTERNAL_REFERENCE",
            details={"external_reference": external_reference},
        )


class InvalidLedgerEntryError(BadRequestError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_LEDGER_ENTRY", details=details)


class StaleReconciliationReportError(ConflictError):
    def __init__(self, details: dict[str, Any] | None = None):
        super().__init__(
            "Reconciliation report no longer matches the ledger; reconcile again",
            code="STALE_RECONCILIATION_REPORT",
            details=details,
        )


class StoreUnavailableError(AppError):
    retriable = True

    def __init__(self, message: str = "Store unavailable"):
        super().__init__(message, code="STORE_UNAVAILABLE", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class ConcurrentModificationError(ConflictError):
    retriable = True

    def __init__(self, message: str = "Concurrent modification, retry with fresh state"):
        super().__init__(message, code="CONCURRENT_MODIFICATION")


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
            "retriable": exc.retriable,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_encoder(exc.errors())},
            "retriable": False,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from creditledger.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
            "retriable": False,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
