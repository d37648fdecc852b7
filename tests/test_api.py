import json

import pytest

from creditledger.core.config import get_settings
from creditledger.core.security import sign_payment_webhook

pytestmark = pytest.mark.asyncio

ADMIN = {"sub": "admin-1", "email": "admin@example.com"}


async def pay(client, account_id: str, ref: str, package_id: str = "popular"):
    payload = json.dumps(
        {
            "type": "payment.completed",
            "data": {"account_id": account_id, "package_id": package_id, "credits": 0, "external_reference": ref},
        }
    ).encode()
    signature = sign_payment_webhook(payload, get_settings().payment_webhook_secret)
    return await client.post(
        "/v1/payments/webhook",
        content=payload,
        headers={"X-Payment-Signature": signature, "Content-Type": "application/json"},
    )


async def test_me_opens_account_with_welcome_bonus(client, auth_headers):
    r = await client.get("/v1/auth/me", headers=auth_headers("u1", name="Reader"))
    assert r.status_code == 200
    data = r.json()
    assert data["id"] == "u1"
    assert data["display_name"] == "Reader"
    assert data["balance"] == 100
    assert data["role"] == "user"


async def test_missing_credential_is_401(client):
    r = await client.get("/v1/credits/balance")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "INVALID_CREDENTIAL"
    assert r.json()["error"]["retriable"] is False


async def test_purchase_and_unlock_flow(client, auth_headers):
    headers = auth_headers("u1")
    await client.get("/v1/auth/me", headers=headers)

    r = await pay(client, "u1", "pay-1")
    assert r.status_code == 200
    assert r.json()["status"] == "applied"
    r = await pay(client, "u1", "pay-1")
    assert r.json()["status"] == "duplicate"

    r = await client.get("/v1/credits/balance", headers=headers)
    assert r.json() == {"balance": 200}

    body = {"series_id": "series-1", "episode_number": 4, "cost": 30}
    r = await client.post("/v1/entitlements/unlock", json=body, headers=headers)
    assert r.status_code == 200
    assert r.json()["balance"] == 170
    assert r.json()["already_unlocked"] is False

    r = await client.post("/v1/entitlements/unlock", json=body, headers=headers)
    assert r.status_code == 200
    assert r.json()["balance"] == 170
    assert r.json()["already_unlocked"] is True

    r = await client.get("/v1/entitlements/series-1/4", headers=headers)
    assert r.json()["unlocked"] is True
    r = await client.get("/v1/entitlements", headers=headers)
    assert [e["episode_number"] for e in r.json()["entitlements"]] == [4]


async def test_insufficient_credits_is_402(client, auth_headers):
    headers = auth_headers("u1")
    r = await client.post(
        "/v1/entitlements/unlock",
        json={"series_id": "series-1", "episode_number": 1, "cost": 500},
        headers=headers,
    )
    assert r.status_code == 402
    error = r.json()["error"]
    assert error["code"] == "INSUFFICIENT_CREDITS"
    assert error["details"] == {"required": 500, "available": 100}


async def test_invalid_body_is_422(client, auth_headers):
    r = await client.post("/v1/entitlements/unlock", json={"series_id": "s"}, headers=auth_headers("u1"))
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_bad_webhook_signature_is_400(client):
    r = await client.post("/v1/payments/webhook", content=b"{}", headers={"X-Payment-Signature": "nope"})
    assert r.status_code == 400


async def test_ledger_pagination(client, auth_headers):
    headers = auth_headers("u1")
    for n in range(4):
        await client.post(
            "/v1/entitlements/unlock",
            json={"series_id": "s", "episode_number": n, "cost": 1},
            headers=headers,
        )

    r = await client.get("/v1/credits/ledger", params={"limit": 3}, headers=headers)
    page = r.json()
    assert [e["sequence"] for e in page["entries"]] == [5, 4, 3]
    assert page["next_cursor"] == 3

    r = await client.get("/v1/credits/ledger", params={"limit": 3, "cursor": page["next_cursor"]}, headers=headers)
    page = r.json()
    assert [e["sequence"] for e in page["entries"]] == [2, 1]
    assert page["entries"][-1]["metadata"] == {"kind": "bonus", "reason": "welcome"}
    assert page["next_cursor"] is None


async def test_packages_are_listed(client):
    r = await client.get("/v1/credits/packages")
    assert [p["id"] for p in r.json()["packages"]] == ["starter", "popular", "premium"]
    r = await client.get("/v1/contests/vote-packages")
    assert r.json()["weights"] == {"free": 1, "premium": 3, "super": 10}


async def test_contest_endpoints(client, auth_headers):
    headers = auth_headers("u1")
    r = await client.post("/v1/contests/c1/vote-packages", json={"package_type": "basic"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["balance"] == 95

    r = await client.post("/v1/contests/c1/votes", json={"submission_id": "s1", "vote_type": "premium"}, headers=headers)
    assert r.status_code == 200
    r = await client.post("/v1/contests/c1/votes", json={"submission_id": "s1", "vote_type": "premium"}, headers=headers)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "ALREADY_VOTED"

    r = await client.post("/v1/contests/c1/daily-claim", headers=headers)
    assert r.json()["votes_added"] == 1
    r = await client.post("/v1/contests/c1/daily-claim", headers=headers)
    assert r.json()["error"]["code"] == "ALREADY_CLAIMED_TODAY"

    r = await client.get("/v1/contests/c1/activity", headers=headers)
    assert r.json()["votes_remaining"] == {"free": 1, "premium": 2, "super": 0}
    r = await client.get("/v1/contests/c1/leaderboard")
    assert r.json()["submissions"][0]["total"] == 3


async def test_admin_routes_require_admin(client, auth_headers):
    r = await client.get("/v1/admin/duplicates", headers=auth_headers("u1"))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "FORBIDDEN"


async def test_admin_reconcile_and_repair(client, auth_headers, backend):
    admin = auth_headers(**ADMIN)
    await client.get("/v1/auth/me", headers=auth_headers("u1"))
    backend.accounts["u1"].balance = 130

    r = await client.get("/v1/admin/accounts/u1/reconcile", headers=admin)
    assert r.status_code == 200
    report = r.json()
    assert report["discrepancy"] == 30
    assert report["is_consistent"] is False

    r = await client.post("/v1/admin/accounts/u1/repair", json={"report": report}, headers=admin)
    assert r.status_code == 200
    assert r.json()["applied"] is True

    r = await client.post("/v1/admin/accounts/u1/repair", json={"report": report}, headers=admin)
    assert r.json()["applied"] is False

    r = await client.get("/v1/admin/audit", params={"entity_id": "u1"}, headers=admin)
    assert [e["event_type"] for e in r.json()["events"]] == ["account_repaired"]


async def test_admin_grant_adjust_and_merge(client, auth_headers):
    admin = auth_headers(**ADMIN)
    await client.get("/v1/auth/me", headers=auth_headers("a", email="dup@example.com"))
    await client.get("/v1/auth/me", headers=auth_headers("b", email="dup@example.com"))

    r = await client.post("/v1/admin/credits/grant", json={"account_id": "a", "credits": 50}, headers=admin)
    assert r.status_code == 200
    assert r.json()["balance"] == 150

    r = await client.post("/v1/admin/accounts/b/adjust", json={"amount": -200, "reason": "chargeback"}, headers=admin)
    assert r.status_code == 402

    r = await client.get("/v1/admin/duplicates", headers=admin)
    assert r.json()["duplicates"] == [{"email": "dup@example.com", "account_ids": ["a", "b"]}]

    r = await client.post("/v1/admin/duplicates/merge", json={"email": "dup@example.com"}, headers=admin)
    assert r.status_code == 200
    assert r.json()["primary_account_id"] == "a"
    assert r.json()["balance"] == 150

    r = await client.get("/v1/admin/accounts/a/ledger", headers=admin)
    assert r.json()["entries"][0]["metadata"]["source"] == "merge"


async def test_merged_account_keeps_signing_in_and_receiving_payments(client, auth_headers):
    admin = auth_headers(**ADMIN)
    await client.get("/v1/auth/me", headers=auth_headers("a", email="dup@example.com"))
    await client.get("/v1/auth/me", headers=auth_headers("b", email="dup@example.com"))
    r = await client.post("/v1/admin/duplicates/merge", json={"email": "dup@example.com"}, headers=admin)
    merged_id = r.json()["merged_account_ids"][0]
    primary_id = r.json()["primary_account_id"]

    r = await client.get("/v1/auth/me", headers=auth_headers(merged_id, email="dup@example.com"))
    assert r.status_code == 200
    assert r.json()["id"] == primary_id
    assert r.json()["balance"] == 100

    r = await pay(client, merged_id, "pay-merged")
    assert r.status_code == 200
    assert r.json()["status"] == "applied"

    r = await client.get("/v1/credits/balance", headers=auth_headers(merged_id, email="dup@example.com"))
    assert r.json() == {"balance": 200}
