import asyncio
import base64
import hashlib
import hmac
import json

import httpx
import pytest
from sqlalchemy.future import select

from config import settings
from models.credit_transaction import CreditTransaction
from services import credits
from services.payments import build_external_id, verify_signature


USER_ID = "user-comprador"
USER_EMAIL = "comprador@example.com"
EXTERNAL_ID = f"{USER_ID}_pkg-100_1760875200000"


def _charge_data(status="PAID", metadata=None):
    return {
        "id": "pix_char_123",
        "amount": 5000,
        "status": status,
        "brCode": "00020101021226950014br.gov.bcb.pix",
        "brCodeBase64": "data:image/png;base64,iVBORw0KGgo=",
        "expiresAt": "2026-10-19T13:00:00.000Z",
        "metadata": metadata
        if metadata is not None
        else {
            "userId": USER_ID,
            "packageId": "pkg-100",
            "externalId": EXTERNAL_ID,
            "credits": 100,
            "bonusCredits": 10,
        },
    }


def _abacatepay(status="PAID", metadata=None):
    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/pixQrCode/create":
            return httpx.Response(200, json={"data": _charge_data(status="PENDING"), "error": None})
        if request.url.path == "/v1/pixQrCode/check":
            return httpx.Response(200, json={"data": _charge_data(status=status, metadata=metadata), "error": None})
        return httpx.Response(404, json={"error": "not found"})

    return _handler


def _webhook_body(event="billing.paid", **charge_overrides):
    charge = {
        "id": "pix_char_123",
        "amount": 5000,
        "status": "PAID",
        "metadata": {"externalId": EXTERNAL_ID, "packageId": "pkg-100", "userId": USER_ID},
        "customer": {"metadata": {"email": USER_EMAIL}},
    }
    charge.update(charge_overrides)
    return json.dumps({"event": event, "data": {"pixQrCode": charge}}).encode("utf-8")


def _sign(body: bytes) -> str:
    digest = hmac.new(settings.ABACATEPAY_PUBLIC_KEY.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


async def _ledger(session_maker):
    async with session_maker() as session:
        balance = await credits.get_balance(USER_ID, session)
        entries = (
            await session.execute(select(CreditTransaction).where(CreditTransaction.user_id == USER_ID))
        ).scalars().all()
    return balance, sorted((entry.type, entry.amount, entry.reference_id) for entry in entries)


def test_external_id_embeds_user_package_and_timestamp():
    assert build_external_id("u1", "p1", now_ms=1700000000000) == "u1_p1_1700000000000"
    assert build_external_id("u1", "p1", now_ms=1) != build_external_id("u1", "p1", now_ms=2)


def test_signature_verification_uses_raw_body():
    body = b'{"event":"billing.paid"}'
    assert verify_signature(body, _sign(body)) is True
    assert verify_signature(body + b" ", _sign(body)) is False


@pytest.mark.asyncio
async def test_checkout_creates_pix_charge(api_client, upstream, provider_keys, auth_headers, credit_package):
    upstream.handler = _abacatepay()

    response = await api_client.post("/billing/checkout", json={"packageId": "pkg-100"}, headers=auth_headers)

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["pixId"] == "pix_char_123"
    assert payload["brCode"].startswith("000201")
    assert payload["amount"] == 50.0
    assert payload["packageName"] == "Starter"
    assert payload["totalCredits"] == 110

    sent = json.loads(upstream.calls[0].content)
    assert upstream.calls[0].headers["Authorization"] == f"Bearer {settings.ABACATEPAY_API_KEY}"
    assert sent["amount"] == 5000
    assert sent["customer"] == {"name": "Maria Compradora", "cellphone": "11999999999", "email": USER_EMAIL}
    assert sent["metadata"]["userId"] == USER_ID
    assert sent["metadata"]["packageId"] == "pkg-100"
    assert sent["metadata"]["externalId"].startswith(f"{USER_ID}_pkg-100_")
    assert (sent["metadata"]["credits"], sent["metadata"]["bonusCredits"]) == (100, 10)


@pytest.mark.asyncio
async def test_checkout_unknown_package_is_not_found(api_client, upstream, provider_keys, auth_headers):
    response = await api_client.post("/billing/checkout", json={"packageId": "missing"}, headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["error"] == "Pacote não encontrado"
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_poll_pending_charge_does_not_touch_ledger(api_client, upstream, provider_keys, auth_headers, session_maker, credit_package):
    upstream.handler = _abacatepay(status="PENDING")

    response = await api_client.post("/billing/pix-status", json={"pixId": "pix_char_123"}, headers=auth_headers)

    assert response.json() == {"success": True, "status": "PENDING", "isPaid": False}
    assert upstream.calls[0].url.params["id"] == "pix_char_123"
    assert await _ledger(session_maker) == (0, [])


@pytest.mark.asyncio
async def test_paid_poll_settles_purchase_and_bonus_once(api_client, upstream, provider_keys, auth_headers, session_maker, credit_package):
    upstream.handler = _abacatepay(status="PAID")

    first = await api_client.post("/billing/pix-status", json={"pixId": "pix_char_123"}, headers=auth_headers)
    second = await api_client.post("/billing/pix-status", json={"pixId": "pix_char_123"}, headers=auth_headers)

    assert first.json() == {"success": True, "status": "PAID", "isPaid": True}
    assert second.json()["isPaid"] is True
    balance, entries = await _ledger(session_maker)
    assert balance == 110
    assert entries == [("bonus", 10, f"{EXTERNAL_ID}_bonus"), ("purchase", 100, EXTERNAL_ID)]


@pytest.mark.asyncio
async def test_paid_poll_without_metadata_reports_status_only(api_client, upstream, provider_keys, auth_headers, session_maker):
    upstream.handler = _abacatepay(status="PAID", metadata={})

    response = await api_client.post("/billing/pix-status", json={"pixId": "pix_char_123"}, headers=auth_headers)

    assert response.json()["isPaid"] is True
    assert await _ledger(session_maker) == (0, [])


@pytest.mark.asyncio
async def test_poll_credits_the_polling_user_when_metadata_user_differs(
    api_client, upstream, provider_keys, auth_headers, session_maker, credit_package
):
    metadata = {"userId": "someone-else", "packageId": "pkg-100", "externalId": "other_pkg-100_1"}
    upstream.handler = _abacatepay(status="PAID", metadata=metadata)

    await api_client.post("/billing/pix-status", json={"pixId": "pix_char_123"}, headers=auth_headers)

    balance, entries = await _ledger(session_maker)
    assert balance == 110
    assert ("purchase", 100, "other_pkg-100_1") in entries


@pytest.mark.asyncio
async def test_webhook_settles_by_payer_email(api_client, provider_keys, session_maker, credit_package):
    body = _webhook_body()

    response = await api_client.post(
        "/webhooks/abacatepay",
        params={"webhookSecret": "webhook-secret"},
        content=body,
        headers={"X-Webhook-Signature": _sign(body), "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": True, "alreadyProcessed": False}
    balance, entries = await _ledger(session_maker)
    assert balance == 110
    assert entries == [("bonus", 10, f"{EXTERNAL_ID}_bonus"), ("purchase", 100, EXTERNAL_ID)]


@pytest.mark.asyncio
async def test_webhook_billing_shape_falls_back_to_product_and_charge_id(api_client, provider_keys, session_maker, credit_package):
    body = json.dumps(
        {
            "event": "billing.paid",
            "data": {
                "billing": {
                    "id": "bill_abc",
                    "products": [{"externalId": "pkg-100", "quantity": 1}],
                    "customer": {"email": USER_EMAIL.upper()},
                }
            },
        }
    ).encode("utf-8")

    response = await api_client.post("/webhooks/abacatepay?webhookSecret=webhook-secret", content=body)

    assert response.json()["processed"] is True
    balance, entries = await _ledger(session_maker)
    assert balance == 110
    assert ("purchase", 100, "bill_abc") in entries


@pytest.mark.asyncio
async def test_webhook_with_tampered_body_is_rejected(api_client, provider_keys, session_maker, credit_package):
    original = _webhook_body()
    tampered = original.replace(b"5000", b"9000")

    response = await api_client.post(
        "/webhooks/abacatepay",
        params={"webhookSecret": "webhook-secret"},
        content=tampered,
        headers={"X-Webhook-Signature": _sign(original)},
    )

    assert response.status_code == 401
    assert "error" in response.json()
    assert await _ledger(session_maker) == (0, [])


@pytest.mark.asyncio
@pytest.mark.parametrize("secret", [None, "wrong-secret"])
async def test_webhook_requires_shared_secret(api_client, provider_keys, session_maker, credit_package, secret):
    params = {"webhookSecret": secret} if secret else {}

    response = await api_client.post("/webhooks/abacatepay", params=params, content=_webhook_body())

    assert response.status_code == 401
    assert await _ledger(session_maker) == (0, [])


@pytest.mark.asyncio
async def test_webhook_is_rejected_when_secret_not_configured(api_client, provider_keys, session_maker, monkeypatch):
    monkeypatch.setattr(settings, "ABACATEPAY_WEBHOOK_SECRET", "")

    response = await api_client.post("/webhooks/abacatepay", params={"webhookSecret": ""}, content=_webhook_body())

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_ignores_other_events(api_client, provider_keys, session_maker, credit_package):
    response = await api_client.post(
        "/webhooks/abacatepay",
        params={"webhookSecret": "webhook-secret"},
        content=_webhook_body(event="billing.created"),
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": False}
    assert await _ledger(session_maker) == (0, [])


@pytest.mark.asyncio
async def test_webhook_unknown_payer_is_terminal(api_client, provider_keys, session_maker, credit_package):
    body = _webhook_body(customer={"metadata": {"email": "desconhecido@example.com"}})

    response = await api_client.post("/webhooks/abacatepay", params={"webhookSecret": "webhook-secret"}, content=body)

    assert response.status_code == 400
    assert response.json()["error"] == "Usuário não encontrado"
    assert await _ledger(session_maker) == (0, [])


@pytest.mark.asyncio
async def test_webhook_malformed_payload(api_client, provider_keys):
    response = await api_client.post(
        "/webhooks/abacatepay",
        params={"webhookSecret": "webhook-secret"},
        content=b"not-json",
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_poll_and_webhook_racing_credit_the_package_once(
    api_client, upstream, provider_keys, auth_headers, session_maker, credit_package
):
    upstream.handler = _abacatepay(status="PAID")
    body = _webhook_body()

    poll, webhook = await asyncio.gather(
        api_client.post("/billing/pix-status", json={"pixId": "pix_char_123"}, headers=auth_headers),
        api_client.post(
            "/webhooks/abacatepay",
            params={"webhookSecret": "webhook-secret"},
            content=body,
            headers={"X-Webhook-Signature": _sign(body)},
        ),
    )

    assert poll.status_code == 200
    assert webhook.status_code == 200
    balance, entries = await _ledger(session_maker)
    assert balance == 110
    assert entries == [("bonus", 10, f"{EXTERNAL_ID}_bonus"), ("purchase", 100, EXTERNAL_ID)]


@pytest.mark.asyncio
async def test_webhook_after_poll_is_already_processed(api_client, upstream, provider_keys, auth_headers, session_maker, credit_package):
    upstream.handler = _abacatepay(status="PAID")
    await api_client.post("/billing/pix-status", json={"pixId": "pix_char_123"}, headers=auth_headers)

    response = await api_client.post(
        "/webhooks/abacatepay",
        params={"webhookSecret": "webhook-secret"},
        content=_webhook_body(),
    )

    assert response.json()["alreadyProcessed"] is True
    assert (await _ledger(session_maker))[0] == 110
