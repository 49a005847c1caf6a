from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from api.dependencies import get_notifier, get_payment_gateway, get_uow_factory
from core.settings import payment_settings
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository
from main import app


CHECKOUT = {
    "user_id": "user-1",
    "items": [{"product_id": "SKU-AODAI-01", "product_title": "Ao dai lua", "quantity": 1, "unit_price": "100000"}],
}
DELIVERY = {
    "delivery_info": {
        "recipient_name": "Nguyen Van A",
        "phone": "0912345678",
        "email": "a.nguyen@example.com",
        "address": "12 Hang Bai, Hoan Kiem",
        "province_city": "Hanoi",
    },
    "delivery_fee": "40000",
}


@pytest_asyncio.fixture
async def client(uow_factory, gateway, notifier, payment_methods):
    app.dependency_overrides[get_uow_factory] = lambda: uow_factory
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _checkout(client) -> str:
    resp = await client.post("/api/v1/orders", json=CHECKOUT)
    assert resp.status_code == 201
    order = resp.json()["data"]
    assert order["status"] == "PENDING_DELIVERY_INFO"
    return order["id"]


@pytest.mark.asyncio
async def test_checkout_to_approved_over_http(client, signed_ipn):
    order_id = await _checkout(client)

    resp = await client.put(f"/api/v1/orders/{order_id}/delivery-info", json=DELIVERY)
    assert resp.status_code == 200
    order = resp.json()["data"]
    assert order["status"] == "PENDING_PAYMENT"
    assert Decimal(str(order["totals"]["total"])) == Decimal("150000")

    resp = await client.get(f"/api/v1/orders/{order_id}/payment-readiness")
    assert resp.json()["data"] == {"order_id": order_id, "ready": True}

    resp = await client.post("/api/v1/payments", json={"order_id": order_id, "payment_method_id": "PM-CARD"})
    assert resp.status_code == 200
    body = resp.json()["data"]
    assert body["redirect_url"].startswith(payment_settings.vnpay.pay_url)
    assert body["transaction"]["status"] == "PENDING"
    ref = body["transaction"]["gateway_ref"]

    resp = await client.get("/api/v1/payments/vnpay/ipn", params=signed_ipn(ref, 15000000, "00"))
    assert resp.status_code == 200
    assert resp.json() == {"RspCode": "00", "Message": "Confirm Success"}

    resp = await client.get(f"/api/v1/orders/{order_id}")
    assert resp.json()["data"]["status"] == "APPROVED"

    resp = await client.get("/api/v1/payments/vnpay/return", params=signed_ipn(ref, 15000000, "00"))
    result = resp.json()["data"]
    assert result["outcome"] == "SUCCESS"
    assert result["reconciled"] is True

    resp = await client.get(f"/api/v1/orders/{order_id}/status-history")
    assert [r["to_status"] for r in resp.json()["data"]] == ["PENDING_PAYMENT", "PENDING_PROCESSING", "APPROVED"]


@pytest.mark.asyncio
async def test_ipn_accepts_form_post(client, create_checkout, start_payment, signed_ipn):
    await create_checkout("ORD001")
    txn = await start_payment("ORD001")

    resp = await client.post("/api/v1/payments/vnpay/ipn", data=signed_ipn(txn.gateway_ref, 15000000, "24"))

    assert resp.json() == {"RspCode": "00", "Message": "Confirm Success"}
    resp = await client.get(f"/api/v1/payments/transactions/{txn.id}")
    assert resp.json()["data"]["status"] == "FAILED"


@pytest.mark.asyncio
async def test_ipn_from_unlisted_address_is_refused(client, create_checkout, start_payment, signed_ipn, monkeypatch):
    await create_checkout("ORD001")
    txn = await start_payment("ORD001")
    monkeypatch.setattr(payment_settings.ipn, "ip_allowlist", ["113.160.92.0/24"])

    resp = await client.get("/api/v1/payments/vnpay/ipn", params=signed_ipn(txn.gateway_ref, 15000000, "00"))

    assert resp.json() == {"RspCode": "97", "Message": "Invalid signature"}
    resp = await client.get("/api/v1/payments/orders/ORD001/transactions")
    assert [t["status"] for t in resp.json()["data"]] == ["PENDING"]


@pytest.mark.asyncio
async def test_unknown_order_is_404_with_business_code(client):
    resp = await client.get("/api/v1/orders/ORD404")

    assert resp.status_code == 404
    body = resp.json()
    assert body["code"] == 20101
    assert body["error"]["type"]


@pytest.mark.asyncio
async def test_illegal_transition_is_409(client):
    order_id = await _checkout(client)

    resp = await client.post(f"/api/v1/orders/{order_id}/ship")

    assert resp.status_code == 409
    assert resp.json()["code"] == 20110


@pytest.mark.asyncio
async def test_payment_validation_failure_names_the_rule(client):
    order_id = await _checkout(client)

    resp = await client.get(f"/api/v1/orders/{order_id}/payment-validation")

    assert resp.status_code == 422
    assert resp.json()["error"]["message_key"]


@pytest.mark.asyncio
async def test_request_body_validation_is_422(client):
    resp = await client.post("/api/v1/orders", json={"user_id": "user-1", "items": []})

    assert resp.status_code == 422
    assert resp.json()["error"]["message_key"] == "validation.failed"


@pytest.mark.asyncio
async def test_storage_failure_is_503_without_sql_details(client, monkeypatch):
    async def failing_get(self, order_id):
        raise OperationalError("SELECT orders", {}, Exception("connection refused"))

    monkeypatch.setattr(SQLAlchemyOrderRepository, "get_by_id", failing_get)

    resp = await client.get("/api/v1/orders/ORD001")

    assert resp.status_code == 503
    body = resp.json()
    assert body["code"] == 40001
    assert "SELECT" not in resp.text
