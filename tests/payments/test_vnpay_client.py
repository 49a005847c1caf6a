import hashlib
import hmac
import json
from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit

import httpx
import pytest

from application.dtos.payments import ClientContext, GatewayStatusQuery
from core.settings import VNPaySettings
from domain.order.entity import Order, OrderItem, OrderStatus, compute_totals
from domain.payment.entity import PaymentMethod, PaymentMethodType, StandardStatus
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError
from infrastructure.external.payments.vnpay_client import VNPayClient, build_hash_data, sign


SECRET = "test-hash-secret"
NOW = datetime(2026, 10, 18, 3, 0, 0, tzinfo=timezone.utc)  # 10:00 in Ho Chi Minh City


def _order(order_id="ORD001"):
    items = (OrderItem(product_id="SKU-1", quantity=1, unit_price=Decimal("100000")),)
    return Order(
        id=order_id,
        status=OrderStatus.PENDING_PAYMENT,
        items=items,
        totals=compute_totals(items, Decimal("40000"), Decimal("0.10")),
        user_id="user-1",
    )


def _client(**config):
    cfg = VNPaySettings(tmn_code="TESTTMN1", hash_secret=SECRET, return_url="https://shop.example/return", **config)
    return VNPayClient(cfg, retry={"max": 1, "base": 0.0}, clock=lambda: NOW)


def test_hash_data_sorted_encoded_and_skips_empty_and_signature_fields():
    data = build_hash_data(
        {
            "vnp_TxnRef": "ORD001_1",
            "vnp_Amount": "15000000",
            "vnp_OrderInfo": "Thanh toan don hang",
            "vnp_BankCode": "",
            "vnp_Locale": None,
            "vnp_SecureHash": "abc",
            "vnp_SecureHashType": "HmacSHA512",
            "vnp_ReturnUrl": "https://shop.example/return?x=1",
        }
    )
    assert data == (
        "vnp_Amount=15000000"
        "&vnp_OrderInfo=Thanh+toan+don+hang"
        "&vnp_ReturnUrl=https%3A%2F%2Fshop.example%2Freturn%3Fx%3D1"
        "&vnp_TxnRef=ORD001_1"
    )


def test_sign_is_hmac_sha512_hex():
    expected = hmac.new(SECRET.encode(), b"a=1&b=2", hashlib.sha512).hexdigest()
    assert sign(SECRET, "a=1&b=2") == expected
    assert len(expected) == 128


@pytest.mark.asyncio
async def test_payment_url_carries_signed_parameters_for_credit_card():
    client = _client()
    method = PaymentMethod(id="PM-CARD", method_type=PaymentMethodType.CREDIT_CARD, user_id="user-1")

    redirect = await client.build_payment_request(_order(), method, ClientContext(client_ip="10.0.0.8"))

    parts = urlsplit(redirect.redirect_url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == client.config.pay_url
    params = dict(parse_qsl(parts.query))
    assert params["vnp_Version"] == "2.1.0"
    assert params["vnp_Command"] == "pay"
    assert params["vnp_TmnCode"] == "TESTTMN1"
    assert params["vnp_Amount"] == "15000000"
    assert params["vnp_CurrCode"] == "VND"
    assert params["vnp_BankCode"] == "INTCARD"
    assert params["vnp_OrderType"] == "other"
    assert params["vnp_Locale"] == "vn"
    assert params["vnp_ReturnUrl"] == "https://shop.example/return"
    assert params["vnp_IpAddr"] == "10.0.0.8"
    assert params["vnp_CreateDate"] == "20261018100000"
    assert params["vnp_ExpireDate"] == "20261018101500"
    assert params["vnp_TxnRef"] == f"ORD001_{int(NOW.timestamp() * 1000)}"
    assert redirect.gateway_ref == params["vnp_TxnRef"]
    assert client.verify_signature(params) is True


@pytest.mark.asyncio
async def test_domestic_card_omits_bank_code_and_honours_locale():
    client = _client()
    method = PaymentMethod(id="PM-DEBIT", method_type=PaymentMethodType.DOMESTIC_DEBIT_CARD)

    redirect = await client.build_payment_request(_order(), method, ClientContext(client_ip="1.2.3.4", locale="en"))

    params = dict(parse_qsl(urlsplit(redirect.redirect_url).query))
    assert "vnp_BankCode" not in params
    assert params["vnp_Locale"] == "en"


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_building_url():
    client = VNPayClient(VNPaySettings(tmn_code=None, hash_secret=None), clock=lambda: NOW)
    method = PaymentMethod(id="PM-CARD", method_type=PaymentMethodType.CREDIT_CARD)
    with pytest.raises(PaymentProviderError):
        await client.build_payment_request(_order(), method, ClientContext())


def _signed(**params):
    params["vnp_SecureHash"] = sign(SECRET, build_hash_data(params))
    return params


def test_signature_is_case_insensitive():
    params = _signed(vnp_TxnRef="ORD001_1", vnp_Amount="15000000", vnp_ResponseCode="00")
    params["vnp_SecureHash"] = params["vnp_SecureHash"].upper()
    assert _client().verify_signature(params) is True


def test_tampered_or_unsigned_params_fail_closed():
    client = _client()
    params = _signed(vnp_TxnRef="ORD001_1", vnp_Amount="15000000", vnp_ResponseCode="00")

    assert client.verify_signature({**params, "vnp_Amount": "14000000"}) is False
    assert client.verify_signature({k: v for k, v in params.items() if k != "vnp_SecureHash"}) is False
    assert client.verify_signature({**params, "vnp_SecureHash": "not-hex-é"}) is False


def test_empty_secret_never_verifies():
    params = _signed(vnp_TxnRef="ORD001_1", vnp_Amount="15000000")
    client = VNPayClient(VNPaySettings(tmn_code="TESTTMN1", hash_secret=""))
    assert client.verify_signature(params) is False


def test_hash_type_field_does_not_affect_signature():
    params = _signed(vnp_TxnRef="ORD001_1", vnp_Amount="15000000")
    params["vnp_SecureHashType"] = "HmacSHA512"
    assert _client().verify_signature(params) is True


@pytest.mark.parametrize(
    "code,expected",
    [
        ("00", StandardStatus.SUCCESS),
        ("07", StandardStatus.PENDING),
        ("24", StandardStatus.CANCELLED),
        ("09", StandardStatus.FAILED),
        ("10", StandardStatus.FAILED),
        ("11", StandardStatus.FAILED),
        ("12", StandardStatus.FAILED),
        ("13", StandardStatus.FAILED),
        ("51", StandardStatus.FAILED),
        ("65", StandardStatus.FAILED),
        ("75", StandardStatus.FAILED),
        ("79", StandardStatus.FAILED),
        ("99", StandardStatus.FAILED),
        ("42", StandardStatus.FAILED),
        ("", StandardStatus.FAILED),
        (None, StandardStatus.FAILED),
    ],
)
def test_response_code_mapping(code, expected):
    assert _client().map_response_code(code) is expected


def test_factory_builds_vnpay_and_rejects_unknown_providers():
    assert isinstance(get_payment_gateway("vnpay"), VNPayClient)
    with pytest.raises(ValueError):
        get_payment_gateway("stripe")


@pytest.mark.asyncio
async def test_querydr_posts_signed_payload_and_maps_status():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["payload"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "vnp_ResponseCode": "00",
                "vnp_Message": "QueryDR Success",
                "vnp_TxnRef": captured["payload"]["vnp_TxnRef"],
                "vnp_Amount": "15000000",
                "vnp_TransactionNo": "14123456",
                "vnp_TransactionStatus": "00",
            },
        )

    client = _client()
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    ref = f"ORD001_{int(NOW.timestamp() * 1000)}"

    result = await client.query_transaction(GatewayStatusQuery(gateway_ref=ref, client_ip="10.0.0.8"))
    await client.aclose()

    payload = captured["payload"]
    assert captured["url"] == client.config.api_url
    assert payload["vnp_Command"] == "querydr"
    assert payload["vnp_TxnRef"] == ref
    assert payload["vnp_TransactionDate"] == "20261018100000"
    assert payload["vnp_IpAddr"] == "10.0.0.8"
    assert payload["vnp_SecureHash"] == sign(SECRET, build_hash_data(payload))
    assert result.outcome is StandardStatus.SUCCESS
    assert result.amount_minor == 15000000
    assert result.external_transaction_id == "14123456"


@pytest.mark.asyncio
async def test_querydr_error_response_raises_provider_error():
    def handler(request):
        return httpx.Response(200, json={"vnp_ResponseCode": "91", "vnp_Message": "Transaction not found"})

    client = _client()
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    with pytest.raises(PaymentProviderError) as ei:
        await client.query_transaction(GatewayStatusQuery(gateway_ref="ORD001_1760756400000"))
    assert ei.value.details["provider_code"] == "91"


@pytest.mark.asyncio
async def test_querydr_transport_errors_are_retried_then_reported_recoverable():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = _client()
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    with pytest.raises(PaymentRecoverableError):
        await client.query_transaction(GatewayStatusQuery(gateway_ref="ORD001_1760756400000"))
    assert len(calls) == 2
