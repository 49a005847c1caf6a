"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VNPAY__TMN_CODE", "TESTTMN1")
os.environ.setdefault("VNPAY__HASH_SECRET", "test-hash-secret")

import asyncio
import functools
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

from application.dto import OrderCreateDTO, OrderItemInputDTO
from application.dtos.payments import ClientContext, GatewayStatusQuery, GatewayStatusResult, PaymentRedirect
from application.services.order_service import OrderApplicationService
from application.services.order_validation_service import OrderValidationService
from application.services.payment_service import PaymentService
from core.settings import VNPaySettings
from domain.order.entity import DeliveryInfo
from domain.payment.entity import StandardStatus
from domain.payment.reference import build_gateway_ref
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.external.payments.vnpay_client import VNPayClient, build_hash_data, sign
from infrastructure.models import PaymentMethodModel
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


HASH_SECRET = "test-hash-secret"
VAT_RATE = Decimal("0.10")
RUSH_CITIES = ("hanoi", "ho chi minh city")

HANOI_DELIVERY = DeliveryInfo(
    recipient_name="Nguyen Van A",
    phone="0912345678",
    address="12 Hang Bai, Hoan Kiem",
    province_city="Hanoi",
    email="a.nguyen@example.com",
)


class RecordingNotifier:
    """Collects notifier calls instead of enqueueing Celery tasks."""

    def __init__(self):
        self.payments = []
        self.order_events = []

    def payment_outcome(self, event):
        self.payments.append(event)

    def order_status_changed(self, event):
        self.order_events.append(event)


class StubGateway:
    provider = "stub"

    def __init__(self, *, error: Optional[Exception] = None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.requests = []
        self.queries = []

    async def build_payment_request(self, order, method, context: ClientContext) -> PaymentRedirect:
        self.requests.append((order, method, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        ref = build_gateway_ref(order.id)
        return PaymentRedirect(redirect_url=f"https://pay.example/{ref}", gateway_ref=ref)

    def verify_signature(self, params) -> bool:
        return params.get("vnp_SecureHash") == "valid"

    def map_response_code(self, code):
        return StandardStatus.SUCCESS if code == "00" else StandardStatus.FAILED

    async def query_transaction(self, query: GatewayStatusQuery) -> GatewayStatusResult:
        self.queries.append(query)
        return GatewayStatusResult(
            gateway_ref=query.gateway_ref,
            response_code="00",
            transaction_status_code="00",
            outcome=StandardStatus.SUCCESS,
        )


@pytest.fixture
def vnpay_config():
    return VNPaySettings(
        tmn_code="TESTTMN1",
        hash_secret=HASH_SECRET,
        return_url="https://shop.example/payments/return",
    )


@pytest.fixture
def gateway(vnpay_config):
    return VNPayClient(vnpay_config, retry={"max": 0, "base": 0.0})


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def uow_factory(session_factory):
    return functools.partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def order_service(uow_factory, notifier):
    return OrderApplicationService(uow_factory, notifier, vat_rate=VAT_RATE, rush_cities=RUSH_CITIES)


@pytest.fixture
def validation_service(uow_factory):
    return OrderValidationService(uow_factory, vat_rate=VAT_RATE)


@pytest_asyncio.fixture
async def payment_methods(session_factory):
    async with session_factory() as session:
        session.add_all(
            [
                PaymentMethodModel(id="PM-CARD", method_type="CREDIT_CARD", user_id="user-1"),
                PaymentMethodModel(id="PM-DEBIT", method_type="DOMESTIC_DEBIT_CARD", user_id=None),
                PaymentMethodModel(id="PM-FOREIGN", method_type="CREDIT_CARD", user_id="user-2"),
            ]
        )
        await session.commit()
    return ["PM-CARD", "PM-DEBIT", "PM-FOREIGN"]


@pytest.fixture
def create_checkout(order_service):
    """ORD001-style checkout: 100000 x1, VAT 10%, delivery fee 40000 -> total 150000."""

    async def _create(order_id: str = "ORD001", *, with_delivery: bool = True, user_id: str = "user-1"):
        await order_service.create_order(
            OrderCreateDTO(
                user_id=user_id,
                items=[
                    OrderItemInputDTO(
                        product_id="SKU-AODAI-01",
                        product_title="Ao dai lua",
                        quantity=1,
                        unit_price=Decimal("100000"),
                    )
                ],
            ),
            order_id=order_id,
        )
        if with_delivery:
            return await order_service.save_delivery_info(order_id, HANOI_DELIVERY, Decimal("40000"))
        return await order_service.get_order(order_id)

    return _create


@pytest.fixture
def start_payment(uow_factory, gateway, notifier, validation_service, payment_methods):
    """Validate and initiate against the real VNPay client; leaves a PENDING transaction."""

    async def _start(order_id: str = "ORD001", method_id: str = "PM-CARD"):
        order = await validation_service.validate_for_payment(order_id)
        service = PaymentService(uow_factory, gateway, notifier)
        txn, _ = await service.initiate_payment(order, method_id, ClientContext(client_ip="10.0.0.8"))
        return txn

    return _start


@pytest.fixture
def signed_ipn():
    """Build gateway callback parameters signed with the test hash secret."""

    def _build(txn_ref: str, amount_minor, response_code: str = "00", **overrides):
        params = {
            "vnp_TmnCode": "TESTTMN1",
            "vnp_Amount": str(amount_minor),
            "vnp_BankCode": "NCB",
            "vnp_BankTranNo": "VNP14123456",
            "vnp_CardType": "ATM",
            "vnp_OrderInfo": "Thanh toan don hang ORD001",
            "vnp_PayDate": "20261018100500",
            "vnp_ResponseCode": response_code,
            "vnp_TransactionNo": "14123456",
            "vnp_TransactionStatus": response_code,
            "vnp_TxnRef": txn_ref,
        }
        params.update(overrides)
        params["vnp_SecureHash"] = sign(HASH_SECRET, build_hash_data(params))
        return params

    return _build


@pytest.fixture
def stub_gateway():
    return StubGateway()
