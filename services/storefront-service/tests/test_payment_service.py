"""
Unit Tests for PaymentService and PaymentProcessorClient

The processor is replaced by an httpx.MockTransport so requests and
responses can be inspected without network access.
"""

import json
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from exceptions import (
    AlreadyPaid,
    Forbidden,
    InvalidTransition,
    PaymentIntentMismatch,
    PaymentNotSuccessful,
    PaymentProcessorError,
)
from models import OrderStatus, PaymentStatus
from services.external_service import PaymentProcessorClient
from services.payment_service import PaymentService, to_minor_units

USER_EMAIL = "user123@example.com"
OTHER_EMAIL = "test@example.com"
PROCESSOR_URL = "http://processor.test"


class FakeProcessor:
    """Records requests and answers like a payment-intent API."""

    def __init__(self):
        self.requests = []
        self.intent_status = "requires_payment_method"
        self.metadata = {}
        self.fail_with = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": {"message": "processor down"}})

        if request.method == "POST" and request.url.path == "/v1/payment_intents":
            body = json.loads(request.content)
            self.metadata = body.get("metadata", {})
            return httpx.Response(200, json={
                "id": "pi_123",
                "client_secret": "pi_123_secret",
                "status": "requires_payment_method",
                "amount": body["amount"],
                "currency": body["currency"]
            })
        if request.url.path.endswith("/cancel"):
            return httpx.Response(200, json={"id": "pi_123", "status": "canceled"})
        return httpx.Response(200, json={"id": "pi_123", "status": self.intent_status, "metadata": self.metadata})


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest_asyncio.fixture
async def payment_service(processor, order_service):
    client = httpx.AsyncClient(transport=httpx.MockTransport(processor))
    yield PaymentService(
        order_service,
        PaymentProcessorClient(client, base_url=PROCESSOR_URL, secret_key="sk_test"),
        currency="usd",
        provider_name="stripe"
    )
    await client.aclose()


@pytest.fixture
def order(place_order, make_product):
    product = make_product(price="12.34", stock=10)
    return place_order((product, 2))


class TestMinorUnits:

    def test_converts_to_cents(self):
        assert to_minor_units(Decimal("24.68")) == 2468

    def test_truncates_fractions_of_a_cent(self):
        assert to_minor_units(Decimal("10.009")) == 1000


class TestCreatePaymentIntent:
    """Test create_payment_intent()."""

    @pytest.mark.asyncio
    async def test_creates_intent_for_order_total(self, db, payment_service, processor, order):
        intent = await payment_service.create_payment_intent(db, order.id, USER_EMAIL)

        sent = json.loads(processor.requests[0].content)
        assert sent["amount"] == 2468
        assert sent["currency"] == "usd"
        assert sent["metadata"]["order_number"] == order.order_number
        assert sent["metadata"]["user_email"] == USER_EMAIL
        assert processor.requests[0].headers["Authorization"] == "Bearer sk_test"
        assert intent.payment_intent_id == "pi_123"
        assert intent.client_secret == "pi_123_secret"
        assert intent.amount == 2468
        assert order.transaction_id == "pi_123"
        assert order.payment_method == "stripe"
        assert order.payment_status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_already_paid(self, db, payment_service, order):
        order.payment_status = PaymentStatus.PAID
        db.commit()

        with pytest.raises(AlreadyPaid):
            await payment_service.create_payment_intent(db, order.id, USER_EMAIL)

    @pytest.mark.asyncio
    async def test_other_users_order(self, db, payment_service, processor, order):
        with pytest.raises(Forbidden):
            await payment_service.create_payment_intent(db, order.id, OTHER_EMAIL)
        assert processor.requests == []

    @pytest.mark.asyncio
    async def test_processor_error_wrapped(self, db, payment_service, processor, order):
        processor.fail_with = 500

        with pytest.raises(PaymentProcessorError) as exc_info:
            await payment_service.create_payment_intent(db, order.id, USER_EMAIL)

        assert "500" in str(exc_info.value)
        assert exc_info.value.details["operation"] == "create_intent"


class TestConfirmPayment:
    """Test confirm_payment()."""

    @pytest_asyncio.fixture
    async def intent_id(self, db, payment_service, order):
        intent = await payment_service.create_payment_intent(db, order.id, USER_EMAIL)
        return intent.payment_intent_id

    @pytest.mark.asyncio
    async def test_success_marks_paid_and_confirms(self, db, payment_service, processor, order, intent_id):
        processor.intent_status = "succeeded"

        confirmed = await payment_service.confirm_payment(db, order.id, intent_id, USER_EMAIL)

        assert confirmed.payment_status == PaymentStatus.PAID
        assert confirmed.status == OrderStatus.CONFIRMED
        assert confirmed.confirmed_at is not None

    @pytest.mark.asyncio
    async def test_success_keeps_later_status(self, db, payment_service, processor, order, order_service, intent_id):
        processor.intent_status = "succeeded"
        order_service.update_status(db, order.id, OrderStatus.CONFIRMED)
        order_service.update_status(db, order.id, OrderStatus.PROCESSING)

        confirmed = await payment_service.confirm_payment(db, order.id, intent_id, USER_EMAIL)

        assert confirmed.payment_status == PaymentStatus.PAID
        assert confirmed.status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_unsuccessful_status_leaves_order_untouched(self, db, payment_service, processor, order, intent_id):
        processor.intent_status = "requires_payment_method"

        with pytest.raises(PaymentNotSuccessful) as exc_info:
            await payment_service.confirm_payment(db, order.id, intent_id, USER_EMAIL)

        assert exc_info.value.processor_status == "requires_payment_method"
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_intent_of_another_order_rejected(self, db, payment_service, processor, order, intent_id):
        """Test an intent id other than the one issued for the order is refused before the processor is asked."""
        processor.intent_status = "succeeded"
        calls = len(processor.requests)

        with pytest.raises(PaymentIntentMismatch):
            await payment_service.confirm_payment(db, order.id, "pi_other", USER_EMAIL)

        assert len(processor.requests) == calls
        assert order.payment_status == PaymentStatus.PENDING
        assert order.transaction_id == intent_id

    @pytest.mark.asyncio
    async def test_intent_metadata_for_another_order_rejected(self, db, payment_service, processor, order, intent_id):
        processor.intent_status = "succeeded"
        processor.metadata = {"order_id": str(order.id + 1)}

        with pytest.raises(PaymentIntentMismatch):
            await payment_service.confirm_payment(db, order.id, intent_id, USER_EMAIL)

        assert order.payment_status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_order_without_intent_rejected(self, db, payment_service, processor, order):
        processor.intent_status = "succeeded"

        with pytest.raises(PaymentIntentMismatch):
            await payment_service.confirm_payment(db, order.id, "pi_123", USER_EMAIL)

        assert processor.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("steps", [
        [OrderStatus.CANCELLED],
        [OrderStatus.CANCELLED, OrderStatus.REFUNDED],
    ])
    async def test_cancelled_or_refunded_order_cannot_be_paid(self, db, payment_service, processor, order, order_service, inventory, intent_id, steps):
        """Test an order whose stock went back on the shelf stays unpaid."""
        processor.intent_status = "succeeded"
        for status in steps:
            order_service.update_status(db, order.id, status)

        with pytest.raises(InvalidTransition) as exc_info:
            await payment_service.confirm_payment(db, order.id, intent_id, USER_EMAIL)

        assert exc_info.value.requested_status == "PAID"
        assert order.status == steps[-1]
        assert order.payment_status == PaymentStatus.PENDING
        assert inventory.available(db, order.items[0].product_id) == 10

    @pytest.mark.asyncio
    async def test_cancelled_order_gets_no_new_intent(self, db, payment_service, processor, order, order_service):
        order_service.cancel_order(db, order.id)

        with pytest.raises(InvalidTransition):
            await payment_service.create_payment_intent(db, order.id, USER_EMAIL)
        assert processor.requests == []


class TestIntentQueries:
    """Test status lookup and cancellation."""

    @pytest.mark.asyncio
    async def test_get_status(self, payment_service, processor):
        processor.intent_status = "processing"

        assert await payment_service.get_payment_status("pi_123") == "processing"
        assert processor.requests[0].url == f"{PROCESSOR_URL}/v1/payment_intents/pi_123"

    @pytest.mark.asyncio
    async def test_cancel_intent(self, payment_service, processor):
        intent = await payment_service.cancel_payment_intent("pi_123")

        assert intent["status"] == "canceled"
        assert processor.requests[0].method == "POST"
