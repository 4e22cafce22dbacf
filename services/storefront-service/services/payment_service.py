"""Payment coordination between orders and the payment processor."""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.orm import Session

from config import PAYMENT_CURRENCY, PAYMENT_PROVIDER_NAME
from exceptions import AlreadyPaid, InvalidTransition, PaymentIntentMismatch, PaymentNotSuccessful
from models import Order, OrderStatus, PaymentStatus
from services.external_service import PaymentProcessorClient, PAYMENT_SUCCEEDED
from services.order_service import OrderService

logger = logging.getLogger(__name__)

UNPAYABLE_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})


@dataclass
class PaymentIntentInfo:
    """What the client needs to complete a payment."""
    client_secret: str
    payment_intent_id: str
    status: str
    amount: int
    currency: str


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to the smallest currency unit (cents)."""
    return int(Decimal(amount) * 100)


class PaymentService:
    """Creates and confirms payment intents for orders."""

    def __init__(
        self,
        order_service: OrderService,
        processor: PaymentProcessorClient,
        currency: str = PAYMENT_CURRENCY,
        provider_name: str = PAYMENT_PROVIDER_NAME
    ):
        self.order_service = order_service
        self.processor = processor
        self.currency = currency
        self.provider_name = provider_name

    async def create_payment_intent(self, db: Session, order_id: int, user_email: str) -> PaymentIntentInfo:
        """
        Create a processor payment intent for the order total.

        Args:
            db: Database session
            order_id: Order identifier
            user_email: Identity of the paying user

        Returns:
            Intent details for the client

        Raises:
            OrderNotFound: If the order does not exist
            Forbidden: If the order belongs to another user
            AlreadyPaid: If the order has been paid
            InvalidTransition: If the order is CANCELLED or REFUNDED
            PaymentProcessorError: If the processor call fails
        """
        order = self.order_service.get_order_for_user(db, user_email, order_id)
        if order.payment_status == PaymentStatus.PAID:
            raise AlreadyPaid(order.id)
        self._ensure_payable(order)

        amount = to_minor_units(order.total_amount)
        intent = await self.processor.create_payment_intent(
            amount=amount,
            currency=self.currency,
            description=f"Payment for order {order.order_number}",
            metadata={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "user_email": user_email
            }
        )

        order.transaction_id = intent["id"]
        order.payment_method = self.provider_name
        order.payment_status = PaymentStatus.PENDING
        self._commit(db)

        logger.info("Created payment intent", extra={
            "order_id": order.id,
            "order_number": order.order_number,
            "payment_intent_id": intent["id"],
            "amount": amount,
            "currency": self.currency
        })

        return PaymentIntentInfo(
            client_secret=intent.get("client_secret"),
            payment_intent_id=intent["id"],
            status=intent.get("status"),
            amount=intent.get("amount", amount),
            currency=intent.get("currency", self.currency)
        )

    async def confirm_payment(self, db: Session, order_id: int, payment_intent_id: str, user_email: str) -> Order:
        """
        Mark the order paid once the processor reports success.

        Only the intent created for this order is accepted. A PENDING order
        moves to CONFIRMED; CANCELLED and REFUNDED orders cannot be paid;
        other statuses are left alone.

        Raises:
            OrderNotFound: If the order does not exist
            Forbidden: If the order belongs to another user
            PaymentIntentMismatch: If the intent was not issued for this order
            InvalidTransition: If the order is CANCELLED or REFUNDED
            PaymentNotSuccessful: If the intent has not succeeded
            PaymentProcessorError: If the processor call fails
        """
        order = self.order_service.get_order_for_user(db, user_email, order_id)
        if order.transaction_id != payment_intent_id:
            raise PaymentIntentMismatch(order.id, payment_intent_id)
        self._ensure_payable(order)

        intent = await self.processor.retrieve_payment_intent(payment_intent_id)
        intent_order_id = (intent.get("metadata") or {}).get("order_id")
        if intent_order_id is not None and intent_order_id != str(order.id):
            raise PaymentIntentMismatch(order.id, payment_intent_id)

        status = intent.get("status")
        if status != PAYMENT_SUCCEEDED:
            logger.warning("Payment not successful", extra={
                "order_id": order.id,
                "payment_intent_id": payment_intent_id,
                "status": status
            })
            raise PaymentNotSuccessful(payment_intent_id, status)

        try:
            # The order may have been cancelled while the processor was being asked
            db.refresh(order, with_for_update=True)
            self._ensure_payable(order)

            order.payment_status = PaymentStatus.PAID
            if order.status == OrderStatus.PENDING:
                self.order_service.state_machine(db).transition(order, OrderStatus.CONFIRMED)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Payment confirmed", extra={
            "order_id": order.id,
            "order_number": order.order_number,
            "payment_intent_id": payment_intent_id
        })
        return order

    async def get_payment_status(self, payment_intent_id: str) -> str:
        intent = await self.processor.retrieve_payment_intent(payment_intent_id)
        return intent.get("status")

    async def cancel_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        intent = await self.processor.cancel_payment_intent(payment_intent_id)
        logger.info("Cancelled payment intent", extra={
            "payment_intent_id": payment_intent_id,
            "status": intent.get("status")
        })
        return intent

    @staticmethod
    def _commit(db: Session) -> None:
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise

    @staticmethod
    def _ensure_payable(order: Order) -> None:
        if order.status in UNPAYABLE_STATUSES:
            raise InvalidTransition(order.id, OrderStatus(order.status).value, PaymentStatus.PAID.value)
