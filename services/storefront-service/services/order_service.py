"""Order management service."""
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session
from opentelemetry import trace

from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from exceptions import Forbidden, InvalidTransition, OrderNotFound
from models import Order, OrderStatus
from services.inventory_ledger import InventoryLedger
from services.order_state_machine import OrderStateMachine
from services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


class OrderService:
    """Service for querying orders and driving their lifecycle."""

    def __init__(self, inventory: InventoryLedger, user_directory: Optional[UserDirectory] = None):
        """
        Initialize order service.

        Args:
            inventory: Ledger used to restore stock on cancel and refund
            user_directory: Lookup for user identities
        """
        self.inventory = inventory
        self.user_directory = user_directory or UserDirectory()
        self.tracer = trace.get_tracer(__name__)

    def state_machine(self, db: Session) -> OrderStateMachine:
        return OrderStateMachine(lambda order: self._restore_stock(db, order))

    def get_order(self, db: Session, order_id: int) -> Order:
        with self.tracer.start_as_current_span("db.query.get_order") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("order.id", order_id)

            order = db.get(Order, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            return order

    def get_order_by_number(self, db: Session, order_number: str) -> Order:
        order = db.query(Order).filter(Order.order_number == order_number).first()
        if order is None:
            raise OrderNotFound(order_number)
        return order

    def get_order_for_user(self, db: Session, user_email: str, order_id: int) -> Order:
        """
        Fetch an order on behalf of its owner.

        Raises:
            OrderNotFound: If the order does not exist
            Forbidden: If the order belongs to another user
        """
        user = self.user_directory.get_by_email(db, user_email)
        order = self.get_order(db, order_id)
        self._check_owner(order, user.id)
        return order

    def list_user_orders(
        self,
        db: Session,
        user_email: str,
        page: int = 0,
        size: int = DEFAULT_PAGE_SIZE
    ) -> Tuple[List[Order], int]:
        """
        Get a page of a user's orders, newest first.

        Returns:
            (orders on the page, total number of orders)
        """
        user = self.user_directory.get_by_email(db, user_email)
        query = db.query(Order).filter(Order.user_id == user.id)
        return self._paginate(query, page, size)

    def list_orders(
        self,
        db: Session,
        status: Optional[OrderStatus] = None,
        page: int = 0,
        size: int = DEFAULT_PAGE_SIZE
    ) -> Tuple[List[Order], int]:
        """Get a page of all orders, optionally filtered by status."""
        query = db.query(Order)
        if status is not None:
            query = query.filter(Order.status == status)
        return self._paginate(query, page, size)

    def update_status(
        self,
        db: Session,
        order_id: int,
        new_status: OrderStatus,
        reason: Optional[str] = None
    ) -> Order:
        """
        Admin status change.

        Raises:
            OrderNotFound: If the order does not exist
            InvalidTransition: If the change is not allowed from the current status
        """
        order = self.get_order(db, order_id)
        return self._apply(db, order, new_status, reason)

    def cancel_order(self, db: Session, order_id: int, reason: Optional[str] = None) -> Order:
        """
        Cancel an order and put its stock back.

        Raises:
            OrderNotFound: If the order does not exist
            InvalidTransition: If the order is neither PENDING nor CONFIRMED
        """
        order = self.get_order(db, order_id)
        return self._cancel(db, order, reason)

    def cancel_order_by_user(self, db: Session, user_email: str, order_id: int, reason: Optional[str] = None) -> Order:
        """
        Cancel an order on behalf of its owner.

        Raises:
            OrderNotFound: If the order does not exist
            Forbidden: If the order belongs to another user
            InvalidTransition: If the order is neither PENDING nor CONFIRMED
        """
        order = self.get_order_for_user(db, user_email, order_id)
        return self._cancel(db, order, reason)

    def _cancel(self, db: Session, order: Order, reason: Optional[str]) -> Order:
        if not OrderStateMachine.can_cancel(order):
            raise InvalidTransition(order.id, OrderStatus(order.status).value, OrderStatus.CANCELLED.value)
        return self._apply(db, order, OrderStatus.CANCELLED, reason)

    def _apply(self, db: Session, order: Order, new_status: OrderStatus, reason: Optional[str]) -> Order:
        with self.tracer.start_as_current_span("db.transaction.update_order_status") as db_span:
            db_span.set_attribute("db.operation", "UPDATE")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("order.id", order.id)
            db_span.set_attribute("order.status", new_status.value)

            try:
                self.state_machine(db).transition(order, new_status, reason)
                db.commit()
            except InvalidTransition:
                db.rollback()
                raise
            except Exception as e:
                db.rollback()
                logger.error("Failed to update order status", extra={
                    "order_id": order.id,
                    "status": new_status.value,
                    "error": str(e)
                })
                raise
        return order

    def _restore_stock(self, db: Session, order: Order) -> None:
        for item in order.items:
            self.inventory.restore(db, item.product_id, item.quantity)
        logger.info("Restored stock for order", extra={
            "order_id": order.id,
            "lines": len(order.items),
            "units": sum(item.quantity for item in order.items)
        })

    @staticmethod
    def _check_owner(order: Order, user_id: int) -> None:
        if order.user_id != user_id:
            raise Forbidden(
                "Order does not belong to user",
                details={"order_id": order.id}
            )

    def _paginate(self, query, page: int, size: int) -> Tuple[List[Order], int]:
        size = max(1, min(size, MAX_PAGE_SIZE))
        page = max(0, page)
        with self.tracer.start_as_current_span("db.query.list_orders") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")

            total = query.count()
            orders = (
                query.order_by(Order.created_at.desc(), Order.id.desc())
                .offset(page * size)
                .limit(size)
                .all()
            )
            db_span.set_attribute("db.rows_returned", len(orders))
            return orders, total
