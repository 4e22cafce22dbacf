"""
Order state machine.

Valid status transitions:
- PENDING -> CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED
- PENDING / CONFIRMED -> CANCELLED
- any status except REFUNDED -> REFUNDED (admin)

CANCELLED, DELIVERED and REFUNDED are final apart from the refund path.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Optional

from exceptions import InvalidTransition
from models import Order, OrderStatus
from monitoring import order_transitions_counter

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES: FrozenSet[OrderStatus] = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

_FORWARD: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}


class OrderStateMachine:
    """Validates transitions and applies their timestamps and stock side effects."""

    def __init__(self, restore_stock: Callable[[Order], None], clock: Callable[[], datetime] = datetime.utcnow):
        """
        Args:
            restore_stock: Puts every ordered unit of an order back into stock
            clock: Source of the current UTC time
        """
        self.restore_stock = restore_stock
        self.clock = clock

    @staticmethod
    def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
        if target == OrderStatus.REFUNDED:
            return current != OrderStatus.REFUNDED
        return target in _FORWARD[current]

    @staticmethod
    def can_cancel(order: Order) -> bool:
        return order.status in CANCELLABLE_STATUSES

    def transition(self, order: Order, target: OrderStatus, reason: Optional[str] = None) -> Order:
        """
        Move an order to ``target`` and apply the side effects of that status.

        Does not commit; the caller owns the transaction.

        Raises:
            InvalidTransition: If ``target`` is not reachable from the current status
        """
        current = OrderStatus(order.status)
        if not self.can_transition(current, target):
            raise InvalidTransition(order.id, current.value, target.value)

        now = self.clock()
        order.status = target

        if target == OrderStatus.CONFIRMED:
            order.confirmed_at = order.confirmed_at or now
        elif target == OrderStatus.SHIPPED:
            order.shipped_at = order.shipped_at or now
        elif target == OrderStatus.DELIVERED:
            order.delivered_at = order.delivered_at or now
        elif target == OrderStatus.CANCELLED:
            order.cancelled_at = order.cancelled_at or now
            order.cancellation_reason = reason
            self._restore_once(order)
        elif target == OrderStatus.REFUNDED:
            self._restore_once(order)

        order_transitions_counter.add(1, {"from": current.value, "to": target.value})
        logger.info("Order status changed", extra={
            "order_id": order.id,
            "order_number": order.order_number,
            "from_status": current.value,
            "to_status": target.value
        })
        return order

    def _restore_once(self, order: Order) -> None:
        if order.stock_restored:
            logger.info("Stock already restored for order", extra={"order_id": order.id})
            return
        self.restore_stock(order)
        order.stock_restored = True
