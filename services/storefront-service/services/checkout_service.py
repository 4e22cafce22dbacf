"""Checkout: turning a user's cart into an order."""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session
from opentelemetry import trace

from exceptions import CartNotFound, EmptyCart, InsufficientStock
from models import Order, OrderItem, OrderStatus, PaymentStatus, to_money
from monitoring import checkout_counter, checkout_amount_histogram
from services.cart_service import CartService
from services.inventory_ledger import InventoryLedger
from services.order_numbers import generate_order_number

logger = logging.getLogger(__name__)


@dataclass
class CheckoutDetails:
    """Shipping and payment metadata supplied at checkout."""
    shipping_name: str
    shipping_address: str
    shipping_city: str
    shipping_postal_code: str
    shipping_country: str
    payment_method: str
    shipping_state: Optional[str] = None
    shipping_phone: Optional[str] = None
    shipping_cost: Decimal = Decimal("0.00")
    notes: Optional[str] = None


class CheckoutService:
    """Service converting carts into orders."""

    def __init__(self, cart_service: CartService, inventory: InventoryLedger):
        """
        Initialize checkout service.

        Args:
            cart_service: Cart service instance
            inventory: Ledger used to take stock for each line
        """
        self.cart_service = cart_service
        self.inventory = inventory
        self.tracer = trace.get_tracer(__name__)

    def checkout(self, db: Session, user_email: str, details: CheckoutDetails) -> Order:
        """
        Create a PENDING order from the user's cart.

        Stock for every line, the order insert and the cart clear commit
        together. The first line short on stock rolls the whole unit back,
        so no stock moves and no order exists after a failure.

        Args:
            db: Database session
            user_email: Identity of the buyer
            details: Shipping and payment metadata

        Returns:
            The persisted order

        Raises:
            UserNotFound: If the user is unknown
            CartNotFound: If the user has no cart
            EmptyCart: If the cart has no items, or another checkout emptied it first
            InsufficientStock: If any line exceeds the available stock
        """
        span = trace.get_current_span()
        span.set_attribute("payment.method", details.payment_method)

        cart = self.cart_service.find_user_cart(db, user_email)
        if cart is None:
            raise CartNotFound(user_email)

        # Lines come back in product id order so row locks are always acquired in the same order
        lines = self.cart_service.lock_lines(db, cart)
        if not lines:
            db.rollback()
            raise EmptyCart(cart.id)

        order_number = generate_order_number(lambda number: self._order_number_taken(db, number))

        order = Order(
            order_number=order_number,
            user_id=cart.user_id,
            status=OrderStatus.PENDING,
            shipping_name=details.shipping_name,
            shipping_address=details.shipping_address,
            shipping_city=details.shipping_city,
            shipping_state=details.shipping_state,
            shipping_postal_code=details.shipping_postal_code,
            shipping_country=details.shipping_country,
            shipping_phone=details.shipping_phone,
            payment_method=details.payment_method,
            payment_status=PaymentStatus.PENDING,
            tax=Decimal("0.00"),
            shipping_cost=to_money(details.shipping_cost),
            discount=Decimal("0.00"),
            notes=details.notes
        )

        try:
            with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
                db_span.set_attribute("db.operation", "INSERT")
                db_span.set_attribute("db.table", "orders")
                db_span.set_attribute("order.number", order_number)
                db_span.set_attribute("cart.id", cart.id)

                for cart_item in lines:
                    product_name = cart_item.product.name if cart_item.product else None
                    self.inventory.reserve(db, cart_item.product_id, cart_item.quantity, product_name)
                    order.items.append(OrderItem(
                        product_id=cart_item.product_id,
                        product_name=product_name,
                        quantity=cart_item.quantity,
                        price_at_purchase=to_money(cart_item.price_at_addition)
                    ))

                order.recalculate_totals()
                db.add(order)

                # Every line read above must still be in the cart, otherwise another checkout took it
                removed = self.cart_service.clear(db, cart, commit=False)
                if removed != len(lines):
                    raise EmptyCart(cart.id)

                db.commit()
                db_span.set_attribute("order.id", order.id)
                db_span.set_attribute("order.total_amount", float(order.total_amount))
        except InsufficientStock as e:
            db.rollback()
            checkout_counter.add(1, {"payment_method": details.payment_method, "status": "insufficient_stock"})
            logger.warning("Checkout aborted for insufficient stock", extra={
                "user_email": user_email,
                "cart_id": cart.id,
                "product_id": e.product_id,
                "requested": e.requested,
                "available": e.available
            })
            raise
        except EmptyCart:
            db.rollback()
            checkout_counter.add(1, {"payment_method": details.payment_method, "status": "cart_changed"})
            logger.warning("Checkout aborted, cart emptied by another request", extra={
                "user_email": user_email,
                "cart_id": cart.id,
                "lines": len(lines)
            })
            raise
        except Exception as e:
            db.rollback()
            checkout_counter.add(1, {"payment_method": details.payment_method, "status": "failed"})
            logger.error("Failed to create order", extra={
                "user_email": user_email,
                "cart_id": cart.id,
                "order_number": order_number,
                "error": str(e)
            })
            raise

        self.cart_service.drop_count_cache(cart)

        checkout_counter.add(1, {"payment_method": details.payment_method, "status": "completed"})
        checkout_amount_histogram.record(float(order.total_amount), {"payment_method": details.payment_method})

        logger.info("Checkout completed", extra={
            "user_email": user_email,
            "order_id": order.id,
            "order_number": order.order_number,
            "amount": str(order.total_amount),
            "payment_method": details.payment_method,
            "item_count": len(order.items)
        })
        return order

    def _order_number_taken(self, db: Session, order_number: str) -> bool:
        with self.tracer.start_as_current_span("db.query.order_number_exists") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")

            return db.query(Order.id).filter(Order.order_number == order_number).first() is not None
