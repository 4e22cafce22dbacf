"""Folding a guest cart into a user cart at login."""
import logging
from sqlalchemy.orm import Session
from opentelemetry import trace

from models import Cart, CartItem
from monitoring import cart_merges_counter, guest_carts_expired_counter
from services.cart_service import CartService, CartOwner

logger = logging.getLogger(__name__)


class CartMerger:
    """Merges the anonymous session cart into the user's cart."""

    def __init__(self, cart_service: CartService):
        self.cart_service = cart_service
        self.tracer = trace.get_tracer(__name__)

    def merge(self, db: Session, session_id: str, user_email: str) -> Cart:
        """
        Move every guest line into the user's cart and delete the guest cart.

        Matching products have their quantities summed into the user's line,
        which keeps its own price_at_addition. Other lines are copied at the
        guest's price. Stock is not revalidated here; checkout does that.

        A missing or expired guest cart leaves the user cart untouched, so
        repeating a merge for the same session is harmless.

        Args:
            db: Database session
            session_id: Guest session token
            user_email: Identity of the user logging in

        Returns:
            The user's cart

        Raises:
            UserNotFound: If the user is unknown
        """
        user_cart = self.cart_service.get_or_create(db, CartOwner.user(user_email))

        guest_cart = self.cart_service.find_guest_cart(db, session_id) if session_id else None
        if guest_cart is None:
            logger.info("No guest cart to merge", extra={"user_cart_id": user_cart.id})
            return user_cart

        if guest_cart.is_expired(self.cart_service.clock()):
            self.cart_service.delete_cart(db, guest_cart)
            guest_carts_expired_counter.add(1, {"trigger": "merge"})
            logger.info("Discarded expired guest cart at login", extra={
                "guest_cart_id": guest_cart.id,
                "user_cart_id": user_cart.id
            })
            return user_cart

        with self.tracer.start_as_current_span("db.transaction.merge_carts") as db_span:
            db_span.set_attribute("cart.guest_id", guest_cart.id)
            db_span.set_attribute("cart.user_id", user_cart.id)
            db_span.set_attribute("cart.guest_lines", len(guest_cart.items))

            merged_lines = 0
            try:
                for guest_item in guest_cart.items:
                    user_item = user_cart.find_item_for_product(guest_item.product_id)
                    if user_item is not None:
                        user_item.quantity += guest_item.quantity
                    else:
                        user_cart.items.append(CartItem(
                            product_id=guest_item.product_id,
                            quantity=guest_item.quantity,
                            price_at_addition=guest_item.price_at_addition
                        ))
                    merged_lines += 1

                self.cart_service.delete_cart(db, guest_cart, commit=False)
                db.commit()
            except Exception:
                db.rollback()
                raise

            db_span.set_attribute("cart.merged_lines", merged_lines)

        self.cart_service.refresh_count_cache(user_cart)
        cart_merges_counter.add(1, {"merged_lines": str(merged_lines)})

        logger.info("Merged guest cart into user cart", extra={
            "guest_cart_id": guest_cart.id,
            "user_cart_id": user_cart.id,
            "merged_lines": merged_lines,
            "total_items": user_cart.total_items
        })
        return user_cart
