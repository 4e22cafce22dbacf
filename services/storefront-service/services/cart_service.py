"""Cart management service."""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import redis
from opentelemetry import trace

from config import GUEST_CART_TTL_DAYS, CART_CACHE_TTL_SECONDS
from exceptions import (
    CartNotFound,
    InsufficientStock,
    InvalidQuantity,
    ItemNotFound,
    ProductNotFound,
    ProductUnavailable,
)
from models import Cart, CartItem, Product
from monitoring import cart_additions_counter, guest_carts_expired_counter
from services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartOwner:
    """Who a cart belongs to: a user email or a guest session token, never both."""
    user_email: Optional[str] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if self.user_email and self.session_id:
            raise ValueError("A cart owner is either a user or a guest session")

    @classmethod
    def user(cls, email: str) -> "CartOwner":
        return cls(user_email=email)

    @classmethod
    def guest(cls, session_id: Optional[str] = None) -> "CartOwner":
        return cls(session_id=session_id or None)

    @property
    def is_guest(self) -> bool:
        return self.user_email is None


class CartService:
    """Service for managing shopping carts."""

    def __init__(
        self,
        redis_client: redis.Redis,
        user_directory: Optional[UserDirectory] = None,
        guest_ttl_days: int = GUEST_CART_TTL_DAYS,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        """
        Initialize cart service.

        Args:
            redis_client: Redis client for the cart count cache
            user_directory: Lookup for user identities
            guest_ttl_days: Lifetime of a guest cart
            clock: Source of the current UTC time
        """
        self.redis_client = redis_client
        self.user_directory = user_directory or UserDirectory()
        self.guest_ttl_days = guest_ttl_days
        self.clock = clock
        self.tracer = trace.get_tracer(__name__)

    def get_or_create(self, db: Session, owner: CartOwner) -> Cart:
        """
        Return the owner's cart, creating it on first access.

        Guests without a session token get a fresh random one. An expired
        guest cart is deleted and replaced by an empty cart under the same
        token.

        Raises:
            UserNotFound: If the user owner is unknown
        """
        if not owner.is_guest:
            user = self.user_directory.get_by_email(db, owner.user_email)
            cart = self.find_cart_for_user_id(db, user.id)
            if cart is None:
                cart, created = self._insert_cart(
                    db, Cart.for_user(user.id), lambda: self.find_cart_for_user_id(db, user.id)
                )
                if created:
                    logger.info("Created user cart", extra={"cart_id": cart.id, "user_id": user.id})
            return cart

        session_id = owner.session_id or str(uuid.uuid4())
        cart = self.find_guest_cart(db, session_id)

        if cart is not None and cart.is_expired(self.clock()):
            self.delete_cart(db, cart)
            guest_carts_expired_counter.add(1, {"trigger": "access"})
            logger.info("Replaced expired guest cart", extra={"session_id": session_id})
            cart = None

        if cart is None:
            cart, created = self._insert_cart(
                db,
                Cart.for_guest(session_id, self.guest_ttl_days, self.clock()),
                lambda: self.find_guest_cart(db, session_id)
            )
            if created:
                logger.info("Created guest cart", extra={"cart_id": cart.id, "session_id": session_id})

        return cart

    def _insert_cart(self, db: Session, cart: Cart, find_existing: Callable[[], Optional[Cart]]) -> Tuple[Cart, bool]:
        """Insert a new cart, or return the one a concurrent request created under the same owner."""
        db.add(cart)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = find_existing()
            if existing is None:
                raise
            logger.info("Cart created concurrently, reusing it", extra={"cart_id": existing.id})
            return existing, False
        return cart, True

    def find_guest_cart(self, db: Session, session_id: str) -> Optional[Cart]:
        with self.tracer.start_as_current_span("db.query.get_guest_cart") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "carts")

            cart = db.query(Cart).filter(Cart.session_id == session_id).first()
            db_span.set_attribute("db.rows_returned", 0 if cart is None else 1)
            return cart

    def find_cart_for_user_id(self, db: Session, user_id: int) -> Optional[Cart]:
        with self.tracer.start_as_current_span("db.query.get_user_cart") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "carts")
            db_span.set_attribute("user.id", user_id)

            cart = db.query(Cart).filter(Cart.user_id == user_id).first()
            db_span.set_attribute("db.rows_returned", 0 if cart is None else 1)
            return cart

    def find_user_cart(self, db: Session, email: str) -> Optional[Cart]:
        """
        Look up a user's cart without creating one.

        Raises:
            UserNotFound: If the user is unknown
        """
        user = self.user_directory.get_by_email(db, email)
        return self.find_cart_for_user_id(db, user.id)

    def get_cart(self, db: Session, cart_id: int) -> Cart:
        cart = db.get(Cart, cart_id)
        if cart is None:
            raise CartNotFound(cart_id)
        return cart

    def add_item(self, db: Session, cart: Cart, product_id: int, quantity: int) -> CartItem:
        """
        Add a product to the cart or top up its existing line.

        An existing line keeps its original price_at_addition; a new line
        snapshots the product's effective price.

        Args:
            db: Database session
            cart: Target cart
            product_id: Product identifier
            quantity: Units to add

        Returns:
            The created or updated cart line

        Raises:
            ProductNotFound: If the product does not exist
            ProductUnavailable: If the product is inactive
            InsufficientStock: If the resulting line quantity exceeds stock
        """
        if quantity < 1:
            raise InvalidQuantity(quantity)

        product = self._get_product(db, product_id)
        if not product.active:
            raise ProductUnavailable(product_id)

        product_name = product.name
        stock = product.stock_quantity

        with self.tracer.start_as_current_span("db.query.upsert_cart_item") as db_span:
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("cart.id", cart.id)
            db_span.set_attribute("product.id", product_id)

            self._lock_cart(db, cart)
            item = cart.find_item_for_product(product_id)
            created = False
            if item is None:
                db_span.set_attribute("db.operation", "INSERT")
                if quantity > stock:
                    db.rollback()
                    raise InsufficientStock(product_id, quantity, stock, product_name)
                item, created = self._insert_line(db, cart, product, quantity)

            if not created:
                db_span.set_attribute("db.operation", "UPDATE")
                self._increment_line(db, cart, item, quantity, stock, product_name)

        self.refresh_count_cache(cart)
        cart_additions_counter.add(1, {"product_id": str(product_id), "guest": str(cart.is_guest).lower()})

        logger.info("Added product to cart", extra={
            "cart_id": cart.id,
            "product_id": product_id,
            "product_name": product_name,
            "quantity": quantity,
            "line_quantity": item.quantity
        })
        return item

    def update_item_quantity(self, db: Session, cart: Cart, item_id: int, quantity: int) -> CartItem:
        """
        Set the quantity of a cart line.

        Raises:
            ItemNotFound: If the item is not in this cart
            InvalidQuantity: If quantity is below 1 (use remove_item instead)
            InsufficientStock: If quantity exceeds current stock
        """
        item = self._get_item(cart, item_id)
        if quantity < 1:
            raise InvalidQuantity(quantity)

        product = self._get_product(db, item.product_id)
        if quantity > product.stock_quantity:
            raise InsufficientStock(product.id, quantity, product.stock_quantity, product.name)

        self._lock_cart(db, cart)
        result = db.execute(
            update(CartItem)
            .where(CartItem.id == item_id)
            .values(quantity=quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ItemNotFound(item_id, cart.id)

        self._touch(cart)
        self._commit(db)
        db.refresh(item)
        self.refresh_count_cache(cart)
        return item

    def remove_item(self, db: Session, cart: Cart, item_id: int) -> None:
        """
        Remove a line from the cart.

        Raises:
            ItemNotFound: If the item is not in this cart
        """
        item = self._get_item(cart, item_id)
        self._lock_cart(db, cart)
        cart.items.remove(item)
        self._touch(cart)
        self._commit(db)
        self.refresh_count_cache(cart)

    def clear(self, db: Session, cart: Cart, commit: bool = True) -> int:
        """
        Remove every line, keeping the cart itself.

        Args:
            db: Database session
            cart: Cart to empty
            commit: False when the caller commits as part of a larger unit of work

        Returns:
            Number of lines deleted from the database
        """
        with self.tracer.start_as_current_span("db.query.delete_cart_items") as db_span:
            db_span.set_attribute("db.operation", "DELETE")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("cart.id", cart.id)

            result = db.execute(
                delete(CartItem)
                .where(CartItem.cart_id == cart.id)
                .execution_options(synchronize_session="evaluate")
            )
            db_span.set_attribute("db.rows_affected", result.rowcount)
            db.expire(cart, ["items"])
            self._touch(cart)

        if commit:
            self._commit(db)
            self.drop_count_cache(cart)
        return result.rowcount

    def lock_lines(self, db: Session, cart: Cart) -> List[CartItem]:
        """
        Lock the cart and re-read its lines from the database, ordered by product id.

        Lines already loaded in the session are overwritten with the stored
        values, so a cart emptied by another transaction comes back empty.
        """
        with self.tracer.start_as_current_span("db.query.lock_cart_items") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("cart.id", cart.id)

            self._lock_cart(db, cart)
            lines = (
                db.query(CartItem)
                .filter(CartItem.cart_id == cart.id)
                .order_by(CartItem.product_id)
                .populate_existing()
                .with_for_update()
                .all()
            )
            db_span.set_attribute("db.rows_returned", len(lines))
            return lines

    def item_count(self, db: Session, cart: Cart) -> int:
        """Total quantity in the cart, served from the Redis cache when warm."""
        cached = self.redis_client.get(self._cache_key(cart.id))
        if cached is not None:
            return int(cached)
        return self.refresh_count_cache(cart)

    def purge_expired_guest_carts(self, db: Session, now: Optional[datetime] = None) -> int:
        """
        Delete guest carts past their expiry.

        Returns:
            Number of carts deleted
        """
        now = now or self.clock()
        with self.tracer.start_as_current_span("db.query.purge_guest_carts") as db_span:
            db_span.set_attribute("db.operation", "DELETE")
            db_span.set_attribute("db.table", "carts")

            expired = db.query(Cart).filter(
                Cart.session_id.isnot(None),
                Cart.expires_at < now
            ).all()
            for cart in expired:
                db.delete(cart)
            self._commit(db)

            db_span.set_attribute("db.rows_affected", len(expired))

        for cart in expired:
            self.drop_count_cache(cart)

        if expired:
            guest_carts_expired_counter.add(len(expired), {"trigger": "purge"})
            logger.info("Purged expired guest carts", extra={"count": len(expired)})
        return len(expired)

    def delete_cart(self, db: Session, cart: Cart, commit: bool = True) -> None:
        """Delete a cart and its lines."""
        db.delete(cart)
        if commit:
            self._commit(db)
        self.drop_count_cache(cart)

    def _get_product(self, db: Session, product_id: int) -> Product:
        with self.tracer.start_as_current_span("db.query.get_product") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)

            product = db.get(Product, product_id)
            if product is None:
                db_span.set_attribute("db.rows_returned", 0)
                raise ProductNotFound(product_id)
            db_span.set_attribute("db.rows_returned", 1)
            return product

    @staticmethod
    def _lock_cart(db: Session, cart: Cart) -> None:
        # Line changes on one cart run one at a time; SQLite ignores FOR UPDATE
        db.execute(select(Cart.id).where(Cart.id == cart.id).with_for_update())

    def _insert_line(self, db: Session, cart: Cart, product: Product, quantity: int) -> Tuple[CartItem, bool]:
        """Insert a new line, or return the line a concurrent request inserted for the same product."""
        product_id = product.id
        item = CartItem(
            product_id=product_id,
            quantity=quantity,
            price_at_addition=product.effective_price
        )
        item.product = product
        cart.items.append(item)
        self._touch(cart)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = cart.find_item_for_product(product_id)
            if existing is None:
                raise
            return existing, False
        return item, True

    def _increment_line(self, db: Session, cart: Cart, item: CartItem, quantity: int, stock: int, product_name: str) -> None:
        """Add to a line's stored quantity in one conditional UPDATE, keeping its price."""
        item_id = item.id
        product_id = item.product_id
        result = db.execute(
            update(CartItem)
            .where(CartItem.id == item_id, CartItem.quantity + quantity <= stock)
            .values(quantity=CartItem.quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            current = db.execute(
                select(CartItem.quantity).where(CartItem.id == item_id)
            ).scalar_one_or_none()
            if current is None:
                raise ItemNotFound(item_id, cart.id)
            raise InsufficientStock(product_id, current + quantity, stock, product_name)

        self._touch(cart)
        self._commit(db)
        db.refresh(item)

    @staticmethod
    def _get_item(cart: Cart, item_id: int) -> CartItem:
        for item in cart.items:
            if item.id == item_id:
                return item
        raise ItemNotFound(item_id, cart.id)

    @staticmethod
    def _touch(cart: Cart) -> None:
        cart.updated_at = datetime.utcnow()

    @staticmethod
    def _commit(db: Session) -> None:
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise

    @staticmethod
    def _cache_key(cart_id: int) -> str:
        return f"cart:{cart_id}:count"

    def refresh_count_cache(self, cart: Cart) -> int:
        """Recompute the cached item count for a cart."""
        count = cart.total_items
        cache_key = self._cache_key(cart.id)
        with self.tracer.start_as_current_span("cache.set") as cache_span:
            cache_span.set_attribute("cache.system", "redis")
            cache_span.set_attribute("cache.operation", "SET")
            cache_span.set_attribute("cache.key", cache_key)
            cache_span.set_attribute("cache.ttl", CART_CACHE_TTL_SECONDS)

            self.redis_client.set(cache_key, count, ex=CART_CACHE_TTL_SECONDS)
        return count

    def drop_count_cache(self, cart: Cart) -> None:
        """Delete the cached item count; the next read rebuilds it."""
        cache_key = self._cache_key(cart.id)
        with self.tracer.start_as_current_span("cache.delete") as cache_span:
            cache_span.set_attribute("cache.system", "redis")
            cache_span.set_attribute("cache.operation", "DEL")
            cache_span.set_attribute("cache.key", cache_key)

            self.redis_client.delete(cache_key)
