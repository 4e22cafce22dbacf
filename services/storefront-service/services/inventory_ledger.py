"""Inventory ledger: the only writer of product stock quantities."""
import logging
from sqlalchemy import select, update
from sqlalchemy.orm import Session
from opentelemetry import trace

from exceptions import InsufficientStock, ProductNotFound
from models import Product
from monitoring import stock_conflicts_counter, stock_restorations_counter

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Stock counter per product.

    Every change is a single conditional UPDATE so concurrent checkouts
    serialize on the product row instead of racing a read-then-write.
    The ledger never commits; the caller owns the transaction.
    """

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def available(self, db: Session, product_id: int) -> int:
        """
        Read the current stock for a product.

        Raises:
            ProductNotFound: If the product does not exist
        """
        stock = db.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        ).scalar_one_or_none()
        if stock is None:
            raise ProductNotFound(product_id)
        return stock

    def reserve(self, db: Session, product_id: int, quantity: int, product_name: str = None) -> None:
        """
        Decrement stock by ``quantity`` only if at least that much is left.

        Args:
            db: Database session (inside the caller's transaction)
            product_id: Product identifier
            quantity: Units to take
            product_name: Name used in the error message

        Raises:
            InsufficientStock: If stock is lower than ``quantity``
            ProductNotFound: If the product does not exist
        """
        with self.tracer.start_as_current_span("db.query.reserve_stock") as db_span:
            db_span.set_attribute("db.operation", "UPDATE")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)
            db_span.set_attribute("quantity", quantity)

            result = db.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock_quantity >= quantity)
                .values(stock_quantity=Product.stock_quantity - quantity)
                .execution_options(synchronize_session=False)
            )
            db_span.set_attribute("db.rows_affected", result.rowcount)
            self._expire_cached_stock(db, product_id)

            if result.rowcount == 1:
                return

            available = self.available(db, product_id)
            stock_conflicts_counter.add(1, {"product_id": str(product_id)})
            logger.warning("Stock reservation rejected", extra={
                "product_id": product_id,
                "requested": quantity,
                "available": available
            })
            raise InsufficientStock(product_id, quantity, available, product_name)

    def restore(self, db: Session, product_id: int, quantity: int) -> None:
        """
        Put ``quantity`` units back into stock.

        Raises:
            ProductNotFound: If the product does not exist
        """
        with self.tracer.start_as_current_span("db.query.restore_stock") as db_span:
            db_span.set_attribute("db.operation", "UPDATE")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)
            db_span.set_attribute("quantity", quantity)

            result = db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock_quantity=Product.stock_quantity + quantity)
                .execution_options(synchronize_session=False)
            )
            db_span.set_attribute("db.rows_affected", result.rowcount)
            self._expire_cached_stock(db, product_id)
            if result.rowcount != 1:
                raise ProductNotFound(product_id)

        stock_restorations_counter.add(quantity, {"product_id": str(product_id)})

    @staticmethod
    def _expire_cached_stock(db: Session, product_id: int) -> None:
        # Loaded Product instances must re-read stock after a bulk UPDATE
        cached = db.identity_map.get(Session.identity_key(Product, product_id))
        if cached is not None:
            db.expire(cached, ["stock_quantity"])
