"""Database connection and session management."""
from decimal import Decimal
from typing import Generator
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config import DATABASE_URL
from models import Base, Product, User

logger = logging.getLogger(__name__)


def build_engine(url: str = DATABASE_URL) -> Engine:
    """Create an engine; pool settings only apply to server databases."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        pool_size=10,  # Moderate pool size for concurrent checkouts
        max_overflow=20,  # Increased overflow for burst traffic
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_timeout=30,  # Wait max 30 seconds for a connection
        echo_pool=False
    )


engine = build_engine()

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def seed_catalog(db: Session) -> None:
    """Insert demo users and products into an empty database."""
    if db.query(Product).count() == 0:
        products = [
            Product(name="Laptop", sku="ELEC-LAPTOP", price=Decimal("999.99"), stock_quantity=50, category="Electronics"),
            Product(name="Smartphone", sku="ELEC-PHONE", price=Decimal("599.99"), discount_price=Decimal("549.99"), stock_quantity=100, category="Electronics"),
            Product(name="Headphones", sku="ELEC-HEADPHONES", price=Decimal("99.99"), stock_quantity=200, category="Electronics"),
            Product(name="Desk Chair", sku="FURN-CHAIR", price=Decimal("199.99"), stock_quantity=30, category="Furniture"),
            Product(name="Monitor", sku="ELEC-MONITOR", price=Decimal("299.99"), stock_quantity=75, category="Electronics"),
            Product(name="Keyboard", sku="ELEC-KEYBOARD", price=Decimal("79.99"), stock_quantity=150, category="Electronics"),
            Product(name="Mouse", sku="ELEC-MOUSE", price=Decimal("29.99"), stock_quantity=300, category="Electronics"),
            Product(name="Webcam", sku="ELEC-WEBCAM", price=Decimal("89.99"), stock_quantity=100, category="Electronics", active=False),
        ]
        db.add_all(products)
        logger.info("Seeded database with sample products")

    if db.query(User).count() == 0:
        db.add_all([
            User(email="user123@example.com", full_name="Demo User"),
            User(email="test@example.com", full_name="Test User"),
        ])
        logger.info("Seeded database with sample users")

    db.commit()


def init_db() -> None:
    """Initialize database tables and seed data."""
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        seed_catalog(db)
    finally:
        db.close()
