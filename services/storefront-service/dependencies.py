"""Dependency injection for services."""
from typing import Any
import redis
from fastapi import Depends, Request

from services.cart_service import CartService
from services.cart_merger import CartMerger
from services.checkout_service import CheckoutService
from services.inventory_ledger import InventoryLedger
from services.order_service import OrderService
from services.payment_service import PaymentService
from services.external_service import PaymentProcessorClient


def get_redis(request: Request) -> redis.Redis:
    """Get Redis client from app state."""
    return request.app.state.redis_client


def get_http_client(request: Request) -> Any:
    """Get HTTP client from app state."""
    return request.app.state.http_client


def get_inventory_ledger() -> InventoryLedger:
    return InventoryLedger()


def get_cart_service(redis_client: redis.Redis = Depends(get_redis)) -> CartService:
    """Get cart service instance."""
    return CartService(redis_client)


def get_cart_merger(cart_service: CartService = Depends(get_cart_service)) -> CartMerger:
    return CartMerger(cart_service)


def get_checkout_service(
    cart_service: CartService = Depends(get_cart_service),
    inventory: InventoryLedger = Depends(get_inventory_ledger)
) -> CheckoutService:
    """Get checkout service instance."""
    return CheckoutService(cart_service, inventory)


def get_order_service(inventory: InventoryLedger = Depends(get_inventory_ledger)) -> OrderService:
    """Get order service instance."""
    return OrderService(inventory)


def get_payment_processor(http_client: Any = Depends(get_http_client)) -> PaymentProcessorClient:
    """Get payment processor client."""
    return PaymentProcessorClient(http_client)


def get_payment_service(
    order_service: OrderService = Depends(get_order_service),
    processor: PaymentProcessorClient = Depends(get_payment_processor)
) -> PaymentService:
    return PaymentService(order_service, processor)
