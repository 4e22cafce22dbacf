"""Business errors raised by the cart, checkout, order and payment services.

Every error carries a human-readable message, a ``details`` dict with the
entity ids involved, and the HTTP status the API layer reports it with.
"""
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    """
    Base exception for all storefront business errors.

    Attributes:
        message: Human-readable error message
        details: Additional context (entity IDs, states, quantities)
    """

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.__class__.__name__}('{self.message}', {details_str})"
        return f"{self.__class__.__name__}('{self.message}')"


class NotFoundError(StorefrontError):
    """Base class for missing carts, orders, items, products and users."""

    status_code = 404


class CartNotFound(NotFoundError):
    def __init__(self, cart_ref: Any):
        super().__init__(f"Cart not found: {cart_ref}", details={"cart": cart_ref})


class ItemNotFound(NotFoundError):
    """Raised when a cart item does not exist or belongs to another cart."""

    def __init__(self, item_id: int, cart_id: int):
        super().__init__(
            f"Cart item {item_id} not found in cart {cart_id}",
            details={"item_id": item_id, "cart_id": cart_id}
        )
        self.item_id = item_id
        self.cart_id = cart_id


class ProductNotFound(NotFoundError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", details={"product_id": product_id})
        self.product_id = product_id


class OrderNotFound(NotFoundError):
    def __init__(self, order_ref: Any):
        super().__init__(f"Order not found: {order_ref}", details={"order": order_ref})


class UserNotFound(NotFoundError):
    def __init__(self, email: str):
        super().__init__(f"User not found: {email}", details={"email": email})
        self.email = email


class InsufficientStock(StorefrontError):
    """Raised when a requested quantity exceeds the available stock."""

    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int, product_name: Optional[str] = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available}",
            details={"product_id": product_id, "requested": requested, "available": available}
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ProductUnavailable(StorefrontError):
    status_code = 409

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} is not available", details={"product_id": product_id})
        self.product_id = product_id


class InvalidQuantity(StorefrontError):
    def __init__(self, quantity: int):
        super().__init__(
            f"Quantity must be at least 1, got {quantity}",
            details={"quantity": quantity}
        )


class EmptyCart(StorefrontError):
    def __init__(self, cart_id: int):
        super().__init__("Cannot create order from empty cart", details={"cart_id": cart_id})


class InvalidTransition(StorefrontError):
    """Raised when an order cannot move from its current status to the requested one."""

    status_code = 409

    def __init__(self, order_id: int, current_status: str, requested_status: str):
        super().__init__(
            f"Order {order_id} cannot move from {current_status} to {requested_status}",
            details={
                "order_id": order_id,
                "current_status": current_status,
                "requested_status": requested_status
            }
        )
        self.current_status = current_status
        self.requested_status = requested_status


class Forbidden(StorefrontError):
    """Raised when the requesting identity does not own the resource."""

    status_code = 403


class AlreadyPaid(StorefrontError):
    status_code = 409

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} is already paid", details={"order_id": order_id})


class PaymentNotSuccessful(StorefrontError):
    """The processor reported a payment status other than succeeded."""

    status_code = 402

    def __init__(self, payment_intent_id: str, processor_status: str):
        super().__init__(
            f"Payment not successful. Status: {processor_status}",
            details={"payment_intent_id": payment_intent_id, "status": processor_status}
        )
        self.processor_status = processor_status


class PaymentProcessorError(StorefrontError):
    """Wraps a failed call to the external payment processor."""

    status_code = 502

    def __init__(self, operation: str, error: Exception):
        super().__init__(
            f"Payment processor error during {operation}: {error}",
            details={"operation": operation}
        )


class PaymentIntentMismatch(StorefrontError):
    """The payment intent was not issued for this order."""

    status_code = 409

    def __init__(self, order_id: int, payment_intent_id: str):
        super().__init__(
            f"Payment intent {payment_intent_id} does not belong to order {order_id}",
            details={"order_id": order_id, "payment_intent_id": payment_intent_id}
        )
        self.payment_intent_id = payment_intent_id
