"""Pydantic schemas for request/response validation."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import OrderStatus, PaymentStatus


class ProductResponse(BaseModel):
    """Schema for product response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    sku: str
    price: Decimal
    discount_price: Optional[Decimal] = None
    effective_price: Decimal
    stock_quantity: int
    in_stock: bool
    category: Optional[str] = None


class AddToCartRequest(BaseModel):
    """Schema for add to cart request."""
    product_id: int
    quantity: int = Field(1, ge=1)


class UpdateCartItemRequest(BaseModel):
    """Schema for changing a cart line quantity."""
    quantity: int = Field(..., ge=1)


class CartItemResponse(BaseModel):
    """Schema for cart item in response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: Optional[str] = None
    quantity: int
    price_at_addition: Decimal
    line_total: Decimal
    available_stock: Optional[int] = None


class CartResponse(BaseModel):
    """Schema for cart response."""
    id: int
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    items: List[CartItemResponse]
    total_items: int
    subtotal: Decimal
    is_empty: bool
    expires_at: Optional[datetime] = None


class CartCountResponse(BaseModel):
    """Schema for the cart badge count."""
    cart_id: int
    count: int


class CheckoutRequest(BaseModel):
    """Schema for checkout request."""
    shipping_name: str = Field(..., min_length=1, max_length=255)
    shipping_address: str = Field(..., min_length=1, max_length=500)
    shipping_city: str = Field(..., min_length=1, max_length=100)
    shipping_state: Optional[str] = Field(None, max_length=100)
    shipping_postal_code: str = Field(..., min_length=1, max_length=20)
    shipping_country: str = Field(..., min_length=1, max_length=100)
    shipping_phone: Optional[str] = Field(None, max_length=20)
    payment_method: str = Field(..., min_length=1)
    shipping_cost: Decimal = Field(Decimal("0.00"), ge=0)
    notes: Optional[str] = Field(None, max_length=1000)


class OrderItemResponse(BaseModel):
    """Schema for order line in response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: Optional[str] = None
    quantity: int
    price_at_purchase: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    """Schema for order response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    user_id: int
    status: OrderStatus
    subtotal: Decimal
    tax: Decimal
    shipping_cost: Decimal
    discount: Decimal
    total_amount: Decimal
    shipping_name: str
    shipping_address: str
    shipping_city: str
    shipping_state: Optional[str] = None
    shipping_postal_code: str
    shipping_country: str
    shipping_phone: Optional[str] = None
    payment_method: Optional[str] = None
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    items: List[OrderItemResponse]


class OrdersPageResponse(BaseModel):
    """Schema for a page of orders."""
    orders: List[OrderResponse]
    page: int
    size: int
    total: int


class CancelOrderRequest(BaseModel):
    """Schema for order cancellation."""
    reason: Optional[str] = Field(None, max_length=500)


class UpdateOrderStatusRequest(BaseModel):
    """Schema for admin status change."""
    status: OrderStatus
    reason: Optional[str] = Field(None, max_length=500)


class PaymentIntentRequest(BaseModel):
    """Schema for payment intent creation."""
    order_id: int


class PaymentIntentResponse(BaseModel):
    """Schema for payment intent response."""
    client_secret: Optional[str] = None
    payment_intent_id: str
    status: Optional[str] = None
    amount: int
    currency: str


class PaymentConfirmationRequest(BaseModel):
    """Schema for payment confirmation."""
    order_id: int
    payment_intent_id: str


class PaymentStatusResponse(BaseModel):
    """Schema for payment status lookup."""
    payment_intent_id: str
    status: Optional[str] = None


def cart_response(cart) -> CartResponse:
    """Build the cart response from a Cart entity."""
    items = [
        CartItemResponse(
            id=item.id,
            product_id=item.product_id,
            product_name=item.product.name if item.product else None,
            quantity=item.quantity,
            price_at_addition=item.price_at_addition,
            line_total=item.line_total,
            available_stock=item.product.stock_quantity if item.product else None
        )
        for item in cart.items
    ]
    return CartResponse(
        id=cart.id,
        user_id=cart.user_id,
        session_id=cart.session_id,
        items=items,
        total_items=cart.total_items,
        subtotal=cart.subtotal,
        is_empty=cart.is_empty,
        expires_at=cart.expires_at
    )
