"""Orders API router."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from database import get_db
from schemas import CancelOrderRequest, CheckoutRequest, OrderResponse, OrdersPageResponse
from auth import get_current_user_email
from dependencies import get_checkout_service, get_order_service
from services.checkout_service import CheckoutDetails, CheckoutService
from services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/checkout", response_model=OrderResponse, status_code=201)
async def checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Turn the user's cart into a PENDING order - requires authentication."""
    details = CheckoutDetails(**request.model_dump())
    return checkout_service.checkout(db, email, details)


@router.get("", response_model=OrdersPageResponse)
async def get_orders(
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    order_service: OrderService = Depends(get_order_service)
):
    """Get user's orders, newest first - requires authentication."""
    orders, total = order_service.list_user_orders(db, email, page, size)
    return OrdersPageResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        page=page,
        size=size,
        total=total
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    order_service: OrderService = Depends(get_order_service)
):
    return order_service.get_order_for_user(db, email, order_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    request: Optional[CancelOrderRequest] = None,
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    order_service: OrderService = Depends(get_order_service)
):
    """Cancel a PENDING or CONFIRMED order and return its stock."""
    reason = request.reason if request else None
    return order_service.cancel_order_by_user(db, email, order_id, reason)
