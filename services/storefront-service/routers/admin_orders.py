"""Admin order management router."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from database import get_db
from models import OrderStatus
from schemas import CancelOrderRequest, OrderResponse, OrdersPageResponse, UpdateOrderStatusRequest
from auth import require_admin
from dependencies import get_cart_service, get_order_service
from services.cart_service import CartService
from services.order_service import OrderService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/orders", response_model=OrdersPageResponse)
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    """All orders, newest first, optionally filtered by status."""
    orders, total = order_service.list_orders(db, status, page, size)
    return OrdersPageResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        page=page,
        size=size,
        total=total
    )


@router.get("/orders/number/{order_number}", response_model=OrderResponse)
async def get_order_by_number(
    order_number: str,
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    return order_service.get_order_by_number(db, order_number)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    return order_service.get_order(db, order_id)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    request: UpdateOrderStatusRequest,
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    """Move an order along its lifecycle."""
    return order_service.update_status(db, order_id, request.status, request.reason)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    request: Optional[CancelOrderRequest] = None,
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    reason = request.reason if request else None
    return order_service.cancel_order(db, order_id, reason)


@router.post("/carts/purge-expired")
async def purge_expired_guest_carts(
    db: Session = Depends(get_db),
    cart_service: CartService = Depends(get_cart_service)
):
    """Delete every guest cart past its expiry."""
    return {"deleted": cart_service.purge_expired_guest_carts(db)}
