"""Cart API routers: authenticated user carts and guest session carts."""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Response
from sqlalchemy.orm import Session

from database import get_db
from schemas import (
    AddToCartRequest,
    CartCountResponse,
    CartResponse,
    UpdateCartItemRequest,
    cart_response,
)
from auth import get_current_user_email
from dependencies import get_cart_service, get_cart_merger
from services.cart_service import CartOwner, CartService
from services.cart_merger import CartMerger

SESSION_HEADER = "X-Session-Id"

router = APIRouter(prefix="/cart", tags=["cart"])
guest_router = APIRouter(prefix="/guest/cart", tags=["guest-cart"])


def _user_cart(db: Session, cart_service: CartService, email: str):
    return cart_service.get_or_create(db, CartOwner.user(email))


@router.get("", response_model=CartResponse)
async def get_cart(
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get user's cart - requires authentication."""
    return cart_response(_user_cart(db, cart_service, email))


@router.get("/count", response_model=CartCountResponse)
async def get_cart_count(
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    cart_service: CartService = Depends(get_cart_service)
):
    """Item count badge for the user's cart."""
    cart = _user_cart(db, cart_service, email)
    return CartCountResponse(cart_id=cart.id, count=cart_service.item_count(db, cart))


@router.post("/items", response_model=CartResponse, status_code=201)
async def add_to_cart(
    request: AddToCartRequest,
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    cart_service: CartService = Depends(get_cart_service)
):
    """Add item to cart - requires authentication."""
    cart = _user_cart(db, cart_service, email)
    cart_service.add_item(db, cart, request.product_id, request.quantity)
    return cart_response(cart)


@router.put("/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: int,
    request: UpdateCartItemRequest,
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = _user_cart(db, cart_service, email)
    cart_service.update_item_quantity(db, cart, item_id, request.quantity)
    return cart_response(cart)


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: int,
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = _user_cart(db, cart_service, email)
    cart_service.remove_item(db, cart, item_id)
    return cart_response(cart)


@router.delete("", response_model=CartResponse)
async def clear_cart(
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = _user_cart(db, cart_service, email)
    cart_service.clear(db, cart)
    return cart_response(cart)


@router.post("/merge", response_model=CartResponse)
async def merge_guest_cart(
    session_id: str = Header(..., alias=SESSION_HEADER),
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    merger: CartMerger = Depends(get_cart_merger)
):
    """Fold the guest cart identified by the session header into the user's cart."""
    return cart_response(merger.merge(db, session_id, email))


def _guest_cart(db: Session, cart_service: CartService, session_id: Optional[str], response: Response):
    cart = cart_service.get_or_create(db, CartOwner.guest(session_id))
    response.headers[SESSION_HEADER] = cart.session_id
    return cart


@guest_router.get("", response_model=CartResponse)
async def get_guest_cart(
    response: Response,
    session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
    db: Session = Depends(get_db),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get the guest cart, issuing a new session token when none is sent."""
    return cart_response(_guest_cart(db, cart_service, session_id, response))


@guest_router.post("/items", response_model=CartResponse, status_code=201)
async def add_to_guest_cart(
    request: AddToCartRequest,
    response: Response,
    session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
    db: Session = Depends(get_db),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = _guest_cart(db, cart_service, session_id, response)
    cart_service.add_item(db, cart, request.product_id, request.quantity)
    return cart_response(cart)


@guest_router.put("/items/{item_id}", response_model=CartResponse)
async def update_guest_cart_item(
    item_id: int,
    request: UpdateCartItemRequest,
    response: Response,
    session_id: str = Header(..., alias=SESSION_HEADER),
    db: Session = Depends(get_db),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = _guest_cart(db, cart_service, session_id, response)
    cart_service.update_item_quantity(db, cart, item_id, request.quantity)
    return cart_response(cart)


@guest_router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_guest_cart_item(
    item_id: int,
    response: Response,
    session_id: str = Header(..., alias=SESSION_HEADER),
    db: Session = Depends(get_db),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = _guest_cart(db, cart_service, session_id, response)
    cart_service.remove_item(db, cart, item_id)
    return cart_response(cart)


@guest_router.delete("", response_model=CartResponse)
async def clear_guest_cart(
    response: Response,
    session_id: str = Header(..., alias=SESSION_HEADER),
    db: Session = Depends(get_db),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = _guest_cart(db, cart_service, session_id, response)
    cart_service.clear(db, cart)
    return cart_response(cart)
