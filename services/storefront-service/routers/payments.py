"""Payments API router."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from schemas import (
    OrderResponse,
    PaymentConfirmationRequest,
    PaymentIntentRequest,
    PaymentIntentResponse,
    PaymentStatusResponse,
)
from auth import get_current_user_email, verify_token
from dependencies import get_payment_service
from services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/intents", response_model=PaymentIntentResponse, status_code=201)
async def create_payment_intent(
    request: PaymentIntentRequest,
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Create a processor payment intent for one of the user's orders."""
    intent = await payment_service.create_payment_intent(db, request.order_id, email)
    return PaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.payment_intent_id,
        status=intent.status,
        amount=intent.amount,
        currency=intent.currency
    )


@router.post("/confirm", response_model=OrderResponse)
async def confirm_payment(
    request: PaymentConfirmationRequest,
    db: Session = Depends(get_db),
    email: str = Depends(get_current_user_email),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Mark the order paid once the processor reports success."""
    return await payment_service.confirm_payment(db, request.order_id, request.payment_intent_id, email)


@router.get("/{payment_intent_id}/status", response_model=PaymentStatusResponse)
async def get_payment_status(
    payment_intent_id: str,
    token: str = Depends(verify_token),
    payment_service: PaymentService = Depends(get_payment_service)
):
    status = await payment_service.get_payment_status(payment_intent_id)
    return PaymentStatusResponse(payment_intent_id=payment_intent_id, status=status)


@router.post("/{payment_intent_id}/cancel", response_model=PaymentStatusResponse)
async def cancel_payment_intent(
    payment_intent_id: str,
    token: str = Depends(verify_token),
    payment_service: PaymentService = Depends(get_payment_service)
):
    intent = await payment_service.cancel_payment_intent(payment_intent_id)
    return PaymentStatusResponse(payment_intent_id=payment_intent_id, status=intent.get("status"))
