"""Payment provider bridge router."""
from typing import Optional
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.auth import SessionUser, get_optional_session
from storefront.database import get_db
from storefront.dependencies import get_payment_service
from storefront.schemas import (
    CaptureProviderOrderRequest,
    CaptureProviderOrderResponse,
    CreateProviderOrderRequest,
    CreateProviderOrderResponse,
)
from storefront.services.payment_service import PaymentService

router = APIRouter(prefix="/payment-provider", tags=["payments"])


@router.post("/create-order", response_model=CreateProviderOrderResponse)
async def create_provider_order(
    body: CreateProviderOrderRequest,
    request: Request,
    db: Session = Depends(get_db),
    session: Optional[SessionUser] = Depends(get_optional_session),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Create a PayPal order for a placed order."""
    return await payment_service.create_provider_order(
        db,
        body.order_id,
        body.amount,
        session,
        base_url=str(request.base_url)
    )


@router.post(
    "/capture-order",
    response_model=CaptureProviderOrderResponse,
    response_model_exclude_none=True
)
async def capture_provider_order(
    body: CaptureProviderOrderRequest,
    db: Session = Depends(get_db),
    session: Optional[SessionUser] = Depends(get_optional_session),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Capture an approved PayPal order and record the payment outcome."""
    return await payment_service.capture_provider_order(
        db,
        body.provider_order_id,
        body.order_id,
        session
    )
