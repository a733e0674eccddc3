"""Orders API router."""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.auth import SessionUser, get_optional_session, verify_session
from storefront.database import get_db
from storefront.dependencies import get_order_service
from storefront.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    OrderResponse,
    OrdersListResponse,
)
from storefront.services.order_service import OrderService
from storefront.services.pricing import calculate_breakdown

router = APIRouter(tags=["orders"])


@router.post("/orders", response_model=CreateOrderResponse, status_code=201)
async def create_order(
    request: CreateOrderRequest,
    db: Session = Depends(get_db),
    session: Optional[SessionUser] = Depends(get_optional_session),
    order_service: OrderService = Depends(get_order_service)
):
    """Place an order for a signed-in user or a guest."""
    shipping = None
    guest_email = guest_name = None
    if request.shipping_info is not None:
        info = request.shipping_info
        shipping = {
            "street": info.address,
            "city": info.city,
            "state": info.state,
            "postal_code": info.zip_code,
            "country": info.country,
        }
        guest_email, guest_name = info.email, info.full_name

    order = order_service.create_order(
        db,
        request.items,
        shipping,
        session,
        guest_email=guest_email,
        guest_name=guest_name
    )
    return {"order_id": order.id}


@router.post("/checkout", response_model=CheckoutResponse)
async def checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    session: Optional[SessionUser] = Depends(get_optional_session),
    order_service: OrderService = Depends(get_order_service)
):
    """Simplified checkout returning the amount to pay, shipping and tax included."""
    shipping = request.shipping_address.model_dump() if request.shipping_address else None
    guest = request.guest_info

    order = order_service.create_order(
        db,
        request.items,
        shipping,
        session,
        guest_email=guest.email if guest else None,
        guest_name=guest.name if guest else None
    )
    breakdown = calculate_breakdown((line.price, line.quantity) for line in request.items)
    return {"order_id": order.id, "amount": float(breakdown.total)}


@router.get("/orders", response_model=OrdersListResponse)
async def get_orders(
    db: Session = Depends(get_db),
    session: SessionUser = Depends(verify_session),
    order_service: OrderService = Depends(get_order_service)
):
    """Get user's orders - requires authentication."""
    orders = order_service.get_user_orders(db, session.user_id)

    return {"orders": orders}


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    session: Optional[SessionUser] = Depends(get_optional_session),
    order_service: OrderService = Depends(get_order_service)
):
    """Order detail for its owner, or for anyone holding a guest order's id."""
    return order_service.get_order(db, order_id, session)
