"""Cart API router."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.auth import SessionUser, verify_session
from storefront.database import get_db
from storefront.dependencies import get_cart_service
from storefront.schemas import AddToCartRequest, CartCountResponse, CartResponse, ReplaceCartRequest
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=CartResponse)
async def get_cart(
    db: Session = Depends(get_db),
    session: SessionUser = Depends(verify_session),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get user's cart - requires authentication."""
    return cart_service.get_cart(db, session.user_id)


@router.put("", response_model=CartResponse)
async def replace_cart(
    request: ReplaceCartRequest,
    db: Session = Depends(get_db),
    session: SessionUser = Depends(verify_session),
    cart_service: CartService = Depends(get_cart_service)
):
    """Replace the cart contents."""
    lines = [(item.product_id, item.quantity) for item in request.items]
    return cart_service.replace_cart(db, session.user_id, lines)


@router.post("/add", response_model=CartResponse)
async def add_to_cart(
    request: AddToCartRequest,
    db: Session = Depends(get_db),
    session: SessionUser = Depends(verify_session),
    cart_service: CartService = Depends(get_cart_service)
):
    """Add item to cart - requires authentication."""
    return cart_service.add_to_cart(
        db=db,
        user_id=session.user_id,
        product_id=request.product_id,
        quantity=request.quantity
    )


@router.get("/count", response_model=CartCountResponse)
async def get_cart_count(
    db: Session = Depends(get_db),
    session: SessionUser = Depends(verify_session),
    cart_service: CartService = Depends(get_cart_service)
):
    return {"user_id": session.user_id, "count": cart_service.get_item_count(db, session.user_id)}
