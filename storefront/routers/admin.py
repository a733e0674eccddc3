"""Back-office API router. Every route requires an admin session."""
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from storefront.auth import require_admin
from storefront.database import get_db
from storefront.dependencies import get_analytics_service, get_order_service, get_product_service
from storefront.schemas import (
    AnalyticsResponse,
    OrderResponse,
    OrdersPage,
    OrdersStatsResponse,
    ProductMutationResponse,
    ProductsPage,
    ProductsStatsResponse,
    UpdateOrderStatusRequest,
)
from storefront.services.analytics_service import AnalyticsService
from storefront.services.order_service import OrderService
from storefront.services.product_service import ProductService, parse_product_fields

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# Products

@router.post("/products", response_model=ProductMutationResponse, status_code=201)
async def create_product(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    category_id: Optional[str] = Form(None, alias="categoryId"),
    stock: Optional[str] = Form(None),
    images: List[UploadFile] = File([]),
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    """
    Create a product from a multipart form.

    Images are uploaded to the media host before the product is stored.
    """
    fields = parse_product_fields(name, description, price, category_id, stock)
    product = await product_service.create_product(db, fields, images)
    return {"message": "Product created successfully", "product": product}


@router.get("/products", response_model=ProductsPage)
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    category: str = "",
    status: str = "",
    sort: str = "createdAt",
    order: str = "desc",
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    return product_service.list_products(
        db,
        page=page,
        limit=limit,
        search=search,
        category=category,
        status=status,
        sort=sort,
        order=order
    )


@router.get("/products/stats", response_model=ProductsStatsResponse)
async def products_stats(
    db: Session = Depends(get_db),
    analytics_service: AnalyticsService = Depends(get_analytics_service)
):
    return analytics_service.get_products_stats(db)


@router.patch("/products/{product_id}", response_model=ProductMutationResponse)
async def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    category_id: Optional[str] = Form(None, alias="categoryId"),
    stock: Optional[str] = Form(None),
    existing_images: List[str] = Form([], alias="existingImages"),
    images: List[UploadFile] = File([]),
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    """Update a product; kept images come first, new uploads are appended."""
    fields = parse_product_fields(name, description, price, category_id, stock)
    product = await product_service.update_product(db, product_id, fields, images, existing_images)
    return {"message": "Product updated successfully", "product": product}


# Orders

@router.get("/orders", response_model=OrdersPage)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    status: str = "",
    sort: str = "createdAt",
    order: str = "desc",
    date_from: str = Query("", alias="dateFrom"),
    date_to: str = Query("", alias="dateTo"),
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    """
    Search and page through all orders.

    Args:
        search: Order id, customer or guest name/email
        status: Order status
        sort: createdAt, updatedAt, total or status
        order: asc or desc
        date_from: Inclusive start date (YYYY-MM-DD)
        date_to: Inclusive end date (YYYY-MM-DD)
    """
    return order_service.list_orders(
        db,
        page=page,
        limit=limit,
        search=search,
        status=status,
        sort=sort,
        order=order,
        date_from=date_from,
        date_to=date_to
    )


@router.get("/orders/stats", response_model=OrdersStatsResponse)
async def orders_stats(
    db: Session = Depends(get_db),
    analytics_service: AnalyticsService = Depends(get_analytics_service)
):
    return analytics_service.get_orders_stats(db)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    """Advance an order's fulfilment status; cancelling restocks its items."""
    return order_service.update_order_status(db, order_id, request.status)


# Dashboard

@router.get("/analytics", response_model=AnalyticsResponse)
async def analytics(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    analytics_service: AnalyticsService = Depends(get_analytics_service)
):
    """Revenue trend, status breakdown and recent orders for the dashboard."""
    return {
        "revenue": analytics_service.get_revenue_data(db, days=days),
        "order_stats": analytics_service.get_order_status_breakdown(db),
        "recent_orders": analytics_service.get_recent_orders(db),
    }
