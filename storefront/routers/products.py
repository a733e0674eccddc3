"""Catalog API router."""
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.database import get_db
from storefront.dependencies import get_product_service
from storefront.schemas import CategoryResponse, ProductResponse, ProductsPage
from storefront.services.product_service import ProductService

router = APIRouter(tags=["products"])


@router.get("/categories", response_model=List[CategoryResponse])
async def list_categories(
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    return product_service.list_categories(db)


@router.get("/products", response_model=ProductsPage)
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str = "",
    category: str = "",
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    """
    List products with pagination.

    Args:
        page: Page number
        limit: Items per page
        search: Matches product name or description
        category: Category name
        db: Database session

    Returns:
        Products page
    """
    return product_service.list_products(db, page=page, limit=limit, search=search, category=category)


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: str,
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    """Get product by ID."""
    return product_service.get_product(db, product_id)
