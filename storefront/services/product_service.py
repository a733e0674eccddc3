"""Catalog and back-office product management."""
import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from fastapi import UploadFile
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from storefront.config import LOW_STOCK_THRESHOLD
from storefront.errors import NotFoundError, ValidationError
from storefront.models import Category, Product
from storefront.services.media_client import MediaClient
from storefront.services.pricing import to_money

logger = logging.getLogger(__name__)

PRODUCT_SORT_COLUMNS = {
    "createdAt": Product.created_at,
    "updatedAt": Product.updated_at,
    "name": Product.name,
    "price": Product.price,
    "stock": Product.stock,
}


def serialize_product(product: Product) -> Dict[str, Any]:
    category = product.category
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": product.price,
        "stock": product.stock,
        "images": list(product.images or []),
        "category_id": product.category_id,
        "category": {"id": category.id, "name": category.name} if category else None,
        "created_at": product.created_at,
        "updated_at": product.updated_at,
    }


def parse_product_fields(
    name: Optional[str],
    description: Optional[str],
    price: Optional[str],
    category_id: Optional[str],
    stock: Optional[str]
) -> Dict[str, Any]:
    """
    Validate product form fields.

    Raises:
        ValidationError: If a field is missing, price is not positive or
            stock is negative
    """
    try:
        parsed_price = Decimal(price) if price else None
        parsed_stock = int(stock) if stock not in (None, "") else None
    except (InvalidOperation, ValueError):
        raise ValidationError("Missing required fields")

    name = (name or "").strip()
    description = (description or "").strip()
    if (
        not name
        or not description
        or parsed_price is None
        or not parsed_price.is_finite()
        or parsed_price <= 0
        or not category_id
        or parsed_stock is None
        or parsed_stock < 0
    ):
        raise ValidationError("Missing required fields")

    return {
        "name": name,
        "description": description,
        "price": to_money(parsed_price),
        "category_id": category_id,
        "stock": parsed_stock,
    }


class ProductService:
    """Service for browsing and managing products."""

    def __init__(self, media_client: MediaClient):
        self.media_client = media_client

    def list_categories(self, db: Session) -> List[Category]:
        return db.query(Category).order_by(Category.name).all()

    def get_product(self, db: Session, product_id: str) -> Dict[str, Any]:
        product = (
            db.query(Product)
            .options(joinedload(Product.category))
            .filter(Product.id == product_id)
            .first()
        )
        if product is None:
            raise NotFoundError("Product not found")
        return serialize_product(product)

    def list_products(
        self,
        db: Session,
        page: int = 1,
        limit: int = 20,
        search: str = "",
        category: str = "",
        status: str = "",
        sort: str = "createdAt",
        order: str = "desc"
    ) -> Dict[str, Any]:
        """
        Page through products.

        Args:
            db: Database session
            page: 1-based page number
            limit: Page size
            search: Matches name or description
            category: Category name (case-insensitive)
            status: in-stock, low-stock or out-of-stock
            sort: createdAt, updatedAt, name, price or stock
            order: asc or desc

        Returns:
            Products with pagination info
        """
        page = max(page, 1)
        limit = max(limit, 1)
        query = db.query(Product)

        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

        if category:
            query = query.join(Category, Product.category_id == Category.id).filter(
                Category.name.ilike(category)
            )

        if status == "out-of-stock":
            query = query.filter(Product.stock == 0)
        elif status == "low-stock":
            query = query.filter(Product.stock > 0, Product.stock <= LOW_STOCK_THRESHOLD)
        elif status == "in-stock":
            query = query.filter(Product.stock > LOW_STOCK_THRESHOLD)

        total_count = query.count()

        sort_column = PRODUCT_SORT_COLUMNS.get(sort, Product.created_at)
        ordering = sort_column.asc() if order == "asc" else sort_column.desc()
        products = (
            query.options(joinedload(Product.category))
            .order_by(ordering, Product.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return {
            "products": [serialize_product(p) for p in products],
            "total_pages": math.ceil(total_count / limit),
            "total_count": total_count,
            "current_page": page,
        }

    def _require_category(self, db: Session, category_id: str) -> Category:
        category = db.query(Category).filter(Category.id == category_id).first()
        if category is None:
            raise ValidationError("Invalid category")
        return category

    async def _upload_images(self, images: Sequence[UploadFile]) -> List[str]:
        urls = []
        for image in images:
            content = await image.read()
            if not content:
                continue
            urls.append(await self.media_client.upload_image(
                content,
                image.filename or "image",
                image.content_type
            ))
        return urls

    async def create_product(
        self,
        db: Session,
        fields: Dict[str, Any],
        images: Sequence[UploadFile]
    ) -> Dict[str, Any]:
        """
        Create a product, uploading its images to the media host first.

        Args:
            db: Database session
            fields: Output of ``parse_product_fields``
            images: Uploaded image files

        Returns:
            The created product

        Raises:
            ValidationError: If no image is given or the category is unknown
            UpstreamError: If an image upload fails
        """
        images = [image for image in images if image.filename]
        if not images:
            raise ValidationError("At least one image is required")
        self._require_category(db, fields["category_id"])

        image_urls = await self._upload_images(images)
        if not image_urls:
            raise ValidationError("At least one image is required")

        product = Product(images=image_urls, **fields)
        db.add(product)
        db.commit()
        db.refresh(product)

        logger.info("Product created", extra={
            "product_id": product.id,
            "product_name": product.name,
            "image_count": len(image_urls)
        })
        return serialize_product(product)

    async def update_product(
        self,
        db: Session,
        product_id: str,
        fields: Dict[str, Any],
        images: Sequence[UploadFile],
        existing_images: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        """
        Update a product.

        The resulting images are the kept ``existing_images`` followed by the
        new uploads; when neither is given the current images are kept.

        Raises:
            NotFoundError: If the product does not exist
            ValidationError: If the category is unknown
            UpstreamError: If an image upload fails
        """
        product = db.query(Product).filter(Product.id == product_id).first()
        if product is None:
            raise NotFoundError("Product not found")
        self._require_category(db, fields["category_id"])

        uploaded = await self._upload_images([image for image in images if image.filename])
        kept = [url for url in (existing_images or []) if url]
        if kept or uploaded:
            product.images = kept + uploaded

        for key, value in fields.items():
            setattr(product, key, value)
        db.commit()
        db.refresh(product)

        logger.info("Product updated", extra={
            "product_id": product.id,
            "image_count": len(product.images or [])
        })
        return serialize_product(product)
