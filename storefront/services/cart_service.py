"""Cart management service."""
import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
import redis
from opentelemetry import trace

from storefront.errors import NotFoundError
from storefront.models import Cart, CartItem, Product

logger = logging.getLogger(__name__)

CART_CACHE_TTL_SECONDS = 3600


class CartService:
    """
    Service for managing shopping carts.

    A cart is a single row per user; writes replace or extend it with
    last-write-wins semantics. Stock is not checked here, only when an order
    is placed.
    """

    def __init__(self, redis_client: Optional[redis.Redis]):
        """
        Initialize cart service.

        Args:
            redis_client: Redis client for the item-count cache
        """
        self.redis_client = redis_client
        self.tracer = trace.get_tracer(__name__)

    @staticmethod
    def _cache_key(user_id: str) -> str:
        return f"cart:{user_id}"

    def _get_or_create_cart(self, db: Session, user_id: str) -> Cart:
        cart = db.query(Cart).filter(Cart.user_id == user_id).first()
        if cart is None:
            cart = Cart(user_id=user_id)
            db.add(cart)
        return cart

    def _require_product(self, db: Session, product_id: str) -> Product:
        with self.tracer.start_as_current_span("db.query.get_product") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)

            product = db.query(Product).filter(Product.id == product_id).first()
            if product is None:
                db_span.set_attribute("db.rows_returned", 0)
                raise NotFoundError(f"Product not found: {product_id}")
            db_span.set_attribute("db.rows_returned", 1)
            return product

    def add_to_cart(
        self,
        db: Session,
        user_id: str,
        product_id: str,
        quantity: int
    ) -> Dict[str, Any]:
        """
        Add item to user's cart, incrementing an existing line.

        Args:
            db: Database session
            user_id: User identifier
            product_id: Product identifier
            quantity: Quantity to add

        Returns:
            Updated cart contents

        Raises:
            NotFoundError: If product not found
        """
        product = self._require_product(db, product_id)
        cart = self._get_or_create_cart(db, user_id)

        line = next((item for item in cart.items if item.product_id == product_id), None)
        if line is None:
            cart.items.append(CartItem(product_id=product_id, quantity=quantity))
        else:
            line.quantity += quantity
        db.commit()

        self._cache_count(user_id, sum(item.quantity for item in cart.items))

        logger.info("Added product to cart", extra={
            "user_id": user_id,
            "product_id": product_id,
            "product_name": product.name,
            "quantity": quantity
        })
        return self.get_cart(db, user_id)

    def replace_cart(
        self,
        db: Session,
        user_id: str,
        lines: List[Tuple[str, int]]
    ) -> Dict[str, Any]:
        """
        Replace the whole cart with the given (product id, quantity) lines.

        Raises:
            NotFoundError: If any product is unknown
        """
        for product_id, _ in lines:
            self._require_product(db, product_id)

        cart = self._get_or_create_cart(db, user_id)
        cart.items.clear()
        merged: Dict[str, int] = {}
        for product_id, quantity in lines:
            merged[product_id] = merged.get(product_id, 0) + quantity
        for product_id, quantity in merged.items():
            cart.items.append(CartItem(product_id=product_id, quantity=quantity))
        db.commit()

        self._cache_count(user_id, sum(merged.values()))
        return self.get_cart(db, user_id)

    def get_cart(self, db: Session, user_id: str) -> Dict[str, Any]:
        """
        Get user's cart contents.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            Cart contents with items and total
        """
        with self.tracer.start_as_current_span("db.query.get_cart_items") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)

            cart = db.query(Cart).filter(Cart.user_id == user_id).first()
            cart_items = list(cart.items) if cart else []

            db_span.set_attribute("db.rows_returned", len(cart_items))

        items = []
        total = 0.0
        for item in cart_items:
            product = item.product
            if product is None:
                continue
            subtotal = float(product.price) * item.quantity
            total += subtotal
            items.append({
                "id": item.id,
                "product_id": product.id,
                "product_name": product.name,
                "price": float(product.price),
                "quantity": item.quantity,
                "subtotal": subtotal
            })

        return {
            "user_id": user_id,
            "items": items,
            "total": total
        }

    def get_item_count(self, db: Session, user_id: str) -> int:
        """Number of units in the cart, served from cache when possible."""
        cache_key = self._cache_key(user_id)
        if self.redis_client is not None:
            try:
                cached = self.redis_client.get(cache_key)
                if cached is not None:
                    return int(cached)
            except redis.RedisError as e:
                logger.warning("Cart cache read failed", extra={"user_id": user_id, "error": str(e)})

        cart = db.query(Cart).filter(Cart.user_id == user_id).first()
        count = sum(item.quantity for item in cart.items) if cart else 0
        self._cache_count(user_id, count)
        return count

    def clear_cart(self, db: Session, user_id: str) -> bool:
        """
        Delete user's cart within the caller's transaction.

        Missing carts are not an error.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            True if a cart was deleted
        """
        with self.tracer.start_as_current_span("db.query.delete_cart") as db_span:
            db_span.set_attribute("db.operation", "DELETE")
            db_span.set_attribute("db.table", "carts")
            db_span.set_attribute("user.id", user_id)

            cart = db.query(Cart).filter(Cart.user_id == user_id).first()
            if cart is None:
                db_span.set_attribute("db.rows_affected", 0)
                return False

            db.delete(cart)
            db_span.set_attribute("db.rows_affected", 1)
            return True

    def invalidate_cache(self, user_id: str) -> None:
        """Drop the cached item count for a user."""
        if self.redis_client is None:
            return
        cache_key = self._cache_key(user_id)
        with self.tracer.start_as_current_span("cache.delete") as cache_span:
            cache_span.set_attribute("cache.system", "redis")
            cache_span.set_attribute("cache.operation", "DELETE")
            cache_span.set_attribute("cache.key", cache_key)
            try:
                self.redis_client.delete(cache_key)
            except redis.RedisError as e:
                logger.warning("Cart cache invalidation failed", extra={"user_id": user_id, "error": str(e)})

    def _cache_count(self, user_id: str, count: int) -> None:
        if self.redis_client is None:
            return
        cache_key = self._cache_key(user_id)
        with self.tracer.start_as_current_span("cache.set") as cache_span:
            cache_span.set_attribute("cache.system", "redis")
            cache_span.set_attribute("cache.operation", "SET")
            cache_span.set_attribute("cache.key", cache_key)
            cache_span.set_attribute("cache.ttl", CART_CACHE_TTL_SECONDS)
            try:
                self.redis_client.set(cache_key, count, ex=CART_CACHE_TTL_SECONDS)
            except redis.RedisError as e:
                logger.warning("Cart cache write failed", extra={"user_id": user_id, "error": str(e)})
