"""Dependency injection for services."""
from typing import Optional
import redis
import httpx
from fastapi import Depends, Request

from storefront.services.analytics_service import AnalyticsService
from storefront.services.cart_service import CartService
from storefront.services.media_client import MediaClient
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService
from storefront.services.paypal_client import PayPalClient
from storefront.services.product_service import ProductService


def get_redis(request: Request) -> Optional[redis.Redis]:
    """Get Redis client from app state."""
    return getattr(request.app.state, "redis_client", None)


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get HTTP client from app state."""
    return request.app.state.http_client


def get_cart_service(redis_client: Optional[redis.Redis] = Depends(get_redis)) -> CartService:
    """Get cart service instance."""
    return CartService(redis_client)


def get_order_service(cart_service: CartService = Depends(get_cart_service)) -> OrderService:
    """Get order service instance."""
    return OrderService(cart_service)


def get_paypal_client(http_client: httpx.AsyncClient = Depends(get_http_client)) -> PayPalClient:
    """Get PayPal client."""
    return PayPalClient(http_client)


def get_payment_service(paypal_client: PayPalClient = Depends(get_paypal_client)) -> PaymentService:
    """Get payment service instance."""
    return PaymentService(paypal_client)


def get_media_client(http_client: httpx.AsyncClient = Depends(get_http_client)) -> MediaClient:
    """Get media host client."""
    return MediaClient(http_client)


def get_product_service(media_client: MediaClient = Depends(get_media_client)) -> ProductService:
    """Get product service instance."""
    return ProductService(media_client)


def get_analytics_service() -> AnalyticsService:
    return AnalyticsService()
