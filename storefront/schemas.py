"""Pydantic schemas for request/response validation."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storefront.models import OrderStatus, PaymentStatus


class CamelModel(BaseModel):
    """Base schema exchanged as camelCase JSON."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True
    )


# Catalog

class CategoryResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    image: Optional[str] = None


class CategorySummary(CamelModel):
    id: str
    name: str


class ProductResponse(CamelModel):
    """Schema for product response."""
    id: str
    name: str
    description: Optional[str] = None
    price: float
    stock: int
    images: List[str] = []
    category_id: str
    category: Optional[CategorySummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductsPage(CamelModel):
    products: List[ProductResponse]
    total_pages: int
    total_count: int
    current_page: int


class ProductMutationResponse(CamelModel):
    message: str
    product: ProductResponse


class ProductsStatsResponse(CamelModel):
    total_products: int
    total_value: float
    low_stock: int
    out_of_stock: int
    average_price: float
    categories_count: int
    recent_products: int


# Cart

class CartLine(CamelModel):
    product_id: str
    quantity: int = Field(gt=0)


class AddToCartRequest(CartLine):
    """Schema for add to cart request."""


class ReplaceCartRequest(CamelModel):
    items: List[CartLine] = []


class CartItemResponse(CamelModel):
    """Schema for cart item in response."""
    id: str
    product_id: str
    product_name: str
    price: float
    quantity: int
    subtotal: float


class CartResponse(CamelModel):
    """Schema for cart response."""
    user_id: str
    items: List[CartItemResponse]
    total: float


class CartCountResponse(CamelModel):
    user_id: str
    count: int


# Order intake

class OrderLine(CamelModel):
    """Cart line submitted at checkout."""
    product_id: str = Field(validation_alias=AliasChoices("productId", "product_id", "id"))
    quantity: int = Field(gt=0)
    price: Decimal = Field(ge=0)


class ShippingInfo(CamelModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    address: str
    city: str
    state: Optional[str] = None
    zip_code: str
    country: str


class CreateOrderRequest(CamelModel):
    items: List[OrderLine] = []
    shipping_info: Optional[ShippingInfo] = None
    total: Optional[Decimal] = None


class CreateOrderResponse(CamelModel):
    order_id: str


class ShippingAddress(CamelModel):
    street: str
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str


class GuestInfo(CamelModel):
    email: Optional[str] = None
    name: Optional[str] = None


class CheckoutRequest(CamelModel):
    """Schema for the simplified checkout request."""
    items: List[OrderLine] = []
    shipping_address: Optional[ShippingAddress] = None
    guest_info: Optional[GuestInfo] = None


class CheckoutResponse(CamelModel):
    """Schema for checkout response."""
    order_id: str
    amount: float


class OrderItemResponse(CamelModel):
    id: str
    product_id: str
    product_name: Optional[str] = None
    quantity: int
    price: float


class AddressResponse(CamelModel):
    id: str
    street: str
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str


class OrderResponse(CamelModel):
    """Schema for order response."""
    id: str
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    guest_name: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    total: float
    status: OrderStatus
    payment_status: PaymentStatus
    paypal_order_id: Optional[str] = None
    created_at: datetime
    items: List[OrderItemResponse] = []
    shipping_address: Optional[AddressResponse] = None


class OrdersListResponse(CamelModel):
    """Schema for orders list response."""
    orders: List[OrderResponse]


class OrdersPage(CamelModel):
    orders: List[OrderResponse]
    total_pages: int
    total_count: int
    current_page: int


class UpdateOrderStatusRequest(CamelModel):
    status: OrderStatus


class OrdersStatsResponse(CamelModel):
    total_orders: int
    pending_orders: int
    processing_orders: int
    shipped_orders: int
    delivered_orders: int
    cancelled_orders: int
    total_revenue: float
    monthly_revenue: float
    average_order_value: float
    total_customers: int
    revenue_growth: float
    orders_growth: float


# Payment provider bridge

class CreateProviderOrderRequest(CamelModel):
    order_id: Optional[str] = None
    amount: Optional[Decimal] = None


class CreateProviderOrderResponse(CamelModel):
    id: str


class CaptureProviderOrderRequest(CamelModel):
    provider_order_id: Optional[str] = Field(default=None, alias="orderID")
    order_id: Optional[str] = None


class CaptureProviderOrderResponse(CamelModel):
    status: str
    capture_id: Optional[str] = None
    message: Optional[str] = None


# Analytics

class RevenuePoint(CamelModel):
    date: str
    revenue: float


class StatusCount(CamelModel):
    name: OrderStatus
    value: int


class RecentOrder(CamelModel):
    id: str
    total: float
    status: OrderStatus
    created_at: datetime
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None


class AnalyticsResponse(CamelModel):
    revenue: List[RevenuePoint]
    order_stats: List[StatusCount]
    recent_orders: List[RecentOrder]
