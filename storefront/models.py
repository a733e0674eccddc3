"""Database models for the storefront service."""
import enum
import uuid
from datetime import datetime
from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def generate_id() -> str:
    return uuid.uuid4().hex


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class User(Base):
    """Customer or administrator account, owned by the auth provider."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String)
    email = Column(String, unique=True, index=True)
    role = Column(Enum(UserRole, name="user_role"), default=UserRole.USER, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    orders = relationship("Order", back_populates="user")


class Category(Base):
    """Product category."""
    __tablename__ = "categories"

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text)
    image = Column(String)

    products = relationship("Product", back_populates="category")


class Product(Base):
    """Product model."""
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String, index=True, nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    category_id = Column(String, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False)
    images = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", back_populates="products")


class Address(Base):
    """Shipping address, created per order at checkout."""
    __tablename__ = "addresses"

    id = Column(String, primary_key=True, default=generate_id)
    street = Column(String, nullable=False)
    city = Column(String, nullable=False)
    state = Column(String)
    postal_code = Column(String, nullable=False)
    country = Column(String, nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Order(Base):
    """
    Order model.

    An order belongs either to a user or to a guest identified by email,
    never both.
    """
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NOT NULL AND guest_email IS NULL) OR "
            "(user_id IS NULL AND guest_email IS NOT NULL)",
            name="ck_orders_single_owner"
        ),
    )

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    guest_email = Column(String, nullable=True)
    guest_name = Column(String, nullable=True)
    address_id = Column(String, ForeignKey("addresses.id"), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(OrderStatus, name="order_status"), default=OrderStatus.PENDING, nullable=False)
    payment_status = Column(
        Enum(PaymentStatus, name="payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False
    )
    paypal_order_id = Column(String, nullable=True, index=True)
    paypal_capture_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="orders")
    shipping_address = relationship("Address")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    """Order line; price is a snapshot taken when the order was placed."""
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class Cart(Base):
    """Cart model, one per user."""
    __tablename__ = "carts"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan")


class CartItem(Base):
    """Cart item model."""
    __tablename__ = "cart_items"

    id = Column(String, primary_key=True, default=generate_id)
    cart_id = Column(String, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
