"""Order management service."""
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import or_, update
from sqlalchemy.orm import Session, joinedload, selectinload
from opentelemetry import trace

from storefront.auth import SessionUser
from storefront.errors import (
    AuthorizationError,
    ConflictError,
    InsufficientStockError,
    InternalError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from storefront.models import Address, Order, OrderItem, OrderStatus, Product, User
from storefront.schemas import OrderLine
from storefront.services.cart_service import CartService
from storefront.services.pricing import items_total, to_money
from storefront.monitoring import (
    order_amount_histogram,
    order_rejections_counter,
    order_status_changes_counter,
    orders_created_counter,
    price_mismatch_counter,
)

logger = logging.getLogger(__name__)

# Allowed back-office status moves; CANCELLED only before shipping
STATUS_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

ORDER_SORT_COLUMNS = {
    "createdAt": Order.created_at,
    "updatedAt": Order.updated_at,
    "total": Order.total,
    "status": Order.status,
}


def serialize_order(order: Order) -> Dict[str, Any]:
    """Flatten an order with its items and shipping address."""
    user = order.user
    address = order.shipping_address
    return {
        "id": order.id,
        "user_id": order.user_id,
        "guest_email": order.guest_email,
        "guest_name": order.guest_name,
        "customer_name": user.name if user else order.guest_name,
        "customer_email": user.email if user else order.guest_email,
        "total": order.total,
        "status": order.status,
        "payment_status": order.payment_status,
        "paypal_order_id": order.paypal_order_id,
        "created_at": order.created_at,
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product.name if item.product else None,
                "quantity": item.quantity,
                "price": item.price,
            }
            for item in order.items
        ],
        "shipping_address": {
            "id": address.id,
            "street": address.street,
            "city": address.city,
            "state": address.state,
            "postal_code": address.postal_code,
            "country": address.country,
        } if address else None,
    }


def load_authorized_order(
    db: Session,
    order_id: str,
    session: Optional[SessionUser],
    with_items: bool = False
) -> Order:
    """
    Fetch an order the requester may act on.

    The owning user may act on their order; anyone holding the id of a guest
    order may act on it.

    Raises:
        NotFoundError: If the order does not exist
        AuthorizationError: If the order belongs to another user
    """
    query = db.query(Order).filter(Order.id == order_id)
    if with_items:
        query = query.options(selectinload(Order.items).joinedload(OrderItem.product))
    order = query.first()
    if order is None:
        raise NotFoundError("Order not found")

    if order.user_id is not None:
        if session is None or session.user_id != order.user_id:
            logger.warning("Order access denied", extra={
                "order_id": order_id,
                "requester": session.user_id if session else None
            })
            raise AuthorizationError("Order does not belong to requester")
    elif not order.guest_email:
        raise AuthorizationError("Order does not belong to requester")

    return order


class OrderService:
    """Service for placing and managing orders."""

    def __init__(self, cart_service: CartService):
        """
        Initialize order service.

        Args:
            cart_service: Cart service instance
        """
        self.cart_service = cart_service
        self.tracer = trace.get_tracer(__name__)

    def create_order(
        self,
        db: Session,
        items: Sequence[OrderLine],
        shipping: Optional[Dict[str, Any]],
        session: Optional[SessionUser],
        guest_email: Optional[str] = None,
        guest_name: Optional[str] = None
    ) -> Order:
        """
        Validate a cart against live stock and persist it as an order.

        Address, order, order items, stock decrements and cart removal are
        committed together or not at all.

        Args:
            db: Database session
            items: Submitted cart lines (product id, quantity, price)
            shipping: Address fields (street, city, state, postal_code, country)
            session: Authenticated requester, or None for guests
            guest_email: Contact email for guest orders
            guest_name: Contact name for guest orders

        Returns:
            The committed order

        Raises:
            ValidationError: If the cart is empty, shipping or guest email is
                missing, a product does not exist or stock is insufficient
            InternalError: If persisting the order fails unexpectedly
        """
        customer_type = "user" if session else "guest"
        span = trace.get_current_span()
        span.set_attribute("order.customer_type", customer_type)
        span.set_attribute("order.line_count", len(items))

        if not items:
            self._reject("empty_cart", customer_type)
            raise ValidationError("Cart items are required")
        if not shipping:
            self._reject("missing_shipping", customer_type)
            raise ValidationError("Shipping information is required")
        if session is None and not (guest_email or "").strip():
            self._reject("missing_guest_email", customer_type)
            raise ValidationError("Email is required for guest orders")

        requested: Dict[str, int] = {}
        for line in items:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        try:
            products = self._lock_products(db, list(requested))
            self._check_products(products, requested, customer_type)
            self._check_prices(products, items)

            total = to_money(items_total((line.price, line.quantity) for line in items))

            with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
                db_span.set_attribute("db.operation", "INSERT")
                db_span.set_attribute("db.table", "orders")

                address = Address(
                    street=shipping["street"],
                    city=shipping["city"],
                    state=shipping.get("state"),
                    postal_code=shipping["postal_code"],
                    country=shipping["country"],
                    user_id=session.user_id if session else None
                )
                db.add(address)
                db.flush()

                order = Order(
                    address_id=address.id,
                    total=total,
                    status=OrderStatus.PENDING,
                    items=[
                        OrderItem(
                            product_id=line.product_id,
                            quantity=line.quantity,
                            price=to_money(line.price)
                        )
                        for line in items
                    ]
                )
                if session:
                    order.user_id = session.user_id
                else:
                    order.guest_email = guest_email.strip()
                    order.guest_name = guest_name
                db.add(order)

                self._decrement_stock(db, requested)

                if session:
                    self.cart_service.clear_cart(db, session.user_id)

                db.commit()
                db_span.set_attribute("order.id", order.id)
        except StoreError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.exception("Failed to create order", extra={
                "customer_type": customer_type,
                "product_ids": list(requested),
                "error": str(e)
            })
            raise InternalError() from e

        if session:
            self.cart_service.invalidate_cache(session.user_id)

        orders_created_counter.add(1, {"customer_type": customer_type})
        order_amount_histogram.record(float(total), {"customer_type": customer_type})
        logger.info("Order created", extra={
            "order_id": order.id,
            "customer_type": customer_type,
            "total": str(total),
            "item_count": len(items)
        })
        return order

    def _lock_products(self, db: Session, product_ids: List[str]) -> Dict[str, Product]:
        with self.tracer.start_as_current_span("db.query.lock_products") as db_span:
            db_span.set_attribute("db.operation", "SELECT FOR UPDATE")
            db_span.set_attribute("db.table", "products")

            # Lock rows in a fixed order so concurrent checkouts cannot deadlock
            products = (
                db.query(Product)
                .filter(Product.id.in_(product_ids))
                .order_by(Product.id)
                .with_for_update()
                .all()
            )
            db_span.set_attribute("db.rows_returned", len(products))
            return {product.id: product for product in products}

    def _check_products(
        self,
        products: Dict[str, Product],
        requested: Dict[str, int],
        customer_type: str
    ) -> None:
        missing = [product_id for product_id in requested if product_id not in products]
        if missing:
            self._reject("product_not_found", customer_type)
            raise ValidationError(f"Products not found: {', '.join(missing)}")

        insufficient = [
            product_id for product_id, quantity in requested.items()
            if products[product_id].stock < quantity
        ]
        if insufficient:
            self._reject("insufficient_stock", customer_type)
            logger.warning("Order rejected for insufficient stock", extra={
                "product_ids": insufficient
            })
            raise InsufficientStockError(insufficient)

    def _check_prices(self, products: Dict[str, Product], items: Sequence[OrderLine]) -> None:
        # Submitted prices are honoured; divergence from the catalog is only reported
        for line in items:
            catalog_price = to_money(products[line.product_id].price)
            if to_money(line.price) != catalog_price:
                price_mismatch_counter.add(1, {"product_id": line.product_id})
                logger.warning("Submitted price differs from catalog price", extra={
                    "product_id": line.product_id,
                    "submitted_price": str(line.price),
                    "catalog_price": str(catalog_price)
                })

    def _decrement_stock(self, db: Session, requested: Dict[str, int]) -> None:
        for product_id, quantity in requested.items():
            with self.tracer.start_as_current_span("db.query.update_product_stock") as update_span:
                update_span.set_attribute("db.operation", "UPDATE")
                update_span.set_attribute("db.table", "products")
                update_span.set_attribute("product.id", product_id)

                result = db.execute(
                    update(Product)
                    .where(Product.id == product_id, Product.stock >= quantity)
                    .values(stock=Product.stock - quantity)
                    .execution_options(synchronize_session=False)
                )
                update_span.set_attribute("db.rows_affected", result.rowcount)
                if result.rowcount != 1:
                    raise InsufficientStockError([product_id])

    @staticmethod
    def _reject(reason: str, customer_type: str) -> None:
        order_rejections_counter.add(1, {"reason": reason, "customer_type": customer_type})

    def get_order(self, db: Session, order_id: str, session: Optional[SessionUser]) -> Dict[str, Any]:
        """Get an order visible to the requester."""
        order = load_authorized_order(db, order_id, session, with_items=True)
        return serialize_order(order)

    def get_user_orders(self, db: Session, user_id: str) -> List[Dict[str, Any]]:
        """
        Get all orders for a user.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            List of orders, newest first
        """
        with self.tracer.start_as_current_span("db.query.get_user_orders") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("user.id", user_id)

            orders = (
                db.query(Order)
                .options(
                    selectinload(Order.items).joinedload(OrderItem.product),
                    joinedload(Order.shipping_address),
                    joinedload(Order.user)
                )
                .filter(Order.user_id == user_id)
                .order_by(Order.created_at.desc())
                .all()
            )

            db_span.set_attribute("db.rows_returned", len(orders))

            return [serialize_order(order) for order in orders]

    def list_orders(
        self,
        db: Session,
        page: int = 1,
        limit: int = 20,
        search: str = "",
        status: str = "",
        sort: str = "createdAt",
        order: str = "desc",
        date_from: str = "",
        date_to: str = ""
    ) -> Dict[str, Any]:
        """
        Page through orders for the back office.

        Args:
            db: Database session
            page: 1-based page number
            limit: Page size
            search: Matches order id or customer/guest name or email
            status: Order status filter (ignored if unknown)
            sort: createdAt, updatedAt, total or status
            order: asc or desc
            date_from: Inclusive start date (YYYY-MM-DD)
            date_to: Inclusive end date (YYYY-MM-DD)

        Returns:
            Orders with pagination info
        """
        page = max(page, 1)
        limit = max(limit, 1)
        query = db.query(Order).outerjoin(User, Order.user_id == User.id)

        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Order.id.ilike(pattern),
                User.email.ilike(pattern),
                User.name.ilike(pattern),
                Order.guest_email.ilike(pattern),
                Order.guest_name.ilike(pattern),
            ))

        if status in OrderStatus.__members__:
            query = query.filter(Order.status == OrderStatus[status])

        if date_from:
            query = query.filter(Order.created_at >= self._parse_date(date_from))
        if date_to:
            query = query.filter(Order.created_at < self._parse_date(date_to) + timedelta(days=1))

        total_count = query.count()

        sort_column = ORDER_SORT_COLUMNS.get(sort)
        if sort_column is None:
            ordering = Order.created_at.desc()
        else:
            ordering = sort_column.asc() if order == "asc" else sort_column.desc()

        orders = (
            query.options(
                selectinload(Order.items).joinedload(OrderItem.product),
                joinedload(Order.shipping_address),
                joinedload(Order.user)
            )
            .order_by(ordering)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return {
            "orders": [serialize_order(o) for o in orders],
            "total_pages": math.ceil(total_count / limit),
            "total_count": total_count,
            "current_page": page,
        }

    @staticmethod
    def _parse_date(value: str) -> datetime:
        try:
            return datetime.strptime(value, "%Y-%m-%d")
        except ValueError:
            raise ValidationError(f"Invalid date: {value}")

    def update_order_status(self, db: Session, order_id: str, status: OrderStatus) -> Dict[str, Any]:
        """
        Move an order along its fulfilment lifecycle.

        Cancelling returns the order's quantities to stock in the same
        transaction.

        Raises:
            NotFoundError: If the order does not exist
            ConflictError: If the transition is not allowed
        """
        order = (
            db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.id == order_id)
            .with_for_update()
            .first()
        )
        if order is None:
            raise NotFoundError("Order not found")

        previous = order.status
        if status == previous:
            return serialize_order(order)
        if status not in STATUS_TRANSITIONS[previous]:
            db.rollback()
            raise ConflictError(f"Cannot change order status from {previous.value} to {status.value}")

        try:
            order.status = status
            if status == OrderStatus.CANCELLED:
                for item in order.items:
                    db.execute(
                        update(Product)
                        .where(Product.id == item.product_id)
                        .values(stock=Product.stock + item.quantity)
                        .execution_options(synchronize_session=False)
                    )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception("Failed to update order status", extra={
                "order_id": order_id,
                "status": status.value,
                "error": str(e)
            })
            raise InternalError() from e

        order_status_changes_counter.add(1, {"from": previous.value, "to": status.value})
        logger.info("Order status updated", extra={
            "order_id": order_id,
            "from_status": previous.value,
            "to_status": status.value
        })
        return serialize_order(order)
