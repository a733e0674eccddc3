"""Read-only aggregate queries for the admin dashboard."""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from storefront.config import LOW_STOCK_THRESHOLD
from storefront.models import Order, OrderStatus, Product, User

logger = logging.getLogger(__name__)


def _growth(current: float, previous: float) -> float:
    """Percentage change versus the previous period; 0 without a baseline."""
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def _month_bounds(now: datetime):
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start_of_last_month = (start_of_month - timedelta(days=1)).replace(day=1)
    return start_of_month, start_of_last_month


class AnalyticsService:
    """Dashboard statistics over orders and products."""

    def _revenue(self, db: Session, *criteria) -> float:
        total = (
            db.query(func.sum(Order.total))
            .filter(Order.status != OrderStatus.CANCELLED, *criteria)
            .scalar()
        )
        return float(total or 0)

    def get_orders_stats(self, db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Order counts, revenue and month-over-month growth.

        Revenue excludes cancelled orders.

        Args:
            db: Database session
            now: Reference time (defaults to current UTC time)

        Returns:
            Dashboard order statistics
        """
        now = now or datetime.utcnow()
        start_of_month, start_of_last_month = _month_bounds(now)

        counts = dict(
            db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
        )
        total_orders = sum(counts.values())

        total_revenue = self._revenue(db)
        monthly_revenue = self._revenue(db, Order.created_at >= start_of_month)
        last_month_revenue = self._revenue(
            db,
            Order.created_at >= start_of_last_month,
            Order.created_at < start_of_month
        )

        this_month_orders = db.query(Order).filter(Order.created_at >= start_of_month).count()
        last_month_orders = db.query(Order).filter(
            Order.created_at >= start_of_last_month,
            Order.created_at < start_of_month
        ).count()

        return {
            "total_orders": total_orders,
            "pending_orders": counts.get(OrderStatus.PENDING, 0),
            "processing_orders": counts.get(OrderStatus.PROCESSING, 0),
            "shipped_orders": counts.get(OrderStatus.SHIPPED, 0),
            "delivered_orders": counts.get(OrderStatus.DELIVERED, 0),
            "cancelled_orders": counts.get(OrderStatus.CANCELLED, 0),
            "total_revenue": total_revenue,
            "monthly_revenue": monthly_revenue,
            "average_order_value": total_revenue / total_orders if total_orders else 0.0,
            "total_customers": db.query(User).count(),
            "revenue_growth": _growth(monthly_revenue, last_month_revenue),
            "orders_growth": _growth(this_month_orders, last_month_orders),
        }

    def get_revenue_data(self, db: Session, days: int = 30, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Daily revenue from delivered orders over the last ``days`` days.

        Returns:
            ``[{"date": "Mar 4", "revenue": 12.5}, ...]`` in date order
        """
        now = now or datetime.utcnow()
        start_date = now.replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=days)

        orders = (
            db.query(Order.total, Order.created_at)
            .filter(
                Order.status == OrderStatus.DELIVERED,
                Order.created_at >= start_date,
                Order.created_at <= now
            )
            .order_by(Order.created_at.asc())
            .all()
        )

        daily: Dict[str, Decimal] = {}
        for total, created_at in orders:
            label = f"{created_at:%b} {created_at.day}"
            daily[label] = daily.get(label, Decimal("0")) + Decimal(total)

        return [{"date": date, "revenue": float(revenue)} for date, revenue in daily.items()]

    def get_order_status_breakdown(self, db: Session, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Order counts per status over the last 30 days."""
        now = now or datetime.utcnow()
        rows = (
            db.query(Order.status, func.count(Order.id))
            .filter(Order.created_at >= now - timedelta(days=30), Order.created_at <= now)
            .group_by(Order.status)
            .all()
        )
        return [{"name": status, "value": count} for status, count in rows]

    def get_recent_orders(self, db: Session, limit: int = 5) -> List[Dict[str, Any]]:
        orders = (
            db.query(Order)
            .options(joinedload(Order.user))
            .order_by(Order.created_at.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "id": order.id,
                "total": order.total,
                "status": order.status,
                "created_at": order.created_at,
                "customer_name": order.user.name if order.user else order.guest_name,
                "customer_email": order.user.email if order.user else order.guest_email,
            }
            for order in orders
        ]

    def get_products_stats(self, db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Catalog statistics.

        Returns:
            Product count, inventory value (price x stock), low and out of
            stock counts, average price, category count and products added in
            the last 30 days
        """
        now = now or datetime.utcnow()
        total_products, total_value, average_price, categories_count = db.query(
            func.count(Product.id),
            func.sum(Product.price * Product.stock),
            func.avg(Product.price),
            func.count(func.distinct(Product.category_id))
        ).one()

        low_stock = db.query(Product).filter(
            Product.stock > 0,
            Product.stock <= LOW_STOCK_THRESHOLD
        ).count()
        out_of_stock = db.query(Product).filter(Product.stock == 0).count()
        recent_products = db.query(Product).filter(
            Product.created_at >= now - timedelta(days=30)
        ).count()

        return {
            "total_products": total_products,
            "total_value": float(total_value or 0),
            "low_stock": low_stock,
            "out_of_stock": out_of_stock,
            "average_price": float(average_price or 0),
            "categories_count": categories_count,
            "recent_products": recent_products,
        }
