"""Payment provider bridge.

Models PayPal's two-phase flow as a state machine on ``Order.payment_status``::

    PENDING -> PROCESSING | COMPLETED | FAILED
    PROCESSING -> COMPLETED | FAILED
    FAILED -> PENDING (only by creating a new provider order)

COMPLETED is terminal. The local order is only marked COMPLETED once the
provider confirms the capture, and a capture whose outcome is unknown
(timeout, connection failure) leaves the payment status untouched so the
caller can retry; PayPal reports ``ORDER_ALREADY_CAPTURED`` on the retry and
the result is reconciled from the provider's copy of the order.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
from opentelemetry import trace

from storefront.auth import SessionUser
from storefront.config import PAYPAL_CURRENCY, STORE_BRAND_NAME
from storefront.errors import ConflictError, PaymentProviderError, ValidationError
from storefront.models import Order, OrderStatus, PaymentStatus
from storefront.monitoring import payment_captures_counter
from storefront.services.order_service import load_authorized_order
from storefront.services.paypal_client import PayPalClient
from storefront.services.pricing import PaymentBreakdown, calculate_breakdown, format_money, to_money

logger = logging.getLogger(__name__)

ALREADY_CAPTURED_ISSUE = "ORDER_ALREADY_CAPTURED"


def build_provider_order(
    order: Order,
    breakdown: PaymentBreakdown,
    base_url: str,
    currency: str = PAYPAL_CURRENCY,
    brand_name: str = STORE_BRAND_NAME
) -> Dict[str, Any]:
    """Build the PayPal order body; the breakdown sums exactly to the amount."""
    def money(value: Decimal) -> Dict[str, str]:
        return {"currency_code": currency, "value": format_money(value)}

    return {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "reference_id": order.id,
                "description": f"Order #{order.id}",
                "amount": {
                    **money(breakdown.total),
                    "breakdown": {
                        "item_total": money(breakdown.item_total),
                        "shipping": money(breakdown.shipping),
                        "tax_total": money(breakdown.tax),
                    },
                },
                "items": [
                    {
                        "name": item.product.name if item.product else item.product_id,
                        "unit_amount": money(item.price),
                        "quantity": str(item.quantity),
                    }
                    for item in order.items
                ],
            }
        ],
        "application_context": {
            "return_url": f"{base_url}/order-confirmation/{order.id}",
            "cancel_url": f"{base_url}/payment/{order.id}",
            "brand_name": brand_name,
            "landing_page": "LOGIN",
            "user_action": "PAY_NOW",
        },
    }


def extract_capture(provider_order: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """
    Find the capture in a PayPal order resource.

    Returns:
        Capture id and status, falling back to the order-level status when the
        response carries no capture
    """
    for unit in provider_order.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            capture = captures[0]
            return {"id": capture.get("id"), "status": capture.get("status")}
    return {"id": provider_order.get("id"), "status": provider_order.get("status")}


def provider_reference(provider_order: Dict[str, Any]) -> Optional[str]:
    """Local order id the PayPal order was created for."""
    units = provider_order.get("purchase_units") or [{}]
    return units[0].get("reference_id")


class PaymentService:
    """Creates and captures PayPal orders for local orders."""

    def __init__(self, paypal_client: PayPalClient):
        """
        Initialize payment service.

        Args:
            paypal_client: PayPal API client
        """
        self.paypal_client = paypal_client
        self.tracer = trace.get_tracer(__name__)

    async def create_provider_order(
        self,
        db: Session,
        order_id: Optional[str],
        amount: Optional[Decimal],
        session: Optional[SessionUser],
        base_url: str
    ) -> Dict[str, str]:
        """
        Create a PayPal order for a local order.

        The charged amount is computed from the stored order items; the client
        supplied ``amount`` is informational only.

        Args:
            db: Database session
            order_id: Local order id
            amount: Amount the client expects to pay
            session: Authenticated requester, or None for guests
            base_url: Public base URL for the return/cancel pages

        Returns:
            The PayPal order id as ``{"id": ...}``

        Raises:
            ValidationError: If order id or amount is missing
            NotFoundError: If the order does not exist
            AuthorizationError: If the order belongs to another user
            ConflictError: If the order cannot take a new payment
            PaymentProviderError: If PayPal rejects or does not answer
        """
        if not order_id or amount is None:
            raise ValidationError("Order ID and amount are required")

        order = load_authorized_order(db, order_id, session, with_items=True)
        if order.payment_status == PaymentStatus.COMPLETED:
            raise ConflictError("Order is already paid")
        if order.status == OrderStatus.CANCELLED:
            raise ConflictError("Order has been cancelled")
        if order.payment_status == PaymentStatus.PROCESSING:
            raise ConflictError("Payment for this order is already being processed")

        breakdown = calculate_breakdown((item.price, item.quantity) for item in order.items)
        if to_money(amount) != breakdown.total:
            logger.info("Client amount differs from computed total", extra={
                "order_id": order_id,
                "client_amount": str(amount),
                "computed_total": str(breakdown.total)
            })
        payload = build_provider_order(order, breakdown, base_url.rstrip("/"))

        # Do not hold the transaction open across provider calls
        db.rollback()

        access_token = await self.paypal_client.get_access_token()
        provider_order = await self.paypal_client.create_order(access_token, payload)
        provider_order_id = provider_order.get("id")
        if not provider_order_id:
            raise PaymentProviderError("PayPal order response did not include an id")

        order = db.get(Order, order_id)
        if order.payment_status == PaymentStatus.COMPLETED:
            db.rollback()
            raise ConflictError("Order is already paid")
        order.paypal_order_id = provider_order_id
        order.payment_status = PaymentStatus.PENDING
        db.commit()

        logger.info("PayPal order created", extra={
            "order_id": order_id,
            "paypal_order_id": provider_order_id,
            "total": str(breakdown.total)
        })
        return {"id": provider_order_id}

    async def capture_provider_order(
        self,
        db: Session,
        provider_order_id: Optional[str],
        order_id: Optional[str],
        session: Optional[SessionUser]
    ) -> Dict[str, Optional[str]]:
        """
        Capture an approved PayPal order and record the outcome.

        Idempotent: once the order is COMPLETED, repeated calls return the
        stored capture without contacting PayPal.

        Args:
            db: Database session
            provider_order_id: PayPal order id
            order_id: Local order id
            session: Authenticated requester, or None for guests

        Returns:
            ``{"status", "capture_id", "message"}``

        Raises:
            ValidationError: If an id is missing or does not match the order
            NotFoundError: If the order does not exist
            AuthorizationError: If the order belongs to another user
            ConflictError: If the order has been cancelled
            PaymentProviderError: If the capture failed or its outcome is unknown
        """
        if not provider_order_id or not order_id:
            raise ValidationError("PayPal Order ID and Order ID are required")

        order = load_authorized_order(db, order_id, session)
        if order.payment_status == PaymentStatus.COMPLETED:
            return {
                "status": PaymentStatus.COMPLETED.value,
                "capture_id": order.paypal_capture_id,
                "message": "Order already paid"
            }
        if order.status == OrderStatus.CANCELLED:
            raise ConflictError("Order has been cancelled")
        if order.paypal_order_id != provider_order_id:
            raise ValidationError("PayPal order does not match this order")

        db.rollback()

        span = trace.get_current_span()
        span.set_attribute("order.id", order_id)
        span.set_attribute("paypal.order_id", provider_order_id)

        access_token = await self.paypal_client.get_access_token()
        try:
            provider_order = await self.paypal_client.capture_order(access_token, provider_order_id)
        except PaymentProviderError as e:
            if e.provider_status is None:
                # Outcome unknown: leave the payment status for a retry to settle
                payment_captures_counter.add(1, {"outcome": "unknown"})
                logger.error("PayPal capture outcome unknown", extra={
                    "order_id": order_id,
                    "paypal_order_id": provider_order_id
                })
                raise
            if e.issue != ALREADY_CAPTURED_ISSUE:
                self._record_failure(db, order_id, provider_order_id, e)
                raise
            logger.info("PayPal order already captured, reconciling", extra={
                "order_id": order_id,
                "paypal_order_id": provider_order_id
            })
            provider_order = await self.paypal_client.get_order(access_token, provider_order_id)

        return self._apply_capture(db, order_id, provider_order_id, provider_order)

    def _apply_capture(
        self,
        db: Session,
        order_id: str,
        provider_order_id: str,
        provider_order: Dict[str, Any]
    ) -> Dict[str, Optional[str]]:
        capture = extract_capture(provider_order)
        capture_status = capture["status"]

        order = db.get(Order, order_id)
        if order.payment_status == PaymentStatus.COMPLETED:
            # A concurrent capture already recorded the payment
            db.rollback()
            return {
                "status": PaymentStatus.COMPLETED.value,
                "capture_id": order.paypal_capture_id,
                "message": "Order already paid"
            }

        reference_id = provider_reference(provider_order)
        if reference_id != order_id:
            db.rollback()
            logger.error("PayPal order belongs to another order", extra={
                "order_id": order_id,
                "paypal_order_id": provider_order_id,
                "reference_id": reference_id
            })
            raise ValidationError("PayPal order does not match this order")

        if capture_status == PaymentStatus.COMPLETED.value:
            order.payment_status = PaymentStatus.COMPLETED
            order.paypal_capture_id = capture["id"]
            db.commit()

            payment_captures_counter.add(1, {"outcome": "completed"})
            logger.info("Payment captured", extra={
                "order_id": order_id,
                "paypal_order_id": provider_order_id,
                "capture_id": capture["id"]
            })
            return {"status": PaymentStatus.COMPLETED.value, "capture_id": capture["id"], "message": None}

        if capture_status == "PENDING":
            order.payment_status = PaymentStatus.PROCESSING
        else:
            order.payment_status = PaymentStatus.FAILED
        db.commit()

        payment_captures_counter.add(1, {"outcome": order.payment_status.value.lower()})
        logger.warning("Payment not completed", extra={
            "order_id": order_id,
            "paypal_order_id": provider_order_id,
            "capture_status": capture_status,
            "payment_status": order.payment_status.value
        })
        return {"status": capture_status or "UNKNOWN", "capture_id": None, "message": "Payment not completed"}

    def _record_failure(
        self,
        db: Session,
        order_id: str,
        provider_order_id: str,
        error: PaymentProviderError
    ) -> None:
        order = db.get(Order, order_id)
        if order.payment_status != PaymentStatus.COMPLETED:
            order.payment_status = PaymentStatus.FAILED
            db.commit()
        else:
            db.rollback()

        payment_captures_counter.add(1, {"outcome": "failed"})
        logger.error("PayPal capture failed", extra={
            "order_id": order_id,
            "paypal_order_id": provider_order_id,
            "provider_status": error.provider_status,
            "issue": error.issue
        })
