"""PayPal REST API client."""
import httpx
import logging
import time
from typing import Any, Dict, Optional

from storefront.config import (
    PAYPAL_BASE_URL,
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    PAYPAL_TIMEOUT_SECONDS
)
from storefront.errors import PaymentProviderError
from storefront.monitoring import payment_provider_duration_histogram

logger = logging.getLogger(__name__)


class PayPalClient:
    """Client for the PayPal orders API (two-phase create/capture)."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = PAYPAL_BASE_URL,
        client_id: Optional[str] = PAYPAL_CLIENT_ID,
        client_secret: Optional[str] = PAYPAL_CLIENT_SECRET,
        timeout: float = PAYPAL_TIMEOUT_SECONDS
    ):
        """
        Initialize PayPal client.

        Args:
            http_client: Async HTTP client
            base_url: PayPal API base URL
            client_id: REST application client id
            client_secret: REST application secret
            timeout: Per-request timeout in seconds
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        **kwargs: Any
    ) -> Dict[str, Any]:
        """
        Send a request to PayPal and decode the JSON response.

        Raises:
            PaymentProviderError: On a non-2xx response, or with no
                provider status when the request timed out or failed to connect
        """
        start_time = time.time()
        status = "success"
        status_code = None
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                timeout=self.timeout,
                **kwargs
            )
            status_code = response.status_code
            if response.is_success:
                return response.json() if response.content else {}

            status = "error"
            details = self._error_details(response)
            issue = self._issue(details)
            logger.warning("PayPal returned error status", extra={
                "operation": operation,
                "status_code": response.status_code,
                "issue": issue,
                "debug_id": details.get("debug_id")
            })
            raise PaymentProviderError(
                f"PayPal {operation} failed with status {response.status_code}",
                provider_status=response.status_code,
                issue=issue,
                details=details
            )
        except httpx.TransportError as e:
            status = "unreachable"
            logger.error("PayPal request failed", extra={
                "operation": operation,
                "error": str(e),
                "error_type": type(e).__name__
            })
            raise PaymentProviderError(f"PayPal {operation} did not complete") from e
        finally:
            payment_provider_duration_histogram.record(
                time.time() - start_time,
                {
                    "operation": operation,
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )

    @staticmethod
    def _error_details(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"body": response.text}
        return body if isinstance(body, dict) else {"body": body}

    @staticmethod
    def _issue(details: Dict[str, Any]) -> Optional[str]:
        # Orders API errors carry details[].issue; OAuth errors carry "error"
        for detail in details.get("details") or []:
            if isinstance(detail, dict) and detail.get("issue"):
                return detail["issue"]
        return details.get("error") or details.get("name")

    async def get_access_token(self) -> str:
        """
        Exchange client credentials for an access token.

        Returns:
            Bearer access token
        """
        data = await self._request(
            "auth",
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id or "", self.client_secret or ""),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"}
        )
        token = data.get("access_token")
        if not token:
            raise PaymentProviderError("PayPal auth response did not include an access token")
        return token

    async def create_order(self, access_token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a PayPal order.

        Args:
            access_token: Bearer access token
            payload: Orders API request body

        Returns:
            PayPal order resource
        """
        return await self._request(
            "create_order",
            "POST",
            "/v2/checkout/orders",
            json=payload,
            headers=self._headers(access_token)
        )

    async def capture_order(self, access_token: str, provider_order_id: str) -> Dict[str, Any]:
        """
        Capture payment for an approved PayPal order.

        Args:
            access_token: Bearer access token
            provider_order_id: PayPal order id

        Returns:
            Captured PayPal order resource
        """
        return await self._request(
            "capture_order",
            "POST",
            f"/v2/checkout/orders/{provider_order_id}/capture",
            headers=self._headers(access_token)
        )

    async def get_order(self, access_token: str, provider_order_id: str) -> Dict[str, Any]:
        """
        Fetch the current state of a PayPal order.

        Args:
            access_token: Bearer access token
            provider_order_id: PayPal order id

        Returns:
            PayPal order resource
        """
        return await self._request(
            "get_order",
            "GET",
            f"/v2/checkout/orders/{provider_order_id}",
            headers=self._headers(access_token)
        )

    @staticmethod
    def _headers(access_token: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}"
        }
