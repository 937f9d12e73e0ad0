"""Cashfree payment gateway implementation.

Uses the Cashfree Payment Gateway REST API (orders endpoints) with client
id/secret headers. Webhooks are signed with HMAC-SHA256 over
`timestamp + raw body` using the client secret, base64 encoded.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Optional

import httpx

from walt.core.config import settings
from walt.core.metrics import PAYMENT_PROVIDER_DURATION_SECONDS, PAYMENT_PROVIDER_ERRORS_TOTAL
from walt.modules.billing.models import OrderStatus
from walt.modules.payment_gateway.interface import (
    CreateOrderDTO,
    GatewayCredentials,
    PaymentGatewayInterface,
    PaymentProviderError,
    ProviderOrder,
    ProviderOrderStatus,
    WebhookEvent,
    WebhookVerificationFailed,
)

logger = logging.getLogger(__name__)


class CashfreeGateway(PaymentGatewayInterface):
    """Cashfree payment gateway for INR checkout."""

    provider = "cashfree"

    SANDBOX_URL = "https://sandbox.cashfree.com/pg"
    PRODUCTION_URL = "https://api.cashfree.com/pg"

    SIGNATURE_HEADER = "x-webhook-signature"
    TIMESTAMP_HEADER = "x-webhook-timestamp"

    def __init__(
        self,
        credentials: Optional[GatewayCredentials] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
        webhook_tolerance_seconds: Optional[int] = None,
    ):
        super().__init__(credentials or GatewayCredentials.from_settings())
        self.webhook_tolerance_seconds = (
            webhook_tolerance_seconds
            if webhook_tolerance_seconds is not None
            else settings.WEBHOOK_TOLERANCE_SECONDS
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds or settings.PAYMENT_HTTP_TIMEOUT_SECONDS),
        )

    @property
    def base_url(self) -> str:
        """Get Cashfree API base URL based on mode."""
        return self.SANDBOX_URL if self.is_sandbox else self.PRODUCTION_URL

    def _headers(self) -> dict[str, str]:
        return {
            "x-client-id": self.credentials.client_id,
            "x-client-secret": self.credentials.client_secret,
            "x-api-version": self.credentials.api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _make_request(
        self,
        operation: str,
        method: str,
        path: str,
        data: Optional[dict] = None,
    ) -> dict:
        """Make authenticated request to the Cashfree API.

        Args:
            operation: Name used in metrics and errors
            method: HTTP method
            path: Path below the API base URL
            data: Request body data

        Returns:
            Response JSON

        Raises:
            PaymentProviderError: On transport errors or non-2xx responses
        """
        started = time.perf_counter()
        try:
            response = await self._client.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=self._headers(),
                json=data,
            )
        except httpx.HTTPError as e:
            PAYMENT_PROVIDER_ERRORS_TOTAL.labels(operation=operation).inc()
            logger.error(f"Cashfree {operation} transport error: {e}")
            raise PaymentProviderError(f"Cashfree {operation} failed: {e}") from e
        finally:
            PAYMENT_PROVIDER_DURATION_SECONDS.labels(operation=operation).observe(
                time.perf_counter() - started
            )

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"raw": response.text}

        if response.is_error:
            PAYMENT_PROVIDER_ERRORS_TOTAL.labels(operation=operation).inc()
            message = body.get("message") if isinstance(body, dict) else None
            logger.error(
                f"Cashfree {operation} rejected with {response.status_code}: {message or body}"
            )
            raise PaymentProviderError(
                f"Cashfree {operation} failed: {message or response.status_code}",
                status_code=response.status_code,
                response=body if isinstance(body, dict) else None,
            )
        return body

    async def create_order(self, data: CreateOrderDTO) -> ProviderOrder:
        """Create a Cashfree order.

        Args:
            data: Order creation data

        Returns:
            ProviderOrder with the payment session id used by the checkout
        """
        customer = {
            "customer_id": data.customer.customer_id,
            "customer_phone": data.customer.customer_phone or settings.DEFAULT_CUSTOMER_PHONE,
        }
        if data.customer.customer_email:
            customer["customer_email"] = data.customer.customer_email
        if data.customer.customer_name:
            customer["customer_name"] = data.customer.customer_name

        order_data: dict = {
            "order_id": data.order_id,
            "order_amount": round(data.amount, 2),
            "order_currency": data.currency,
            "customer_details": customer,
        }

        order_meta = {}
        if data.return_url:
            order_meta["return_url"] = data.return_url
        if data.notify_url:
            order_meta["notify_url"] = data.notify_url
        if order_meta:
            order_data["order_meta"] = order_meta
        if data.note:
            order_data["order_note"] = data.note
        if data.tags:
            order_data["order_tags"] = data.tags

        response = await self._make_request("create_order", "POST", "/orders", order_data)

        payment_session_id = response.get("payment_session_id")
        if not payment_session_id:
            PAYMENT_PROVIDER_ERRORS_TOTAL.labels(operation="create_order").inc()
            raise PaymentProviderError(
                "Cashfree create_order returned no payment_session_id",
                response=response,
            )

        return ProviderOrder(
            provider_order_id=response.get("order_id", data.order_id),
            payment_session_id=payment_session_id,
            payment_link=response.get("payment_link"),
            status=self._map_order_status(response.get("order_status", "ACTIVE")),
            gateway_response=response,
        )

    async def fetch_order(self, provider_order_id: str) -> ProviderOrderStatus:
        response = await self._make_request(
            "fetch_order", "GET", f"/orders/{provider_order_id}"
        )
        raw_status = response.get("order_status", "")
        return ProviderOrderStatus(
            provider_order_id=provider_order_id,
            status=self._map_order_status(raw_status),
            raw_status=raw_status,
            gateway_response=response,
        )

    def compute_signature(self, raw_body: bytes, timestamp: str) -> str:
        """base64(HMAC-SHA256(secret, timestamp + raw_body))."""
        digest = hmac.new(
            self.credentials.client_secret.encode(),
            timestamp.encode() + raw_body,
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode()

    def verify_webhook_signature(
        self,
        raw_body: bytes,
        signature: Optional[str],
        timestamp: Optional[str],
    ) -> None:
        """Verify signature and freshness of a Cashfree webhook.

        Raises:
            WebhookVerificationFailed: With the specific reason, for logging
        """
        if not self.credentials.client_secret:
            raise WebhookVerificationFailed("secret_not_configured")
        if not signature or not timestamp:
            raise WebhookVerificationFailed("missing_headers")

        expected = self.compute_signature(raw_body, timestamp)
        if not hmac.compare_digest(expected.encode(), signature.encode()):
            raise WebhookVerificationFailed("bad_signature")

        if self.webhook_tolerance_seconds > 0:
            try:
                sent_at = float(timestamp)
            except ValueError as e:
                raise WebhookVerificationFailed("bad_timestamp") from e
            # Cashfree sends epoch milliseconds
            if sent_at > 1e12:
                sent_at /= 1000
            if abs(time.time() - sent_at) > self.webhook_tolerance_seconds:
                raise WebhookVerificationFailed("stale_timestamp")

    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:
        """Parse a Cashfree webhook body.

        Accepts the nested `data.order` / `data.payment` format and the flat
        `orderId` / `orderStatus` / `paymentStatus` format.
        """
        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise WebhookVerificationFailed("malformed_body") from e
        if not isinstance(payload, dict):
            raise WebhookVerificationFailed("malformed_body")

        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("order"), dict):
            order = data["order"]
            payment = data.get("payment") or {}
            payment_status = payment.get("payment_status")
            amount = order.get("order_amount")
            return WebhookEvent(
                event_type=payload.get("type", "PAYMENT_WEBHOOK"),
                provider_order_id=order.get("order_id"),
                status=self._map_payment_status(payment_status),
                payment_status=payment_status,
                amount=float(amount) if amount is not None else None,
                payload=payload,
            )

        if "orderId" in payload:
            order_status = payload.get("orderStatus")
            payment_status = payload.get("paymentStatus")
            status: Optional[OrderStatus] = None
            if order_status == "PAID" and payment_status == "SUCCESS":
                status = OrderStatus.PAID
            elif payment_status == "FAILED":
                status = OrderStatus.FAILED
            elif order_status in ("EXPIRED", "TERMINATED"):
                status = self._map_order_status(order_status)
            return WebhookEvent(
                event_type="ORDER_STATUS_WEBHOOK",
                provider_order_id=payload.get("orderId"),
                status=status,
                payment_status=payment_status,
                payload=payload,
            )

        raise WebhookVerificationFailed("unrecognised_event")

    def _map_order_status(self, status: str) -> OrderStatus:
        """Map Cashfree order status to OrderStatus."""
        mapping = {
            "ACTIVE": OrderStatus.PENDING,
            "PAID": OrderStatus.PAID,
            "EXPIRED": OrderStatus.EXPIRED,
            "TERMINATED": OrderStatus.FAILED,
            "TERMINATION_REQUESTED": OrderStatus.PENDING,
        }
        return mapping.get(status, OrderStatus.PENDING)

    def _map_payment_status(self, status: Optional[str]) -> Optional[OrderStatus]:
        """Map Cashfree payment status to an order transition, if any."""
        mapping = {
            "SUCCESS": OrderStatus.PAID,
            "FAILED": OrderStatus.FAILED,
        }
        return mapping.get(status or "")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
