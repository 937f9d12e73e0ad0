"""Payment Gateway Interface - Abstract base class for gateway implementations.

Defines the contract the order manager relies on: create an order, fetch its
status, verify a webhook signature and parse a webhook body into a status
update.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from walt.core.config import settings
from walt.modules.billing.models import OrderStatus


class PaymentProviderError(Exception):
    """Raised when the provider cannot be reached or rejects a request.

    Retryable: callers may try again later.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict] = None,
    ):
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class WebhookVerificationFailed(Exception):
    """Raised when a webhook delivery fails signature or freshness checks."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Webhook verification failed: {reason}")


@dataclass
class GatewayCredentials:
    """Provider credentials and environment."""
    client_id: str
    client_secret: str
    sandbox: bool = True
    api_version: str = "2023-08-01"

    @classmethod
    def from_settings(cls) -> "GatewayCredentials":
        return cls(
            client_id=settings.CASHFREE_CLIENT_ID,
            client_secret=settings.CASHFREE_CLIENT_SECRET,
            sandbox=settings.cashfree_is_sandbox,
            api_version=settings.CASHFREE_API_VERSION,
        )


@dataclass
class CustomerDetails:
    """Customer block sent with an order."""
    customer_id: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


@dataclass
class CreateOrderDTO:
    """Data transfer object for creating a payment order."""
    order_id: str
    amount: float
    currency: str
    customer: CustomerDetails
    return_url: Optional[str] = None
    notify_url: Optional[str] = None
    note: Optional[str] = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class ProviderOrder:
    """Result from order creation."""
    provider_order_id: str
    payment_session_id: Optional[str]
    payment_link: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    gateway_response: Optional[dict] = None


@dataclass
class ProviderOrderStatus:
    """Current status of an order at the provider."""
    provider_order_id: str
    status: OrderStatus
    raw_status: str
    gateway_response: Optional[dict] = None


@dataclass
class WebhookEvent:
    """A verified webhook parsed into an order update.

    `status` is None for events that do not move the order (e.g. the payer
    dropped out of checkout).
    """
    event_type: str
    provider_order_id: Optional[str]
    status: Optional[OrderStatus]
    payment_status: Optional[str] = None
    amount: Optional[float] = None
    payload: Optional[dict] = None


class PaymentGatewayInterface(ABC):
    """Abstract interface for payment gateway implementations."""

    provider: str = ""

    def __init__(self, credentials: GatewayCredentials):
        self.credentials = credentials

    @property
    def is_sandbox(self) -> bool:
        return self.credentials.sandbox

    @abstractmethod
    async def create_order(self, data: CreateOrderDTO) -> ProviderOrder:
        """Create an order with the provider.

        Raises:
            PaymentProviderError: On transport failure or provider rejection
        """
        pass

    @abstractmethod
    async def fetch_order(self, provider_order_id: str) -> ProviderOrderStatus:
        """Fetch the current order status.

        Raises:
            PaymentProviderError: On transport failure or provider rejection
        """
        pass

    @abstractmethod
    def verify_webhook_signature(
        self,
        raw_body: bytes,
        signature: Optional[str],
        timestamp: Optional[str],
    ) -> None:
        """Verify a webhook delivery.

        Raises:
            WebhookVerificationFailed: If the signature or timestamp is invalid
        """
        pass

    @abstractmethod
    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:
        """Parse a verified webhook body.

        Raises:
            WebhookVerificationFailed: If the body is not a recognised event
        """
        pass

    async def aclose(self) -> None:
        """Release any held connections."""
