"""Payment gateway construction."""

from typing import Optional, Type

import httpx

from walt.modules.payment_gateway.gateways import CashfreeGateway
from walt.modules.payment_gateway.interface import GatewayCredentials, PaymentGatewayInterface


class PaymentGatewayFactory:
    """Factory for creating payment gateway instances."""

    _gateways: dict[str, Type[PaymentGatewayInterface]] = {
        CashfreeGateway.provider: CashfreeGateway,
    }

    @classmethod
    def create(
        cls,
        provider: str = CashfreeGateway.provider,
        credentials: Optional[GatewayCredentials] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> PaymentGatewayInterface:
        """Create a gateway instance.

        Args:
            provider: Provider name
            credentials: Credentials; read from settings when omitted
            client: Shared HTTP client; the gateway creates its own when omitted

        Returns:
            Configured gateway instance

        Raises:
            ValueError: If provider is not supported
        """
        gateway_class = cls._gateways.get(provider)
        if not gateway_class:
            raise ValueError(f"Unsupported gateway provider: {provider}")
        return gateway_class(credentials=credentials, client=client)

    @classmethod
    def register(cls, provider: str, gateway_class: Type[PaymentGatewayInterface]) -> None:
        cls._gateways[provider] = gateway_class

    @classmethod
    def providers(cls) -> list[str]:
        return sorted(cls._gateways)
