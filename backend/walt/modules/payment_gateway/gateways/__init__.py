"""Payment gateway implementations."""

from walt.modules.payment_gateway.gateways.cashfree import CashfreeGateway

__all__ = ["CashfreeGateway"]
