"""Payment gateway module.

Provider-agnostic interface used by the order manager, with the Cashfree
implementation in `gateways`.
"""
