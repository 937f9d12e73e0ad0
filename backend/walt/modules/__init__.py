"""Application modules.

- account: Accounts resolved from identity provider tokens
- storage: File uploads, pin reference counting, usage metering, quota gate
- billing: Billing calculator, cycle scheduler, payment orders, access gate
- payment_gateway: Payment provider abstraction and Cashfree implementation
"""
