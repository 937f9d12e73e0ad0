"""Walt storage accounting and billing backend.

Quota-enforced storage on an IPFS node with metered monthly billing.

Modules:
    - core: Configuration, database, logging, metrics, blob store, Celery setup
    - modules.account: Accounts and identity token verification
    - modules.storage: Uploads, pinning, usage metering and quota admission
    - modules.billing: Cost calculation, billing cycles, payment orders, access gate
    - modules.payment_gateway: Payment provider interface and Cashfree client
"""

__version__ = "0.1.0"
