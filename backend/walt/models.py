"""Import every ORM model so it registers on `Base.metadata`.

Used by `init_models()` and the Alembic environment.
"""

from walt.modules.account.models import Account
from walt.modules.billing.models import Order, Subscription
from walt.modules.storage.models import StoredObject

__all__ = ["Account", "Order", "StoredObject", "Subscription"]
