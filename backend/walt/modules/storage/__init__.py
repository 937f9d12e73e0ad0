"""Storage module.

Uploads with quota admission, pin reference counting and usage metering.
"""

from walt.modules.storage.metering import StorageUsage, UsageMeter
from walt.modules.storage.models import PinStatus, StoredObject
from walt.modules.storage.quota import (
    AccountNotFoundError,
    Admission,
    QuotaExceeded,
    QuotaGate,
)
from walt.modules.storage.service import (
    FileStorageService,
    StoredObjectNotFoundError,
    UploadResult,
)

__all__ = [
    "AccountNotFoundError",
    "Admission",
    "FileStorageService",
    "PinStatus",
    "QuotaExceeded",
    "QuotaGate",
    "StorageUsage",
    "StoredObject",
    "StoredObjectNotFoundError",
    "UploadResult",
    "UsageMeter",
]
