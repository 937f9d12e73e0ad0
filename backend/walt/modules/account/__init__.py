"""Account module.

Accounts keyed by identity provider subject, with the storage quota counter.
"""

from walt.modules.account.identity import (
    IdentityVerifier,
    JWTIdentityVerifier,
    Unauthenticated,
    VerifiedIdentity,
)
from walt.modules.account.models import Account
from walt.modules.account.repository import AccountRepository
from walt.modules.account.service import AccountService

__all__ = [
    "Account",
    "AccountRepository",
    "AccountService",
    "IdentityVerifier",
    "JWTIdentityVerifier",
    "Unauthenticated",
    "VerifiedIdentity",
]
