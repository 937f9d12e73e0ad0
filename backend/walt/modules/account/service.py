"""Account service: resolve the caller's account from a bearer token."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from walt.core.logging import log_info
from walt.modules.account.identity import IdentityVerifier, VerifiedIdentity
from walt.modules.account.models import Account
from walt.modules.account.repository import AccountRepository

logger = logging.getLogger(__name__)


class AccountService:
    """Maps verified identities to accounts."""

    def __init__(self, session: AsyncSession, verifier: IdentityVerifier):
        self.session = session
        self.verifier = verifier
        self.repository = AccountRepository(session)

    async def resolve(self, token: str) -> Account:
        """Verify a token and return the subject's account.

        Args:
            token: Bearer token from the identity provider

        Returns:
            The existing or newly created Account

        Raises:
            Unauthenticated: If the token does not verify
        """
        identity = await self.verifier.verify(token)
        return await self.get_or_create(identity)

    async def get_or_create(self, identity: VerifiedIdentity) -> Account:
        account, created = await self.repository.get_or_create(
            subject_id=identity.subject_id,
            email=identity.email,
            display_name=identity.display_name,
        )
        if created:
            log_info(
                logger,
                f"Created account {account.id} for subject {identity.subject_id}",
                account_id=str(account.id),
            )
        return account
