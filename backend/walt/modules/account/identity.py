"""Identity token verification.

The identity provider is external; this module only turns an opaque bearer
token into a verified subject. `JWTIdentityVerifier` covers providers that
issue signed JWTs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel, ValidationError

from walt.core.config import settings


class Unauthenticated(Exception):
    """Raised when a token cannot be verified."""


@dataclass
class VerifiedIdentity:
    """Identity extracted from a verified token."""
    subject_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


class IdentityClaims(BaseModel):
    """Claims read from an identity token."""

    sub: str
    email: Optional[str] = None
    name: Optional[str] = None


class IdentityVerifier(ABC):
    """Verifies bearer tokens issued by the identity provider."""

    @abstractmethod
    async def verify(self, token: str) -> VerifiedIdentity:
        """Verify a token.

        Raises:
            Unauthenticated: If the token is missing, malformed, expired or
                has an invalid signature
        """
        pass


class JWTIdentityVerifier(IdentityVerifier):
    """Verifies JWTs signed with a shared secret or public key."""

    def __init__(
        self,
        key: Optional[str] = None,
        algorithms: Optional[list[str]] = None,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        self.key = key if key is not None else settings.AUTH_JWT_SECRET
        self.algorithms = algorithms or settings.AUTH_JWT_ALGORITHMS
        self.audience = audience if audience is not None else settings.AUTH_JWT_AUDIENCE
        self.issuer = issuer if issuer is not None else settings.AUTH_JWT_ISSUER

    async def verify(self, token: str) -> VerifiedIdentity:
        if not token:
            raise Unauthenticated("Missing token")
        if not self.key:
            raise Unauthenticated("Identity verification key is not configured")

        try:
            payload = jwt.decode(
                token,
                self.key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None},
            )
            claims = IdentityClaims(**payload)
        except ExpiredSignatureError as e:
            raise Unauthenticated("Token expired") from e
        except (JWTError, ValidationError) as e:
            raise Unauthenticated("Invalid token") from e

        return VerifiedIdentity(
            subject_id=claims.sub,
            email=claims.email,
            display_name=claims.name,
        )
