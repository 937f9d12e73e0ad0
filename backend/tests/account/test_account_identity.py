"""Tests for identity token verification and account resolution."""

import time

import pytest
from jose import jwt

from walt.modules.account.identity import (
    JWTIdentityVerifier,
    Unauthenticated,
    VerifiedIdentity,
)
from walt.modules.account.service import AccountService

SECRET = "identity-secret"


def make_token(secret: str = SECRET, expires_in: int = 3600, **claims) -> str:
    payload = {"sub": "user-123", "exp": int(time.time()) + expires_in, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


class TestJWTIdentityVerifier:
    """Tests for JWT verification."""

    @pytest.mark.asyncio
    async def test_valid_token(self) -> None:
        verifier = JWTIdentityVerifier(key=SECRET, algorithms=["HS256"])
        token = make_token(email="owner@example.com", name="Owner")

        identity = await verifier.verify(token)

        assert identity == VerifiedIdentity(
            subject_id="user-123", email="owner@example.com", display_name="Owner"
        )

    @pytest.mark.asyncio
    async def test_expired_token(self) -> None:
        verifier = JWTIdentityVerifier(key=SECRET, algorithms=["HS256"])

        with pytest.raises(Unauthenticated, match="expired"):
            await verifier.verify(make_token(expires_in=-60))

    @pytest.mark.asyncio
    async def test_wrong_key(self) -> None:
        verifier = JWTIdentityVerifier(key=SECRET, algorithms=["HS256"])

        with pytest.raises(Unauthenticated, match="Invalid"):
            await verifier.verify(make_token(secret="someone-else"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["", "not-a-jwt"])
    async def test_malformed_token(self, token: str) -> None:
        verifier = JWTIdentityVerifier(key=SECRET, algorithms=["HS256"])

        with pytest.raises(Unauthenticated):
            await verifier.verify(token)

    @pytest.mark.asyncio
    async def test_missing_subject(self) -> None:
        verifier = JWTIdentityVerifier(key=SECRET, algorithms=["HS256"])
        token = jwt.encode({"exp": int(time.time()) + 60}, SECRET, algorithm="HS256")

        with pytest.raises(Unauthenticated):
            await verifier.verify(token)

    @pytest.mark.asyncio
    async def test_audience_is_checked_when_configured(self) -> None:
        verifier = JWTIdentityVerifier(key=SECRET, algorithms=["HS256"], audience="walt")

        identity = await verifier.verify(make_token(aud="walt"))
        assert identity.subject_id == "user-123"

        with pytest.raises(Unauthenticated):
            await verifier.verify(make_token(aud="other-app"))

    @pytest.mark.asyncio
    async def test_unconfigured_key(self) -> None:
        verifier = JWTIdentityVerifier(key="", algorithms=["HS256"])

        with pytest.raises(Unauthenticated, match="not configured"):
            await verifier.verify(make_token())


class TestAccountService:
    """Tests for mapping identities to accounts."""

    @pytest.mark.asyncio
    async def test_first_request_creates_account(self, session) -> None:
        service = AccountService(session, JWTIdentityVerifier(key=SECRET, algorithms=["HS256"]))

        account = await service.resolve(make_token(email="owner@example.com"))
        await session.commit()

        assert account.subject_id == "user-123"
        assert account.email == "owner@example.com"
        assert account.storage_used_bytes == 0
        assert account.storage_limit_bytes > 0
        assert account.created_at is not None

    @pytest.mark.asyncio
    async def test_repeat_requests_reuse_account(self, session) -> None:
        service = AccountService(session, JWTIdentityVerifier(key=SECRET, algorithms=["HS256"]))

        first = await service.resolve(make_token())
        await session.commit()
        second = await service.resolve(make_token())

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_invalid_token_creates_nothing(self, session) -> None:
        service = AccountService(session, JWTIdentityVerifier(key=SECRET, algorithms=["HS256"]))

        with pytest.raises(Unauthenticated):
            await service.resolve(make_token(secret="forged"))

        assert await service.repository.get_by_subject("user-123") is None

    @pytest.mark.asyncio
    async def test_get_or_create_reports_creation(self, session) -> None:
        service = AccountService(session, JWTIdentityVerifier(key=SECRET))
        identity = VerifiedIdentity(subject_id="subject-9")

        _, created = await service.repository.get_or_create(identity.subject_id)
        account = await service.get_or_create(identity)

        assert created
        assert account.subject_id == "subject-9"
