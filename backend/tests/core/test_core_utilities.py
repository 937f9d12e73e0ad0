"""Tests for keyed locks, settings fallbacks, structured logging and metrics."""

import asyncio
import json
import logging
import sys

import pytest

from walt.core.config import DEFAULT_COST_PER_GB_USD, DEFAULT_FREE_TIER_GB, Settings
from walt.core.locks import KeyedLock
from walt.core.logging import (
    StructuredFormatter,
    correlation_scope,
    get_correlation_id,
    log_info,
    log_warning,
)
from walt.core.metrics import UPLOAD_ADMISSIONS_TOTAL, get_metrics


class TestKeyedLock:
    """Tests for per-key serialization."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        locks = KeyedLock()
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with locks.hold("account-1"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))

        assert peak == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_together(self) -> None:
        locks = KeyedLock()
        both_held = asyncio.Event()
        inside = set()

        async def worker(key: str):
            async with locks.hold(key):
                inside.add(key)
                if len(inside) == 2:
                    both_held.set()
                await asyncio.wait_for(both_held.wait(), timeout=1)

        await asyncio.gather(worker("a"), worker("b"))

        assert inside == {"a", "b"}
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_entry_dropped_after_error(self) -> None:
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold(("order", 1)):
                assert len(locks) == 1
                raise RuntimeError("boom")

        assert len(locks) == 0


class TestSettingsFallback:
    """Tests for billing settings that cannot be parsed."""

    def test_unparseable_values_use_defaults(self) -> None:
        settings = Settings(FREE_TIER_GB="five", COST_PER_GB_USD="", _env_file=None)

        assert settings.FREE_TIER_GB == DEFAULT_FREE_TIER_GB
        assert settings.COST_PER_GB_USD == DEFAULT_COST_PER_GB_USD

    def test_valid_values_are_kept(self) -> None:
        settings = Settings(FREE_TIER_GB="2.5", USD_TO_INR_RATE=90, _env_file=None)

        assert settings.FREE_TIER_GB == 2.5
        assert settings.USD_TO_INR_RATE == 90.0

    @pytest.mark.parametrize(
        "environment,sandbox",
        [("SANDBOX", True), ("production", False), ("PRODUCTION", False), ("anything", True)],
    )
    def test_cashfree_environment(self, environment: str, sandbox: bool) -> None:
        settings = Settings(CASHFREE_ENVIRONMENT=environment, _env_file=None)

        assert settings.cashfree_is_sandbox is sandbox


class TestStructuredLogging:
    """Tests for JSON log formatting."""

    def test_correlation_id_is_stable_per_context(self) -> None:
        first = get_correlation_id()

        assert get_correlation_id() == first
        with correlation_scope("webhook-42"):
            assert get_correlation_id() == "webhook-42"
            with correlation_scope("poll-7"):
                assert get_correlation_id() == "poll-7"
            assert get_correlation_id() == "webhook-42"
        assert get_correlation_id() == first

    def test_scope_is_restored_after_error(self) -> None:
        before = get_correlation_id()

        with pytest.raises(RuntimeError):
            with correlation_scope("billing-run-1"):
                raise RuntimeError("boom")

        assert get_correlation_id() == before

    def test_record_is_json_with_extras(self) -> None:
        record = logging.LogRecord(
            name="walt.billing",
            level=logging.INFO,
            pathname=__file__,
            lineno=10,
            msg="Created order %s",
            args=("order_1",),
            exc_info=None,
        )
        record.account_id = "acct-1"
        record.amount = 33.2
        record.unserializable = object()

        with correlation_scope("billing-run"):
            data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "Created order order_1"
        assert data["level"] == "INFO"
        assert data["correlation_id"] == "billing-run"
        assert data["source"] == f"{__file__}:10"
        assert data["account_id"] == "acct-1"
        assert "account_id" not in data["extra"]
        assert data["extra"]["amount"] == 33.2
        assert isinstance(data["extra"]["unserializable"], str)

    def test_helpers_stamp_correlation_id(self, caplog) -> None:
        logger = logging.getLogger("walt.test")

        with caplog.at_level(logging.INFO, logger="walt.test"):
            with correlation_scope("upload-9"):
                log_info(logger, "Stored blob", cid="bafk1")
                log_warning(logger, "Slow node")

        assert [r.correlation_id for r in caplog.records] == ["upload-9", "upload-9"]
        assert caplog.records[0].cid == "bafk1"

    def test_exception_is_included(self) -> None:
        try:
            raise ValueError("bad amount")
        except ValueError:
            record = logging.LogRecord(
                name="walt.billing",
                level=logging.ERROR,
                pathname=__file__,
                lineno=20,
                msg="failed",
                args=(),
                exc_info=sys.exc_info(),
            )

        data = json.loads(StructuredFormatter().format(record))

        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "bad amount"
        assert data["exception"]["stack_trace"]


class TestMetrics:
    """Tests for the Prometheus exposition."""

    def test_counters_are_exported(self) -> None:
        UPLOAD_ADMISSIONS_TOTAL.labels(decision="allowed").inc()

        exposition = get_metrics().decode()

        assert 'walt_upload_admissions_total{decision="allowed"}' in exposition
        assert "walt_order_transitions_total" in exposition
