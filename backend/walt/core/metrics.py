"""Prometheus metrics for storage accounting and billing.

Tracks upload admission, payment order lifecycle and provider health.
"""

import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    multiprocess,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Multiprocess mode (celery workers with a shared metrics dir)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Storage Quota Metrics
# ============================================
UPLOAD_ADMISSIONS_TOTAL = Counter(
    "walt_upload_admissions_total",
    "Upload admission decisions",
    ["decision"],  # allowed, rejected
    registry=REGISTRY,
)

UPLOAD_BYTES_TOTAL = Counter(
    "walt_upload_bytes_total",
    "Bytes admitted for upload",
    registry=REGISTRY,
)

BLOB_STORE_ERRORS_TOTAL = Counter(
    "walt_blob_store_errors_total",
    "Blob store operation failures",
    ["operation"],
    registry=REGISTRY,
)


# ============================================
# Payment Order Metrics
# ============================================
ORDERS_CREATED_TOTAL = Counter(
    "walt_orders_created_total",
    "Payment orders created with the provider",
    ["currency"],
    registry=REGISTRY,
)

ORDER_TRANSITIONS_TOTAL = Counter(
    "walt_order_transitions_total",
    "Payment order status transitions applied",
    ["status", "source"],  # source: webhook, poll, reconcile, lookup
    registry=REGISTRY,
)

WEBHOOK_REJECTIONS_TOTAL = Counter(
    "walt_webhook_rejections_total",
    "Webhook deliveries dropped before any state change",
    ["reason"],
    registry=REGISTRY,
)

PAYMENT_POLL_ATTEMPTS_TOTAL = Counter(
    "walt_payment_poll_attempts_total",
    "Provider status polls performed after checkout",
    registry=REGISTRY,
)

ACTIVE_PAYMENT_POLLERS = Gauge(
    "walt_active_payment_pollers",
    "Orders currently being polled",
    registry=REGISTRY,
)

PAYMENT_PROVIDER_ERRORS_TOTAL = Counter(
    "walt_payment_provider_errors_total",
    "Payment provider call failures",
    ["operation"],
    registry=REGISTRY,
)

PAYMENT_PROVIDER_DURATION_SECONDS = Histogram(
    "walt_payment_provider_duration_seconds",
    "Payment provider request duration in seconds",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)


# ============================================
# Access Gate Metrics
# ============================================
ACCESS_DECISIONS_TOTAL = Counter(
    "walt_access_decisions_total",
    "Access gate decisions",
    ["allowed"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format.

    Returns:
        bytes: Prometheus-formatted metrics
    """
    return generate_latest(REGISTRY)

