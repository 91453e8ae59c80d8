# services/metrics.py
from __future__ import annotations
import os

os.environ.setdefault("PROMETHEUS_DISABLE_CREATED_SERIES", "1")

from prometheus_client import (  # noqa: E402
    Counter, Histogram, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST,
)

# Use a DEDICATED registry so only our app metrics show up
APP_REGISTRY = CollectorRegistry(auto_describe=True)

# --- Generic HTTP metrics (bind to our registry) ---
REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests total",
    ["method", "endpoint", "status"], registry=APP_REGISTRY
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Request latency (seconds)",
    ["endpoint", "method"], registry=APP_REGISTRY,
)

# --- Payments / Webhook ---
WEBHOOK_EVENTS = Counter(
    "payments_webhook_events_total", "Webhook deliveries by handler kind and outcome",
    ["kind", "outcome"], registry=APP_REGISTRY
)
SIGNATURE_FAILURES = Counter(
    "payments_signature_failures_total", "Rejected signatures", [
        "source"], registry=APP_REGISTRY
)
GATEWAY_CALLS = Counter(
    "payments_gateway_calls_total", "Outbound gateway calls", [
        "op", "outcome"], registry=APP_REGISTRY
)
LEDGER_WRITES = Counter(
    "payments_ledger_writes_total", "Ledger transactions", [
        "kind", "outcome"], registry=APP_REGISTRY
)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    for kind in ("course", "subscription", "upgrade", "donation", "none"):
        for outcome in ("processed", "duplicate", "noop"):
            WEBHOOK_EVENTS.labels(kind=kind, outcome=outcome).inc(0)
    for source in ("webhook", "donation"):
        SIGNATURE_FAILURES.labels(source=source).inc(0)
