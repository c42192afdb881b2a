"""Prometheus metrics for the image provider broker."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Generation metrics ───────────────────────────────────────
GENERATION_RUNS = Counter(
    "generation_runs_total",
    "Generation runs by terminal status",
    ["status"],
)

GENERATION_ATTEMPTS = Counter(
    "generation_attempts_total",
    "Provider attempts by outcome",
    ["provider", "outcome"],  # success / failure
)

GENERATION_LATENCY = Histogram(
    "generation_adapter_latency_seconds",
    "Generation adapter call latency",
    ["provider"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# ── Selection & quota metrics ────────────────────────────────
PROVIDER_SELECTIONS = Counter(
    "provider_selections_total",
    "Providers chosen by the selector",
    ["provider"],
)

SELECTION_EXHAUSTED = Counter(
    "provider_selection_exhausted_total",
    "Runs that found no eligible provider",
)

USAGE_RECORD_FAILURES = Counter(
    "provider_usage_record_failures_total",
    "Successful generations whose usage increment or record save failed",
    ["provider"],
)
