"""
Prometheus metrics for the receipt pipeline and insight cache.
"""

from prometheus_client import Counter, Histogram


# ── Receipt Uploads ──────────────────────────────────────────
receipts_uploaded_total = Counter(
    "receipts_uploaded_total",
    "Total receipts uploaded",
    ["mode"],
)

# ── Receipt Jobs ─────────────────────────────────────────────
receipt_jobs_processed_total = Counter(
    "receipt_jobs_processed_total",
    "Receipt jobs that finished extraction",
    ["status"],
)

receipt_jobs_failed_total = Counter(
    "receipt_jobs_failed_total",
    "Receipt jobs whose extraction failed",
    ["error_code"],
)

receipt_jobs_recovered_total = Counter(
    "receipt_jobs_recovered_total",
    "Jobs reset by the stale-processing or stuck-confirmation sweeps",
    ["sweep"],
)

receipt_confirmations_total = Counter(
    "receipt_confirmations_total",
    "Confirmation attempts by outcome",
    ["outcome"],
)

extraction_confidence = Histogram(
    "receipt_extraction_confidence",
    "Distribution of receipt extraction confidence scores",
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 1.0],
)

receipt_job_duration_seconds = Histogram(
    "receipt_job_duration_seconds",
    "Time to process one receipt job",
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60],
)

# ── Insights ─────────────────────────────────────────────────
insight_cache_requests_total = Counter(
    "insight_cache_requests_total",
    "Insight reads by cache result",
    ["result"],
)

insight_generation_duration_seconds = Histogram(
    "insight_generation_duration_seconds",
    "Time to regenerate an insight run",
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 5],
)
