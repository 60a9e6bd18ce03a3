"""Prometheus metrics for extraction routing and accounting mapping.

Exposes key metrics for monitoring:
- Extraction attempts by provider and outcome
- Fallbacks triggered by the router
- Extraction spend
- Mapping outcomes and confidence distribution
- GL rule evaluations

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest

# Extraction metrics
extraction_attempts_total = Counter(
    "extraction_attempts_total",
    "Total extraction attempts by provider",
    ["provider", "status"],  # success, failed
)

extraction_fallbacks_total = Counter(
    "extraction_fallbacks_total",
    "Total fallbacks triggered by the extraction router",
    ["primary", "fallback"],
)

extraction_cost_usd_total = Counter(
    "extraction_cost_usd_total",
    "Accumulated extraction spend in USD",
    ["provider"],
)

extraction_duration_seconds = Histogram(
    "extraction_duration_seconds",
    "Duration of a single provider extraction attempt in seconds",
    ["provider"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# Mapping metrics
mapping_documents_total = Counter(
    "mapping_documents_total",
    "Total documents processed by the mapping engine",
    ["mode", "outcome"],  # outcome: auto_approved, requires_review, error
)

mapping_overall_confidence = Histogram(
    "mapping_overall_confidence",
    "Distribution of overall mapping confidence",
    ["mode"],
    buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 1.0),
)

# GL rule metrics
gl_rule_evaluations_total = Counter(
    "gl_rule_evaluations_total",
    "Total line items evaluated against GL rules",
    ["result"],  # matched, unmatched
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics in the text exposition format."""
    return generate_latest()
