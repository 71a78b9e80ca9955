"""Prometheus metrics for analysis runs, detectors and AI provider calls"""

from typing import Iterable
from prometheus_client import Counter, Histogram

from scrutix_engine.domain.models import Anomaly

# Analysis metrics
analysis_counter = Counter(
    "scrutix_analysis_total",
    "Total analysis runs",
    ["status"],  # completed | failed | cancelled
)

anomaly_counter = Counter(
    "scrutix_anomalies_total",
    "Anomalies emitted",
    ["type", "severity"],
)

analysis_duration_histogram = Histogram(
    "scrutix_analysis_duration_seconds",
    "End-to-end analysis duration",
    buckets=[0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

# Detector metrics
detector_failure_counter = Counter(
    "scrutix_detector_failures_total",
    "Rule-based detectors that raised",
    ["detector"],
)

# AI provider metrics
ai_call_latency_histogram = Histogram(
    "scrutix_ai_call_latency_seconds",
    "AI provider response time",
    ["provider"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

ai_batch_failure_counter = Counter(
    "scrutix_ai_batch_failures_total",
    "AI detection batches that failed or timed out",
    ["module"],
)

ai_tokens_counter = Counter(
    "scrutix_ai_tokens_total",
    "Tokens consumed by AI calls",
    ["provider", "direction"],  # input | output
)


def record_analysis(status: str, anomalies: Iterable[Anomaly], duration_seconds: float) -> None:
    """Record run outcome and per-type/severity anomaly counts"""
    analysis_counter.labels(status=status).inc()
    analysis_duration_histogram.observe(duration_seconds)
    for anomaly in anomalies:
        anomaly_counter.labels(type=anomaly.type.value, severity=anomaly.severity.value).inc()


def record_tokens(provider: str, input_tokens: int, output_tokens: int) -> None:
    ai_tokens_counter.labels(provider=provider, direction="input").inc(input_tokens)
    ai_tokens_counter.labels(provider=provider, direction="output").inc(output_tokens)
