"""
In-memory run statistics for analyses, extraction calibration and fallbacks.
"""

import logging
from collections import Counter, deque
from typing import Any, Deque, Dict, Iterable

import numpy as np

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Collects analysis statistics for the lifetime of the process."""

    def __init__(self, window: int = 1000):
        self.window = window
        self.reset()

    def reset(self) -> None:
        self.total_analyses = 0
        self.successful_analyses = 0
        self.failed_analyses = 0
        self.processing_times: Deque[float] = deque(maxlen=self.window)
        self.confidences: Deque[float] = deque(maxlen=self.window)
        self.total_tokens = 0

        self.clauses_detected = 0
        self.clauses_retained = 0
        self.clause_categories: Counter = Counter()
        self.risk_severities: Counter = Counter()

        self.stage_failures: Counter = Counter()
        self.fallback_reasons: Counter = Counter()
        self.errors: Counter = Counter()

    def record_analysis(
        self,
        success: bool,
        processing_time_ms: float,
        token_usage: int = 0,
        confidence: float = None,
        error_kind: str = None
    ) -> None:
        self.total_analyses += 1
        self.processing_times.append(float(processing_time_ms))
        if success:
            self.successful_analyses += 1
            self.total_tokens += token_usage
            if confidence is not None:
                self.confidences.append(float(confidence))
        else:
            self.failed_analyses += 1
            self.errors[error_kind or "unknown"] += 1

    def record_clause_extraction(self, detected: int, retained: int, categories: Iterable[str]) -> None:
        """Record detected vs retained clauses for detection-rate calibration."""
        self.clauses_detected += detected
        self.clauses_retained += retained
        self.clause_categories.update(categories)

    def record_risks(self, severities: Iterable[str]) -> None:
        self.risk_severities.update(severities)

    def record_stage_failure(self, stage: str, error_kind: str) -> None:
        self.stage_failures[f"{stage}:{error_kind}"] += 1

    def record_fallback(self, reason: str) -> None:
        self.fallback_reasons[reason] += 1

    @property
    def detection_rate(self) -> float:
        if not self.clauses_detected:
            return 0.0
        return self.clauses_retained / self.clauses_detected

    def processing_time_percentiles(self) -> Dict[str, float]:
        if not self.processing_times:
            return {"p50": 0.0, "p95": 0.0, "p99": 0.0}
        p50, p95, p99 = np.percentile(np.array(self.processing_times), [50, 95, 99])
        return {"p50": round(float(p50), 2), "p95": round(float(p95), 2), "p99": round(float(p99), 2)}

    def snapshot(self) -> Dict[str, Any]:
        average_time = float(np.mean(self.processing_times)) if self.processing_times else 0.0
        average_confidence = float(np.mean(self.confidences)) if self.confidences else 0.0
        return {
            "analyses": {
                "total": self.total_analyses,
                "successful": self.successful_analyses,
                "failed": self.failed_analyses,
                "success_rate": (
                    self.successful_analyses / self.total_analyses if self.total_analyses else 0.0
                ),
            },
            "processing_time_ms": {
                "average": round(average_time, 2),
                **self.processing_time_percentiles(),
            },
            "average_confidence": round(average_confidence, 4),
            "total_tokens": self.total_tokens,
            "clause_extraction": {
                "detected": self.clauses_detected,
                "retained": self.clauses_retained,
                "detection_rate": round(self.detection_rate, 4),
                "categories": dict(self.clause_categories),
            },
            "risk_severities": dict(self.risk_severities),
            "stage_failures": dict(self.stage_failures),
            "fallback_reasons": dict(self.fallback_reasons),
            "errors": dict(self.errors),
        }
