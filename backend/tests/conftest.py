"""Shared fakes and fixtures: no model downloads, no network."""

import json
import time
from typing import Any, Callable, List, Optional, Union

import pytest

from clearclause.analysis.analyzer import ContractAnalyzer
from clearclause.core.admission import AdmissionQueue
from clearclause.core.backends import ModelBackend
from clearclause.core.metrics import MetricsCollector
from clearclause.core.resource_manager import ResourceManager
from clearclause.fallback.clients import FallbackClient
from clearclause.models.runtime import LocalModelConfig, OperationTimeouts, ResourceLimits
from clearclause.routing.router import ContractAnalysisRouter

CONTRACT = (
    "Payment is due within 30 days of invoice. "
    "Either party may terminate this agreement with 30 days notice."
)

CLAUSES_OUTPUT = json.dumps({
    "clauses": [
        {"id": "c1", "text": "Payment is due within 30 days of invoice.", "category": "payment",
         "confidence": 0.9},
        {"id": "c2", "text": "Either party may terminate this agreement with 30 days notice.",
         "category": "termination", "confidence": 0.85},
    ]
})

RISKS_OUTPUT = json.dumps({
    "risks": [
        {"id": "r1", "title": "Termination for convenience",
         "description": "Either side can walk away on short notice.", "severity": "Medium",
         "category": "Contract Management", "affectedClauses": ["c2"], "confidence": 0.7},
    ]
})

RECOMMENDATIONS_OUTPUT = json.dumps({"recommendations": []})

FALLBACK_PAYLOAD = {
    "summary": {"title": "Services Agreement", "riskScore": 0.4, "confidence": 0.8},
    "clauses": [
        {"clause_id": "A", "content": "Payment is due within 30 days of invoice.",
         "category": "payment_terms", "confidence_score": 0.9},
    ],
    "risks": [
        {"risk_id": "R", "name": "Late payment exposure", "level": "moderate",
         "clause_ids": ["A", "missing"]},
    ],
    "recommendations": [
        {"title": "Add late fee", "importance": "urgent", "riskId": "R"},
    ],
}


def staged_responder(
    clauses: str = CLAUSES_OUTPUT,
    risks: str = RISKS_OUTPUT,
    recommendations: str = RECOMMENDATIONS_OUTPUT
) -> Callable[[str], str]:
    """Answer each analysis stage prompt with canned model output."""
    def respond(prompt: str) -> str:
        if "Identify risks" in prompt:
            return risks
        if "negotiation advisor" in prompt:
            return recommendations
        if "Respond with 'OK'" in prompt:
            return "OK"
        return clauses
    return respond


Response = Union[str, Exception, Callable[[str], str]]


class FakeModelBackend(ModelBackend):
    """In-process stand-in for a transformers model."""

    name = "fake"

    def __init__(
        self,
        responses: Optional[List[Response]] = None,
        default: Response = None,
        footprint_mb: Optional[float] = 1000.0,
        footprint_after_release_mb: Optional[float] = None,
        delay: float = 0.0,
        load_delay: float = 0.0,
        load_error: Optional[Exception] = None
    ):
        self.responses = list(responses or [])
        self.default = default if default is not None else staged_responder()
        self.footprint_mb = footprint_mb
        self.footprint_after_release_mb = footprint_after_release_mb
        self.delay = delay
        self.load_delay = load_delay
        self.load_error = load_error

        self.loaded = False
        self.load_calls = 0
        self.unload_calls = 0
        self.release_calls = 0
        self.prompts: List[str] = []

    def load(self, config: LocalModelConfig) -> None:
        self.load_calls += 1
        if self.load_delay:
            time.sleep(self.load_delay)
        if self.load_error is not None:
            raise self.load_error
        self.loaded = True

    def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        self.prompts.append(prompt)
        if self.delay:
            time.sleep(self.delay)
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response

    def unload(self) -> None:
        self.unload_calls += 1
        self.loaded = False

    def release_memory(self) -> None:
        self.release_calls += 1
        if self.footprint_after_release_mb is not None:
            self.footprint_mb = self.footprint_after_release_mb

    def memory_footprint_mb(self) -> Optional[float]:
        return self.footprint_mb


class FakeFallbackClient(FallbackClient):
    """Returns a canned payload or raises a canned error."""

    name = "fake_api"

    def __init__(self, payload: Any = None, error: Optional[Exception] = None):
        self.payload = payload if payload is not None else FALLBACK_PAYLOAD
        self.error = error
        self.calls: List[str] = []
        self.closed = False

    async def analyze(self, text, options):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.payload

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def model_config() -> LocalModelConfig:
    return LocalModelConfig(model_name="fake-1b", context_window=4096, max_tokens=256)


@pytest.fixture
def limits() -> ResourceLimits:
    return ResourceLimits(max_memory_usage_mb=10000.0, max_processing_time_ms=30000)


@pytest.fixture
def timeouts() -> OperationTimeouts:
    return OperationTimeouts(load_seconds=2.0, inference_seconds=2.0, optimize_seconds=2.0)


@pytest.fixture
def backend() -> FakeModelBackend:
    return FakeModelBackend()


@pytest.fixture
def fallback_client() -> FakeFallbackClient:
    return FakeFallbackClient()


def build_router(backend=None, fallback=None, max_concurrent=2, **kwargs):
    """Router over a fake model and fake fallback sharing one metrics collector."""
    metrics = MetricsCollector()
    manager = ResourceManager(
        LocalModelConfig(model_name="fake-1b", context_window=4096, max_tokens=256),
        ResourceLimits(max_memory_usage_mb=10000.0),
        OperationTimeouts(load_seconds=2.0, inference_seconds=2.0),
        backend or FakeModelBackend(),
    )
    return ContractAnalysisRouter(
        resource_manager=manager,
        analyzer=ContractAnalyzer(resource_manager=manager, metrics=metrics),
        fallback_client=fallback or FakeFallbackClient(),
        admission_queue=AdmissionQueue(max_concurrent),
        metrics=metrics,
        **kwargs,
    )
