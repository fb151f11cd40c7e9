"""
Runtime state and configuration records for the model manager, admission queue and router.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LocalModelConfig(BaseModel):
    """Immutable configuration for the locally resident model."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_name: str = Field(..., min_length=1, description="Model identifier")
    context_window: int = Field(128000, ge=512, le=1_048_576, description="Context window in tokens")
    max_tokens: int = Field(2048, gt=0, le=8192, description="Maximum new tokens per inference")
    temperature: float = Field(0.1, ge=0.0, le=2.0)
    memory_optimization: bool = Field(True, description="Load weights in reduced precision")


# Changing any of these on a loaded model requires a reload
RELOAD_FIELDS = ("model_name", "context_window", "memory_optimization")


class ResourceLimits(BaseModel):
    """Hard resource ceilings."""

    model_config = ConfigDict(frozen=True)

    max_memory_usage_mb: float = Field(16384.0, gt=0)
    max_processing_time_ms: int = Field(30000, gt=0)


class OperationTimeouts(BaseModel):
    """Wall-clock budgets for suspending model operations."""

    model_config = ConfigDict(frozen=True)

    load_seconds: float = Field(60.0, gt=0)
    inference_seconds: float = Field(30.0, gt=0)
    optimize_seconds: float = Field(5.0, gt=0)


class HealthStatus(str, Enum):
    """Model health as last observed."""
    NOT_LOADED = "not_loaded"
    HEALTHY = "healthy"
    SLOW = "slow"
    ERROR = "error"


class PerformanceMetrics(BaseModel):
    """Request counters for the resident model."""
    total_requests: int = 0
    failed_requests: int = 0
    average_inference_time_ms: float = 0.0


class ModelState(BaseModel):
    """Snapshot of the resident model. All fields are zero/None while unloaded."""

    model_config = ConfigDict(protected_namespaces=())

    loaded: bool = False
    model_name: Optional[str] = None
    memory_usage_mb: float = 0.0
    load_timestamp: Optional[datetime] = None
    last_activity_timestamp: Optional[datetime] = None
    inference_count: int = 0
    total_inference_time_ms: float = 0.0
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    health_status: HealthStatus = HealthStatus.NOT_LOADED


class QueueItem(BaseModel):
    """A submitted operation tracked by the admission queue."""
    id: str
    request: str
    enqueued_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def wait_time_ms(self) -> Optional[float]:
        if self.started_at is None:
            return None
        return (self.started_at - self.enqueued_at).total_seconds() * 1000


class QueueStats(BaseModel):
    """Aggregate admission queue statistics."""
    queued: int
    processing: int
    completed: int
    failed: int
    total_submitted: int
    max_concurrent: int
    average_wait_ms: float


class RouterStats(BaseModel):
    """Running request statistics for the router."""
    total_requests: int = 0
    ai_model_requests: int = 0
    api_requests: int = 0
    failures: int = 0
    fallbacks: int = 0

    @property
    def ai_model_success_rate(self) -> float:
        attempted = self.ai_model_requests + self.fallbacks
        return self.ai_model_requests / attempted if attempted else 0.0

    @property
    def total_success_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return (self.total_requests - self.failures) / self.total_requests

    def as_dict(self) -> dict:
        data = self.model_dump()
        data["ai_model_success_rate"] = round(self.ai_model_success_rate, 4)
        data["total_success_rate"] = round(self.total_success_rate, 4)
        return data


class RoutingOutcome(str, Enum):
    """Terminal outcomes of the primary/fallback decision."""
    PRIMARY_SUCCESS = "primary_success"
    FALLBACK_AFTER_FAILURE = "fallback_after_failure"
    FALLBACK_UNAVAILABLE = "fallback_unavailable"
    FAILED = "failed"


class StateSnapshot(BaseModel):
    """System state captured when a routing decision is made."""
    loaded: bool
    health_status: HealthStatus
    memory_usage_mb: float
    memory_utilization: float


class RoutingDecision(BaseModel):
    """Record of how one request was routed."""
    request_id: str
    outcome: RoutingOutcome
    primary_attempted: bool = False
    primary_error: Optional[str] = None
    fallback_attempted: bool = False
    fallback_error: Optional[str] = None
    snapshot: Optional[StateSnapshot] = None
    duration_ms: int = 0
    decided_at: datetime = Field(default_factory=datetime.utcnow)
