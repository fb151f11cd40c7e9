"""
ClearClause models package.
"""

from .schemas import (
    AnalysisOptions,
    AnalysisResult,
    AnalyzeRequest,
    Clause,
    ClauseCategory,
    ErrorResponse,
    Metadata,
    Priority,
    ProcessingMethod,
    Recommendation,
    Risk,
    RiskLevel,
    Summary
)

from .runtime import (
    HealthStatus,
    LocalModelConfig,
    ModelState,
    OperationTimeouts,
    QueueStats,
    ResourceLimits,
    RouterStats,
    RoutingDecision,
    RoutingOutcome
)

from .config import settings, get_settings, Settings

__all__ = [
    # Schemas
    "AnalysisOptions",
    "AnalysisResult",
    "AnalyzeRequest",
    "Clause",
    "ClauseCategory",
    "ErrorResponse",
    "Metadata",
    "Priority",
    "ProcessingMethod",
    "Recommendation",
    "Risk",
    "RiskLevel",
    "Summary",

    # Runtime
    "HealthStatus",
    "LocalModelConfig",
    "ModelState",
    "OperationTimeouts",
    "QueueStats",
    "ResourceLimits",
    "RouterStats",
    "RoutingDecision",
    "RoutingOutcome",

    # Configuration
    "settings",
    "get_settings",
    "Settings"
]
