"""
ClearClause Contract Analyzer Backend
Hybrid contract analysis: a locally hosted model with a remote API fallback.
"""

__version__ = "1.0.0"
__author__ = "ClearClause Team"

from .errors import (
    ClearClauseError,
    ConfigurationError,
    FallbackFailure,
    InferenceFailure,
    InvalidInput,
    ModelNotLoaded,
    OperationTimeoutError,
    ResourceExhausted
)

__all__ = [
    "ClearClauseError",
    "ConfigurationError",
    "FallbackFailure",
    "InferenceFailure",
    "InvalidInput",
    "ModelNotLoaded",
    "OperationTimeoutError",
    "ResourceExhausted"
]
