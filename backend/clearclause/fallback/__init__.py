"""
Remote analysis fallback: provider clients and response normalization.
"""

from .clients import (
    FallbackClient,
    GeminiFallbackClient,
    HTTPFallbackClient,
    create_fallback_client
)
from .normalizer import ResponseNormalizer

__all__ = [
    "FallbackClient",
    "GeminiFallbackClient",
    "HTTPFallbackClient",
    "create_fallback_client",
    "ResponseNormalizer"
]
