"""
Maps arbitrary fallback provider payloads onto the canonical analysis schema.
"""

import logging
from typing import Any, Optional

from ..analysis.payloads import (
    CanonicalPayload, ItemsPayload, UnparsedPayload, WrappedPayload, classify_payload
)
from ..analysis.schema_repair import SchemaRepairer
from ..models.schemas import AnalysisResult, ProcessingMethod

logger = logging.getLogger(__name__)


class ResponseNormalizer:
    """Single conversion point from provider payloads to AnalysisResult."""

    def __init__(self, repairer: Optional[SchemaRepairer] = None):
        self.repairer = repairer or SchemaRepairer()

    def normalize(
        self,
        payload: Any,
        model_used: str = "api_service",
        source_text: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
        fallback_reason: Optional[str] = None,
        title: Optional[str] = None,
        document_type: Optional[str] = None
    ) -> AnalysisResult:
        """
        Normalize a provider payload.

        Args:
            payload: Raw provider response (dict, list, JSON text or prose)
            model_used: Service name used when the payload does not name one
            source_text: Contract text, used to locate clause positions
            processing_time_ms: Wall-clock time of the fallback call
            fallback_reason: Why the fallback ran, when it was failure-triggered

        Returns:
            Canonical result tagged as api_fallback
        """
        variant = classify_payload(payload)
        normalization_error = None

        if isinstance(variant, (CanonicalPayload, WrappedPayload)):
            data = variant.data
        elif isinstance(variant, ItemsPayload):
            data = {"clauses": variant.items}
        else:
            data = self._minimal_payload(variant)
            normalization_error = variant.reason
            logger.warning(f"Fallback payload could not be parsed: {variant.reason}")

        return self.repairer.repair(
            data,
            processing_method=ProcessingMethod.API_FALLBACK,
            model_used=model_used,
            source_text=source_text,
            processing_time_ms=processing_time_ms,
            fallback_reason=fallback_reason,
            normalization_error=normalization_error,
            title=title,
            document_type=document_type
        )

    def _minimal_payload(self, variant: UnparsedPayload) -> dict:
        """Well-formed result that flags the unreadable response for manual review."""
        return {
            "summary": {"confidence": 0.0, "riskScore": 0.6},
            "clauses": [],
            "risks": [{
                "id": "risk_response_processing",
                "title": "Response Processing Error",
                "description": "The analysis service returned a response that could not be interpreted.",
                "severity": "Medium",
                "category": "Operational",
                "affectedClauses": [],
                "mitigation": "Review the contract manually or retry the analysis.",
                "confidence": 0.0,
            }],
            "recommendations": [{
                "id": "rec_manual_review",
                "title": "Manual review required",
                "description": "Automated analysis failed to produce a readable result.",
                "priority": "Medium",
                "category": "Operational",
                "actionRequired": True,
                "riskId": "risk_response_processing",
            }],
        }
