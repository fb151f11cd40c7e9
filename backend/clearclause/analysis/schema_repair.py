"""
Schema validation and repair for untrusted analysis output.
Every result, from the local model, the heuristic path or a remote provider, passes through here.
"""

import logging
import math
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..extractors.clause_extractor import clause_type_counts
from ..extractors.risk_rules import calculate_risk_score
from ..models.schemas import (
    CLAUSE_TYPE_BY_CATEGORY, AnalysisResult, Clause, ClauseCategory, Metadata, Priority,
    ProcessingMethod, Recommendation, Risk, RiskLevel, Summary
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5

CLAUSE_KEYS = {
    "id": ("id", "clauseId", "clause_id"),
    "text": ("text", "content", "clauseText", "clause_text", "body"),
    "type": ("type", "clauseType", "clause_type"),
    "category": ("category", "clauseCategory", "clause_category", "type", "clauseType"),
    "confidence": ("confidence", "confidenceScore", "confidence_score", "score"),
    "start": ("startPosition", "start_position", "startPos", "start_pos", "start"),
    "end": ("endPosition", "end_position", "endPos", "end_pos", "end"),
}

RISK_KEYS = {
    "id": ("id", "riskId", "risk_id"),
    "title": ("title", "name", "riskTitle", "risk_title"),
    "description": ("description", "details", "explanation"),
    "severity": ("severity", "level", "riskLevel", "risk_level"),
    "category": ("category", "riskCategory", "risk_category", "type"),
    "affected": ("affectedClauses", "affected_clauses", "clauseIds", "clause_ids", "clauses"),
    "mitigation": ("mitigation", "mitigationStrategy", "mitigation_strategy"),
    "confidence": ("confidence", "confidenceScore", "confidence_score"),
    "risk_score": ("riskScore", "risk_score", "score"),
    "business_impact": ("businessImpact", "business_impact", "impact"),
}

RECOMMENDATION_KEYS = {
    "id": ("id", "recommendationId", "recommendation_id"),
    "title": ("title", "name", "action"),
    "description": ("description", "details", "text"),
    "priority": ("priority", "importance", "urgency"),
    "category": ("category", "type"),
    "action_required": ("actionRequired", "action_required", "required"),
    "estimated_effort": ("estimatedEffort", "estimated_effort", "effort"),
    "timeline": ("timeline", "timeframe"),
    "risk_reduction": ("riskReduction", "risk_reduction"),
    "risk_id": ("riskId", "risk_id", "addressesRisk"),
}

SUMMARY_KEYS = {
    "title": ("title", "documentTitle", "document_title"),
    "document_type": ("documentType", "document_type", "type"),
    "risk_score": ("riskScore", "risk_score", "overallRisk", "overall_risk_score"),
    "processing_time_ms": ("processingTimeMs", "processing_time_ms", "processingMs", "processing_ms", "processingTime"),
    "confidence": ("confidence", "confidenceScore", "confidence_score", "overallConfidence"),
}

METADATA_KEYS = {
    "model_used": ("modelUsed", "model_used", "model", "apiService", "api_service"),
    "token_usage": ("tokenUsage", "token_usage", "tokens"),
    "confidence": ("confidence", "overallConfidence", "overall_confidence"),
}

SEVERITY_ALIASES = {
    RiskLevel.LOW: ("low", "minor", "minimal", "negligible", "info"),
    RiskLevel.MEDIUM: ("medium", "moderate", "med", "normal", "average"),
    RiskLevel.HIGH: ("high", "major", "significant", "serious", "important", "elevated"),
    RiskLevel.CRITICAL: ("critical", "severe", "extreme", "catastrophic", "urgent", "very high"),
}

PRIORITY_ALIASES = {
    Priority.LOW: ("low", "minor", "optional", "nice to have"),
    Priority.MEDIUM: ("medium", "moderate", "normal", "med"),
    Priority.HIGH: ("high", "critical", "urgent", "severe", "major", "immediate", "important"),
}

CATEGORY_ALIASES = {
    "payment_terms": ClauseCategory.PAYMENT,
    "payments": ClauseCategory.PAYMENT,
    "fees": ClauseCategory.PAYMENT,
    "liability_limitation": ClauseCategory.LIABILITY,
    "limitation_of_liability": ClauseCategory.LIABILITY,
    "termination_clause": ClauseCategory.TERMINATION,
    "ip": ClauseCategory.INTELLECTUAL_PROPERTY,
    "confidential": ClauseCategory.CONFIDENTIALITY,
    "confidentiality_agreement": ClauseCategory.CONFIDENTIALITY,
    "nda": ClauseCategory.CONFIDENTIALITY,
    "warranties": ClauseCategory.WARRANTY,
    "warranties_representations": ClauseCategory.WARRANTY,
    "representations": ClauseCategory.WARRANTY,
    "indemnity": ClauseCategory.INDEMNIFICATION,
    "jurisdiction": ClauseCategory.GOVERNING_LAW,
    "arbitration": ClauseCategory.DISPUTE_RESOLUTION,
    "disputes": ClauseCategory.DISPUTE_RESOLUTION,
    "assignment_rights": ClauseCategory.ASSIGNMENT,
    "noncompete": ClauseCategory.NON_COMPETE,
    "non_solicitation": ClauseCategory.NON_COMPETE,
    "amendment_modification": ClauseCategory.AMENDMENT,
    "modification": ClauseCategory.AMENDMENT,
    "severability_clause": ClauseCategory.SEVERABILITY,
    "integration": ClauseCategory.ENTIRE_AGREEMENT,
    "notice_provisions": ClauseCategory.NOTICE,
    "notices": ClauseCategory.NOTICE,
    "general_provision": ClauseCategory.OTHER,
    "unknown": ClauseCategory.OTHER,
}


# ----------------------------------------------------------------------
# Coercion helpers
# ----------------------------------------------------------------------

def pick(data: Dict[str, Any], keys: Iterable[str], default: Any = None) -> Any:
    """First present, non-None value among alternative keys."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def coerce_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def clamp_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    """Clamp to [0, 1]; unparseable values take the default."""
    number = coerce_float(value)
    if number is None:
        return default
    return min(max(number, 0.0), 1.0)


def clamp_score(value: Any, default: Optional[float] = None) -> Optional[float]:
    """
    Like clamp_confidence, but reads values in (1, 100] as percentages.

    Any score above 1 is taken as a percentage, so 5 means 0.05 rather than
    a saturated 1.0. Values above 100 clamp to 1.0.
    """
    number = coerce_float(value)
    if number is None:
        return default
    if 1.0 < number <= 100.0:
        number = number / 100.0
    return min(max(number, 0.0), 1.0)


def coerce_int(value: Any, default: int = 0) -> int:
    number = coerce_float(value)
    if number is None:
        return default
    return int(round(number))


def coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "y", "1", "required"):
            return True
        if lowered in ("false", "no", "n", "0", "optional"):
            return False
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    return None


def _match_alias(value: Any, aliases: Dict[Any, Tuple[str, ...]]) -> Optional[Any]:
    text = str(value).strip().lower().replace("_", " ")
    for target, names in aliases.items():
        if text in names:
            return target
    for target, names in aliases.items():
        if any(name in text for name in names if len(name) > 3):
            return target
    return None


def coerce_severity(value: Any) -> RiskLevel:
    """Nearest severity; numeric values are read as a 0-1 scale or a 1-4 rank."""
    if isinstance(value, RiskLevel):
        return value
    number = coerce_float(value)
    if number is not None:
        if number > 1.0:
            rank = min(max(int(round(number)), 1), 4)
            return [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL][rank - 1]
        if number >= 0.85:
            return RiskLevel.CRITICAL
        if number >= 0.6:
            return RiskLevel.HIGH
        if number >= 0.3:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW
    if value is None:
        return RiskLevel.MEDIUM
    return _match_alias(value, SEVERITY_ALIASES) or RiskLevel.MEDIUM


def coerce_priority(value: Any) -> Priority:
    if isinstance(value, Priority):
        return value
    if isinstance(value, RiskLevel):
        return Priority.HIGH if value == RiskLevel.CRITICAL else Priority(value.value)
    if value is None:
        return Priority.MEDIUM
    number = coerce_float(value)
    if number is not None:
        if number > 1.0:
            return Priority.HIGH if number >= 3 else (Priority.MEDIUM if number >= 2 else Priority.LOW)
        return Priority.HIGH if number >= 0.6 else (Priority.MEDIUM if number >= 0.3 else Priority.LOW)
    return _match_alias(value, PRIORITY_ALIASES) or Priority.MEDIUM


def coerce_category(value: Any) -> ClauseCategory:
    if isinstance(value, ClauseCategory):
        return value
    if value is None:
        return ClauseCategory.OTHER
    key = str(value).strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return ClauseCategory(key)
    except ValueError:
        pass
    if key in CATEGORY_ALIASES:
        return CATEGORY_ALIASES[key]
    for category in ClauseCategory:
        if category != ClauseCategory.OTHER and category.value in key:
            return category
    return ClauseCategory.OTHER


def overall_confidence(clauses: List[Clause], risks: List[Risk]) -> float:
    """Mean of clause and risk confidences, 0.5 when there are none."""
    values = [c.confidence for c in clauses] + [r.confidence for r in risks if r.confidence is not None]
    if not values:
        return DEFAULT_CONFIDENCE
    return round(sum(values) / len(values), 4)


def generate_analysis_id() -> str:
    return f"analysis_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, (tuple, set)):
        return list(value)
    return [value]


def _unique_id(candidate: str, used: set) -> str:
    if candidate not in used:
        used.add(candidate)
        return candidate
    suffix = 2
    while f"{candidate}_{suffix}" in used:
        suffix += 1
    unique = f"{candidate}_{suffix}"
    used.add(unique)
    return unique


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value).strip() or default


def _optional_text(value: Any) -> Optional[str]:
    return _text(value) or None


# ----------------------------------------------------------------------
# Repairer
# ----------------------------------------------------------------------

class SchemaRepairer:
    """Normalizes semi-structured output into a canonical AnalysisResult."""

    def repair_clauses(
        self,
        items: Any,
        source_text: Optional[str] = None
    ) -> Tuple[List[Clause], Dict[str, str]]:
        """
        Repair raw clause entries.

        Returns:
            Repaired clauses and a map from the ids the producer used to the final ids
        """
        clauses: List[Clause] = []
        id_map: Dict[str, str] = {}
        used: set = set()
        limit = len(source_text) if source_text is not None else None

        for position, item in enumerate(_as_list(items), start=1):
            if isinstance(item, str):
                item = {"text": item}
            if not isinstance(item, dict):
                logger.debug(f"Dropping clause entry of type {type(item).__name__}")
                continue
            text = _text(pick(item, CLAUSE_KEYS["text"]))
            if not text:
                continue

            raw_id = _text(pick(item, CLAUSE_KEYS["id"]), f"clause_{position}")
            clause_id = _unique_id(raw_id, used)
            id_map.setdefault(raw_id, clause_id)

            category = coerce_category(pick(item, CLAUSE_KEYS["category"]))
            start, end = self._positions(item, text, source_text, limit)

            clauses.append(Clause(
                id=clause_id,
                text=text,
                type=_text(pick(item, CLAUSE_KEYS["type"]), CLAUSE_TYPE_BY_CATEGORY[category]),
                category=category,
                confidence=clamp_confidence(pick(item, CLAUSE_KEYS["confidence"])),
                start_position=start,
                end_position=end
            ))
        return clauses, id_map

    def _positions(
        self,
        item: Dict[str, Any],
        text: str,
        source_text: Optional[str],
        limit: Optional[int]
    ) -> Tuple[int, int]:
        raw_start = pick(item, CLAUSE_KEYS["start"])
        raw_end = pick(item, CLAUSE_KEYS["end"])

        if (raw_start is None or raw_end is None) and source_text:
            found = source_text.find(text)
            if found >= 0:
                return found, found + len(text)

        start = max(coerce_int(raw_start, 0), 0)
        end = max(coerce_int(raw_end, start + len(text)), 0)
        if end < start:
            start, end = end, start
        if limit is not None:
            start, end = min(start, limit), min(end, limit)
        return start, end

    def repair_risks(
        self,
        items: Any,
        clauses: List[Clause],
        id_map: Optional[Dict[str, str]] = None
    ) -> List[Risk]:
        risks: List[Risk] = []
        used: set = set()
        id_map = id_map or {}
        known = {clause.id for clause in clauses}

        for position, item in enumerate(_as_list(items), start=1):
            if not isinstance(item, dict):
                continue
            title = _text(pick(item, RISK_KEYS["title"]))
            description = _text(pick(item, RISK_KEYS["description"]), title)
            if not title and not description:
                continue

            risks.append(Risk(
                id=_unique_id(_text(pick(item, RISK_KEYS["id"]), f"risk_{position}"), used),
                title=title or description[:80],
                description=description,
                severity=coerce_severity(pick(item, RISK_KEYS["severity"])),
                category=_text(pick(item, RISK_KEYS["category"]), "General"),
                affected_clauses=self._resolve_clause_refs(
                    pick(item, RISK_KEYS["affected"]), clauses, known, id_map
                ),
                mitigation=_optional_text(pick(item, RISK_KEYS["mitigation"])),
                confidence=clamp_confidence(pick(item, RISK_KEYS["confidence"])),
                risk_score=clamp_score(pick(item, RISK_KEYS["risk_score"])),
                business_impact=_optional_text(pick(item, RISK_KEYS["business_impact"]))
            ))
        return risks

    def _resolve_clause_refs(
        self,
        refs: Any,
        clauses: List[Clause],
        known: set,
        id_map: Dict[str, str]
    ) -> List[str]:
        resolved: List[str] = []
        for ref in _as_list(refs):
            if isinstance(ref, dict):
                ref = pick(ref, CLAUSE_KEYS["id"])
            if ref is None or isinstance(ref, bool):
                continue
            key = str(ref).strip()
            clause_id = None
            if key in id_map:
                clause_id = id_map[key]
            elif key in known:
                clause_id = key
            elif key.isdigit() and 1 <= int(key) <= len(clauses):
                # Producers sometimes reference clauses by 1-based index
                clause_id = clauses[int(key) - 1].id
            if clause_id is not None and clause_id not in resolved:
                resolved.append(clause_id)
        return resolved

    def repair_recommendations(self, items: Any, risks: List[Risk]) -> List[Recommendation]:
        recommendations: List[Recommendation] = []
        used: set = set()
        risks_by_id = {risk.id: risk for risk in risks}

        for position, item in enumerate(_as_list(items), start=1):
            if isinstance(item, str):
                item = {"title": item}
            if not isinstance(item, dict):
                continue
            title = _text(pick(item, RECOMMENDATION_KEYS["title"]))
            description = _text(pick(item, RECOMMENDATION_KEYS["description"]), title)
            if not title and not description:
                continue

            risk_id = pick(item, RECOMMENDATION_KEYS["risk_id"])
            risk = risks_by_id.get(str(risk_id)) if risk_id is not None else None
            priority = coerce_priority(pick(item, RECOMMENDATION_KEYS["priority"], risk.severity if risk else None))

            action_required = coerce_bool(pick(item, RECOMMENDATION_KEYS["action_required"]))
            if action_required is None:
                if risk is not None:
                    action_required = risk.severity in (RiskLevel.HIGH, RiskLevel.CRITICAL)
                else:
                    action_required = priority == Priority.HIGH

            recommendations.append(Recommendation(
                id=_unique_id(_text(pick(item, RECOMMENDATION_KEYS["id"]), f"rec_{position}"), used),
                title=title or description[:80],
                description=description,
                priority=priority,
                category=_text(pick(item, RECOMMENDATION_KEYS["category"]), risk.category if risk else "General"),
                action_required=action_required,
                estimated_effort=_optional_text(pick(item, RECOMMENDATION_KEYS["estimated_effort"])),
                timeline=_optional_text(pick(item, RECOMMENDATION_KEYS["timeline"])),
                risk_reduction=clamp_score(pick(item, RECOMMENDATION_KEYS["risk_reduction"])),
                risk_id=risk.id if risk else None
            ))
        return recommendations

    def repair(
        self,
        payload: Dict[str, Any],
        processing_method: ProcessingMethod,
        model_used: str,
        source_text: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
        token_usage: Optional[int] = None,
        fallback_reason: Optional[str] = None,
        normalization_error: Optional[str] = None,
        title: Optional[str] = None,
        document_type: Optional[str] = None
    ) -> AnalysisResult:
        """
        Build a canonical result from a loosely shaped payload.

        Args:
            payload: Dict with optional summary, clauses, risks, recommendations and metadata
            processing_method: Which path produced the payload
            model_used: Model or service name when the payload does not name one
            source_text: Contract text, used to locate and clip clause positions

        Returns:
            AnalysisResult satisfying all schema invariants
        """
        payload = payload if isinstance(payload, dict) else {}
        raw_summary = payload.get("summary") if isinstance(payload.get("summary"), dict) else {}
        raw_metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}

        clauses, id_map = self.repair_clauses(payload.get("clauses"), source_text)
        risks = self.repair_risks(payload.get("risks"), clauses, id_map)
        recommendations = self.repair_recommendations(payload.get("recommendations"), risks)

        if processing_time_ms is None:
            processing_time_ms = max(coerce_int(pick(raw_summary, SUMMARY_KEYS["processing_time_ms"]), 0), 0)
        confidence = clamp_confidence(
            pick(raw_summary, SUMMARY_KEYS["confidence"], pick(raw_metadata, METADATA_KEYS["confidence"])),
            overall_confidence(clauses, risks)
        )

        summary = Summary(
            title=title or _text(pick(raw_summary, SUMMARY_KEYS["title"]), "Contract Analysis"),
            document_type=document_type or _text(pick(raw_summary, SUMMARY_KEYS["document_type"]), "contract"),
            total_clauses=len(clauses),
            risk_score=clamp_score(pick(raw_summary, SUMMARY_KEYS["risk_score"]), calculate_risk_score(risks)),
            processing_time_ms=processing_time_ms,
            confidence=confidence,
            clause_type_counts=clause_type_counts(clauses)
        )

        if token_usage is None:
            token_usage = max(coerce_int(pick(raw_metadata, METADATA_KEYS["token_usage"]), 0), 0)
        metadata = Metadata(
            processing_method=processing_method,
            model_used=_text(pick(raw_metadata, METADATA_KEYS["model_used"]), model_used),
            processing_time_ms=processing_time_ms,
            token_usage=token_usage,
            confidence=confidence,
            analysis_id=generate_analysis_id(),
            timestamp=datetime.utcnow(),
            fallback_reason=fallback_reason if processing_method == ProcessingMethod.API_FALLBACK else None,
            normalization_error=normalization_error
        )

        return AnalysisResult(
            summary=summary,
            clauses=clauses,
            risks=risks,
            recommendations=recommendations,
            metadata=metadata
        )
