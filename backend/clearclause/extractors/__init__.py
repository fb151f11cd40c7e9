"""
Extractors package for ClearClause.
Pattern-based clause segmentation and rule-based risk assessment.
"""

from .clause_extractor import (
    ClauseExtractor,
    ExtractionReport,
    get_clause_extractor,
    group_clauses_by_type
)

from .risk_rules import (
    RiskAssessor,
    RiskIndicator,
    build_recommendations,
    calculate_risk_score,
    prioritize_risks,
    summarize_risks
)

__all__ = [
    "ClauseExtractor",
    "ExtractionReport",
    "get_clause_extractor",
    "group_clauses_by_type",
    "RiskAssessor",
    "RiskIndicator",
    "build_recommendations",
    "calculate_risk_score",
    "prioritize_risks",
    "summarize_risks"
]
