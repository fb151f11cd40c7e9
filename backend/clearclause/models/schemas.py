"""
Canonical analysis schema shared by the local-model and fallback paths.
Fields are snake_case in Python and serialize with camelCase aliases.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class RiskLevel(str, Enum):
    """Risk severity levels."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class Priority(str, Enum):
    """Recommendation priority levels."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class ClauseCategory(str, Enum):
    """Clause taxonomy. Declaration order breaks categorization ties."""
    PAYMENT = "payment"
    LIABILITY = "liability"
    TERMINATION = "termination"
    INTELLECTUAL_PROPERTY = "intellectual_property"
    CONFIDENTIALITY = "confidentiality"
    WARRANTY = "warranty"
    INDEMNIFICATION = "indemnification"
    GOVERNING_LAW = "governing_law"
    DISPUTE_RESOLUTION = "dispute_resolution"
    FORCE_MAJEURE = "force_majeure"
    ASSIGNMENT = "assignment"
    NON_COMPETE = "non_compete"
    AMENDMENT = "amendment"
    SEVERABILITY = "severability"
    ENTIRE_AGREEMENT = "entire_agreement"
    NOTICE = "notice"
    OTHER = "other"


class ProcessingMethod(str, Enum):
    """Which path produced a result."""
    AI_MODEL = "ai_model"
    API_FALLBACK = "api_fallback"


# Descriptive clause type reported alongside each category
CLAUSE_TYPE_BY_CATEGORY: Dict[ClauseCategory, str] = {
    ClauseCategory.PAYMENT: "payment_terms",
    ClauseCategory.LIABILITY: "liability_limitation",
    ClauseCategory.TERMINATION: "termination_clause",
    ClauseCategory.INTELLECTUAL_PROPERTY: "intellectual_property",
    ClauseCategory.CONFIDENTIALITY: "confidentiality_agreement",
    ClauseCategory.WARRANTY: "warranties_representations",
    ClauseCategory.INDEMNIFICATION: "indemnification",
    ClauseCategory.GOVERNING_LAW: "governing_law",
    ClauseCategory.DISPUTE_RESOLUTION: "dispute_resolution",
    ClauseCategory.FORCE_MAJEURE: "force_majeure",
    ClauseCategory.ASSIGNMENT: "assignment_rights",
    ClauseCategory.NON_COMPETE: "non_compete",
    ClauseCategory.AMENDMENT: "amendment_modification",
    ClauseCategory.SEVERABILITY: "severability_clause",
    ClauseCategory.ENTIRE_AGREEMENT: "entire_agreement",
    ClauseCategory.NOTICE: "notice_provisions",
    ClauseCategory.OTHER: "general_provision",
}

SEVERITY_WEIGHTS: Dict[RiskLevel, float] = {
    RiskLevel.CRITICAL: 1.0,
    RiskLevel.HIGH: 0.8,
    RiskLevel.MEDIUM: 0.6,
    RiskLevel.LOW: 0.4,
}

SEVERITY_RANK: Dict[RiskLevel, int] = {
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
    RiskLevel.CRITICAL: 4,
}

SCHEMA_VERSION = "1.0.0"


class CamelModel(BaseModel):
    """Base model serializing with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=()
    )


class Clause(CamelModel):
    """A contiguous span of contract text tagged with a category."""
    id: str = Field(..., description="Clause identifier, unique within a result")
    text: str = Field(..., description="Clause text")
    type: str = Field(..., description="Descriptive clause type")
    category: ClauseCategory = Field(..., description="Taxonomy category")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Extraction confidence")
    start_position: int = Field(..., ge=0, description="Start character offset")
    end_position: int = Field(..., ge=0, description="End character offset")

    @model_validator(mode="after")
    def check_positions(self):
        if self.end_position < self.start_position:
            raise ValueError("end_position must not precede start_position")
        return self


class Risk(CamelModel):
    """A risk derived from one or more clauses."""
    id: str = Field(..., description="Risk identifier, unique within a result")
    title: str = Field(..., description="Short risk title")
    description: str = Field(..., description="What makes this a risk")
    severity: RiskLevel = Field(..., description="Risk severity")
    category: str = Field(..., description="Risk category")
    affected_clauses: List[str] = Field(default_factory=list, description="Ids of clauses this risk stems from")
    mitigation: Optional[str] = Field(None, description="Suggested mitigation")
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    risk_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    business_impact: Optional[str] = Field(None, description="Plain-language business impact")


class Recommendation(CamelModel):
    """A prioritized action derived from risks."""
    id: str = Field(..., description="Recommendation identifier, unique within a result")
    title: str = Field(..., description="Action title")
    description: str = Field(..., description="What to do")
    priority: Priority = Field(..., description="Action priority")
    category: str = Field(..., description="Recommendation category")
    action_required: bool = Field(..., description="Whether the action must be taken before signing")
    estimated_effort: Optional[str] = None
    timeline: Optional[str] = None
    risk_reduction: Optional[float] = Field(None, ge=0.0, le=1.0)
    risk_id: Optional[str] = Field(None, description="Risk this recommendation addresses")


class Summary(CamelModel):
    """Document-level analysis summary."""
    title: str = "Contract Analysis"
    document_type: str = "contract"
    total_clauses: int = Field(..., ge=0)
    risk_score: float = Field(..., ge=0.0, le=1.0)
    processing_time_ms: int = Field(0, ge=0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    clause_type_counts: Dict[str, int] = Field(default_factory=dict)


class Metadata(CamelModel):
    """Provenance of an analysis result."""
    processing_method: ProcessingMethod
    model_used: str
    processing_time_ms: int = Field(0, ge=0)
    token_usage: int = Field(0, ge=0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    analysis_id: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    fallback_reason: Optional[str] = None
    version: str = SCHEMA_VERSION
    normalization_error: Optional[str] = None

    @model_validator(mode="after")
    def check_fallback_reason(self):
        if self.fallback_reason is not None and self.processing_method != ProcessingMethod.API_FALLBACK:
            raise ValueError("fallback_reason is only valid for api_fallback results")
        return self


class AnalysisResult(CamelModel):
    """Canonical output of every analysis path."""
    summary: Summary
    clauses: List[Clause] = Field(default_factory=list)
    risks: List[Risk] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    metadata: Metadata

    @model_validator(mode="after")
    def check_invariants(self):
        if self.summary.total_clauses != len(self.clauses):
            raise ValueError("summary.total_clauses must equal the number of clauses")

        for name, items in (("clause", self.clauses), ("risk", self.risks),
                            ("recommendation", self.recommendations)):
            ids = [item.id for item in items]
            if len(ids) != len(set(ids)):
                raise ValueError(f"duplicate {name} ids")

        clause_ids = {clause.id for clause in self.clauses}
        for risk in self.risks:
            unknown = [cid for cid in risk.affected_clauses if cid not in clause_ids]
            if unknown:
                raise ValueError(f"risk {risk.id} references unknown clauses: {unknown}")
        return self

    def to_response(self) -> Dict:
        """JSON-ready dict with camelCase keys, omitting absent optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AnalysisOptions(CamelModel):
    """Per-request feature toggles."""
    enable_clause_extraction: bool = True
    enable_risk_assessment: bool = True
    enable_recommendations: bool = True
    confidence_threshold: float = Field(0.3, ge=0.0, le=1.0)
    title: Optional[str] = None
    document_type: Optional[str] = None


# API request / response models

class AnalyzeRequest(CamelModel):
    """Request body for contract analysis."""
    text: str = Field(..., description="Contract text to analyse")
    options: Optional[AnalysisOptions] = None


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str
    message: str
    timestamp: str
