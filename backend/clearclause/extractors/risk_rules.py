"""
Rule-based risk indicators and recommendation templates.
Maps clause text to risks and risks to prioritized actions.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..models.schemas import (
    SEVERITY_RANK, SEVERITY_WEIGHTS, Clause, ClauseCategory, Priority, Recommendation,
    Risk, RiskLevel
)

logger = logging.getLogger(__name__)


@dataclass
class RiskIndicator:
    """A pattern whose presence (or absence) in a clause signals a risk."""
    theme: str
    severity: RiskLevel
    pattern: str
    title: str
    description: str
    category: str
    mitigation: str
    business_impact: str
    confidence: float = 0.75
    categories: Optional[FrozenSet[ClauseCategory]] = None
    absent: bool = False
    compiled: re.Pattern = field(init=False, repr=False)

    def __post_init__(self):
        self.compiled = re.compile(self.pattern, re.IGNORECASE)

    def applies(self, clause: Clause) -> bool:
        if self.categories is not None and clause.category not in self.categories:
            return False
        found = self.compiled.search(clause.text) is not None
        return not found if self.absent else found


RISK_INDICATORS: List[RiskIndicator] = [
    # Payment
    RiskIndicator(
        theme="payment_terms", severity=RiskLevel.MEDIUM,
        pattern=r'\b(?:90|120|180)\s*days\b|\bninety\s+days\b',
        title="Extended Payment Terms",
        description="Payment windows of 90 days or more delay cash flow.",
        category="Financial",
        mitigation="Negotiate payment within 30 to 45 days and add late-payment interest.",
        business_impact="Delayed receivables and higher working-capital needs.",
        categories=frozenset({ClauseCategory.PAYMENT}), confidence=0.8
    ),
    RiskIndicator(
        theme="payment_terms", severity=RiskLevel.HIGH,
        pattern=r'\bnon-?refundable\b',
        title="Non-Refundable Payments",
        description="Amounts paid cannot be recovered even if the other party fails to perform.",
        category="Financial",
        mitigation="Tie payments to milestones and add refund rights for non-performance.",
        business_impact="Sunk cost if the engagement ends early.",
        categories=frozenset({ClauseCategory.PAYMENT}), confidence=0.8
    ),
    RiskIndicator(
        theme="payment_terms", severity=RiskLevel.LOW,
        pattern=r'\blate (?:fee|charge|payment)s?\b|\binterest\b',
        title="Late Payment Charges",
        description="Late payments accrue fees or interest.",
        category="Financial",
        mitigation="Confirm the rate is reasonable and add a grace period.",
        business_impact="Additional cost on delayed invoices.",
        categories=frozenset({ClauseCategory.PAYMENT}), confidence=0.7
    ),
    RiskIndicator(
        theme="penalties", severity=RiskLevel.HIGH,
        pattern=r'\bpenalt(?:y|ies)\b|\bliquidated damages\b',
        title="Penalty Provisions",
        description="The contract imposes penalties or liquidated damages.",
        category="Financial",
        mitigation="Cap penalties and make sure they reflect a genuine pre-estimate of loss.",
        business_impact="Fixed payouts regardless of actual harm.",
        confidence=0.75
    ),
    # Liability
    RiskIndicator(
        theme="liability", severity=RiskLevel.CRITICAL,
        pattern=r'\bunlimited liability\b|\bliability\b.{0,40}\bunlimited\b|\bwithout (?:any )?limit(?:ation)?\b|\bno limit(?:ation)? (?:on|of|to) (?:its |their )?liability\b',
        title="Unlimited Liability Exposure",
        description="Liability is not capped, exposing the party to unbounded damages.",
        category="Risk Management",
        mitigation="Cap liability at the fees paid over the preceding 12 months.",
        business_impact="Potentially unbounded financial exposure.",
        confidence=0.85
    ),
    RiskIndicator(
        theme="liability", severity=RiskLevel.HIGH,
        pattern=r'\bliable for (?:any and )?all\b|\bsole(?:ly)? liable\b|\bfully liable\b',
        title="Broad Liability Assumption",
        description="One party assumes liability for all losses.",
        category="Risk Management",
        mitigation="Limit liability to direct damages caused by the party's own breach.",
        business_impact="Responsibility for losses outside the party's control.",
        confidence=0.8
    ),
    RiskIndicator(
        theme="liability", severity=RiskLevel.MEDIUM,
        pattern=r'\b(?:consequential|indirect|special|punitive) damages\b',
        title="Consequential Damages Exposure",
        description="Indirect or consequential damages may be recoverable.",
        category="Risk Management",
        mitigation="Add a mutual exclusion of indirect and consequential damages.",
        business_impact="Exposure to lost-profit claims.",
        confidence=0.7
    ),
    # Termination
    RiskIndicator(
        theme="termination", severity=RiskLevel.HIGH,
        pattern=r'\bterminat\w*\b.{0,80}\b(?:immediately|at any time|without (?:prior )?notice|without cause|sole discretion)\b',
        title="One-Sided Termination Rights",
        description="The agreement can be ended immediately or without cause.",
        category="Contract Management",
        mitigation="Require at least 30 days written notice and a cure period.",
        business_impact="Sudden loss of the business relationship.",
        categories=frozenset({ClauseCategory.TERMINATION}), confidence=0.8
    ),
    RiskIndicator(
        theme="termination", severity=RiskLevel.MEDIUM,
        pattern=r'\bnotice\b',
        title="Inadequate Termination Notice",
        description="Termination is possible without any stated notice period.",
        category="Contract Management",
        mitigation="Add a written notice period for termination.",
        business_impact="Little time to transition when the contract ends.",
        categories=frozenset({ClauseCategory.TERMINATION}), absent=True, confidence=0.6
    ),
    RiskIndicator(
        theme="renewal", severity=RiskLevel.LOW,
        pattern=r'\bauto(?:matic(?:ally)?)?[- ]?renew\w*\b',
        title="Automatic Renewal",
        description="The term renews automatically unless cancelled.",
        category="Contract Management",
        mitigation="Calendar the opt-out deadline or require affirmative renewal.",
        business_impact="Unintended multi-year commitments.",
        confidence=0.75
    ),
    # Indemnification
    RiskIndicator(
        theme="indemnification", severity=RiskLevel.HIGH,
        pattern=r'\bindemnif\w*\b.{0,80}\b(?:any and all|all claims|all losses|all liabilities)\b',
        title="Broad Indemnification Obligation",
        description="The indemnity covers all claims, not only those caused by the indemnifying party.",
        category="Legal",
        mitigation="Limit the indemnity to third-party claims caused by the party's negligence or breach.",
        business_impact="Defence and settlement costs for claims the party did not cause.",
        confidence=0.8
    ),
    RiskIndicator(
        theme="indemnification", severity=RiskLevel.MEDIUM,
        pattern=r'\bhold (?:\w+ )?harmless\b',
        title="Hold Harmless Obligation",
        description="One party must hold the other harmless from claims.",
        category="Legal",
        mitigation="Make the obligation mutual and capped.",
        business_impact="Assumed liability for the other party's claims.",
        confidence=0.7
    ),
    # Intellectual property
    RiskIndicator(
        theme="intellectual_property", severity=RiskLevel.HIGH,
        pattern=r'\bassigns? (?:all|any and all) (?:right|rights|title)\b|\bwork made for hire\b|\birrevocabl\w*\b',
        title="Broad Intellectual Property Transfer",
        description="All rights in work product are transferred or irrevocably licensed.",
        category="Intellectual Property",
        mitigation="Carve out pre-existing IP and retain a licence to reuse general know-how.",
        business_impact="Loss of rights in reusable assets.",
        confidence=0.75
    ),
    # Confidentiality
    RiskIndicator(
        theme="confidentiality", severity=RiskLevel.MEDIUM,
        pattern=r'\bperpetu\w*\b|\bindefinite\w*\b|\bin perpetuity\b',
        title="Perpetual Confidentiality Obligation",
        description="Confidentiality obligations never expire.",
        category="Information Security",
        mitigation="Limit the obligation to a fixed term, such as 3 to 5 years, except for trade secrets.",
        business_impact="Indefinite compliance burden.",
        categories=frozenset({ClauseCategory.CONFIDENTIALITY}), confidence=0.7
    ),
    # Restrictive covenants
    RiskIndicator(
        theme="non_compete", severity=RiskLevel.HIGH,
        pattern=r'\bnot (?:to )?compete\b|\bnon-?compet\w*\b',
        title="Restrictive Non-Compete",
        description="A party is barred from competing activities.",
        category="Compliance",
        mitigation="Narrow the duration, geography and scope of the restriction.",
        business_impact="Restricted future business opportunities.",
        confidence=0.8
    ),
    RiskIndicator(
        theme="non_compete", severity=RiskLevel.MEDIUM,
        pattern=r'\bnon-?solicit\w*\b|\bshall not solicit\b',
        title="Non-Solicitation Restriction",
        description="A party may not solicit the other's employees or customers.",
        category="Compliance",
        mitigation="Limit the restriction to 12 months and to direct solicitation.",
        business_impact="Constraints on hiring and sales.",
        confidence=0.7
    ),
    # Disputes
    RiskIndicator(
        theme="dispute_resolution", severity=RiskLevel.HIGH,
        pattern=r'\bwaive\w*\b.{0,40}\b(?:jury|class action)\b|\bclass action waiver\b',
        title="Waiver of Legal Remedies",
        description="Jury trial or class action rights are waived.",
        category="Legal",
        mitigation="Strike the waiver or make it mutual.",
        business_impact="Reduced leverage in disputes.",
        confidence=0.8
    ),
    RiskIndicator(
        theme="dispute_resolution", severity=RiskLevel.MEDIUM,
        pattern=r'\bbinding arbitration\b',
        title="Mandatory Arbitration",
        description="Disputes must go to binding arbitration.",
        category="Legal",
        mitigation="Confirm the seat, rules and cost allocation of the arbitration.",
        business_impact="Limited appeal rights and upfront arbitration costs.",
        confidence=0.7
    ),
    # Warranties
    RiskIndicator(
        theme="warranty", severity=RiskLevel.MEDIUM,
        pattern=r'\bas is\b|\bdisclaims? (?:all|any) (?:express or implied )?warrant\w*\b',
        title="Warranty Disclaimer",
        description="Warranties are disclaimed and deliverables are provided as is.",
        category="Legal",
        mitigation="Request a performance warranty for a defined period.",
        business_impact="No recourse for defective deliverables.",
        confidence=0.7
    ),
    # Assignment
    RiskIndicator(
        theme="assignment", severity=RiskLevel.LOW,
        pattern=r'\bassign\w*\b.{0,60}\bwithout (?:the )?(?:prior )?(?:written )?consent\b',
        title="Unilateral Assignment Rights",
        description="The contract may be assigned without consent.",
        category="Contract Management",
        mitigation="Require consent for assignment except to affiliates or successors.",
        business_impact="Counterparty may change without approval.",
        confidence=0.7
    ),
]


RECOMMENDATION_TEMPLATES: Dict[str, Tuple[str, str]] = {
    "payment_terms": ("Renegotiate payment terms", "Financial"),
    "penalties": ("Cap penalty provisions", "Financial"),
    "liability": ("Limit liability exposure", "Risk Management"),
    "termination": ("Strengthen termination protections", "Contract Management"),
    "renewal": ("Control automatic renewal", "Contract Management"),
    "indemnification": ("Narrow the indemnification scope", "Legal"),
    "intellectual_property": ("Protect intellectual property rights", "Intellectual Property"),
    "confidentiality": ("Time-limit confidentiality obligations", "Information Security"),
    "non_compete": ("Narrow restrictive covenants", "Compliance"),
    "dispute_resolution": ("Review dispute resolution terms", "Legal"),
    "warranty": ("Secure performance warranties", "Legal"),
    "assignment": ("Require consent for assignment", "Contract Management"),
}

PRIORITY_BY_SEVERITY = {
    RiskLevel.CRITICAL: Priority.HIGH,
    RiskLevel.HIGH: Priority.HIGH,
    RiskLevel.MEDIUM: Priority.MEDIUM,
    RiskLevel.LOW: Priority.LOW,
}

TIMELINE_BY_SEVERITY = {
    RiskLevel.CRITICAL: "Before signing",
    RiskLevel.HIGH: "Before signing",
    RiskLevel.MEDIUM: "Within 30 days",
    RiskLevel.LOW: "Next contract review",
}

EFFORT_BY_SEVERITY = {
    RiskLevel.CRITICAL: "High",
    RiskLevel.HIGH: "Medium",
    RiskLevel.MEDIUM: "Medium",
    RiskLevel.LOW: "Low",
}

RISK_REDUCTION_BY_SEVERITY = {
    RiskLevel.CRITICAL: 0.8,
    RiskLevel.HIGH: 0.7,
    RiskLevel.MEDIUM: 0.5,
    RiskLevel.LOW: 0.3,
}


class RiskAssessor:
    """Match risk indicators against clauses."""

    def __init__(self, indicators: Optional[List[RiskIndicator]] = None):
        self.indicators = indicators if indicators is not None else RISK_INDICATORS

    def assess(self, clauses: List[Clause]) -> List[Risk]:
        """
        Derive risks from clauses.

        Within a theme, the most severe matching indicator wins for a clause.
        Clauses hitting the same indicator share one risk entry.
        """
        affected: Dict[int, List[str]] = {}
        order: List[int] = []

        for clause in clauses:
            best_by_theme: Dict[str, Tuple[int, RiskIndicator]] = {}
            for index, indicator in enumerate(self.indicators):
                if not indicator.applies(clause):
                    continue
                current = best_by_theme.get(indicator.theme)
                if current is None or SEVERITY_RANK[indicator.severity] > SEVERITY_RANK[current[1].severity]:
                    best_by_theme[indicator.theme] = (index, indicator)

            for index, _ in best_by_theme.values():
                if index not in affected:
                    affected[index] = []
                    order.append(index)
                affected[index].append(clause.id)

        risks = []
        for index in order:
            indicator = self.indicators[index]
            risks.append(Risk(
                id=f"risk_{len(risks) + 1}",
                title=indicator.title,
                description=indicator.description,
                severity=indicator.severity,
                category=indicator.category,
                affected_clauses=affected[index],
                mitigation=indicator.mitigation,
                confidence=indicator.confidence,
                risk_score=SEVERITY_WEIGHTS[indicator.severity],
                business_impact=indicator.business_impact
            ))
        return risks

    def theme_of(self, risk: Risk) -> Optional[str]:
        for indicator in self.indicators:
            if indicator.title == risk.title:
                return indicator.theme
        return None


def build_recommendations(risks: List[Risk], assessor: Optional[RiskAssessor] = None) -> List[Recommendation]:
    """One prioritized action per risk; action is required for High and Critical risks."""
    assessor = assessor or RiskAssessor()
    recommendations = []
    for risk in risks:
        theme = assessor.theme_of(risk)
        title, category = RECOMMENDATION_TEMPLATES.get(theme, (f"Address: {risk.title}", risk.category))
        recommendations.append(Recommendation(
            id=f"rec_{len(recommendations) + 1}",
            title=title,
            description=risk.mitigation or f"Review and negotiate the terms behind '{risk.title}'.",
            priority=PRIORITY_BY_SEVERITY[risk.severity],
            category=category,
            action_required=risk.severity in (RiskLevel.HIGH, RiskLevel.CRITICAL),
            estimated_effort=EFFORT_BY_SEVERITY[risk.severity],
            timeline=TIMELINE_BY_SEVERITY[risk.severity],
            risk_reduction=RISK_REDUCTION_BY_SEVERITY[risk.severity],
            risk_id=risk.id
        ))
    return recommendations


def calculate_risk_score(risks: List[Risk]) -> float:
    """Mean severity weight, 0 when there are no risks."""
    if not risks:
        return 0.0
    total = sum(SEVERITY_WEIGHTS.get(risk.severity, 0.5) for risk in risks)
    return round(min(total / len(risks), 1.0), 4)


def summarize_risks(risks: List[Risk]) -> Dict[str, object]:
    """Counts per severity, distribution and the highest severity present."""
    counts = {level.value: 0 for level in RiskLevel}
    for risk in risks:
        counts[risk.severity.value] += 1
    total = len(risks)
    highest = max((risk.severity for risk in risks), key=lambda s: SEVERITY_RANK[s], default=None)
    return {
        "total": total,
        "counts": counts,
        "distribution": {level: (count / total if total else 0.0) for level, count in counts.items()},
        "highest_severity": highest.value if highest else None,
    }


def prioritize_risks(risks: List[Risk]) -> List[Risk]:
    """Order risks by severity, breadth, confidence and score."""
    def score(risk: Risk) -> float:
        breadth = min(len(risk.affected_clauses) / 3, 1.0)
        return (
            SEVERITY_RANK[risk.severity] / 4 * 0.4
            + breadth * 0.3
            + (risk.confidence if risk.confidence is not None else 0.5) * 0.2
            + (risk.risk_score if risk.risk_score is not None else 0.5) * 0.1
        )

    return sorted(risks, key=score, reverse=True)
