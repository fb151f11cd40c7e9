"""
Prompt templates for the local model and the Gemini fallback.
"""

import json
from typing import List

from ..models.schemas import Clause, ClauseCategory, Risk

CATEGORY_LIST = ", ".join(c.value for c in ClauseCategory)


class PromptTemplates:
    """Centralized prompt templates for analysis stages."""

    CLAUSE_EXTRACTION_PROMPT = """System: You are a legal contract analyst. Split the contract into its individual clauses and classify each one.

Important rules:
1. Output ONLY valid JSON - no other text
2. Copy clause text verbatim from the contract
3. startPosition and endPosition are character offsets into the contract
4. category must be one of: {categories}
5. confidence is a number between 0.0 and 1.0

JSON Schema:
{{
  "clauses": [
    {{
      "id": "clause_1",
      "text": "string",
      "type": "string",
      "category": "string",
      "confidence": float,
      "startPosition": int,
      "endPosition": int
    }}
  ]
}}

Contract:
\"\"\"
{text}
\"\"\"

JSON:"""

    RISK_ANALYSIS_PROMPT = """System: You are a legal risk analyst. Identify risks for the signing party in the clauses below.

Important rules:
1. Output ONLY valid JSON - no other text
2. severity must be one of: Low, Medium, High, Critical
3. affectedClauses may only contain ids from the clause list
4. confidence is a number between 0.0 and 1.0

JSON Schema:
{{
  "risks": [
    {{
      "id": "risk_1",
      "title": "string",
      "description": "string",
      "severity": "Low|Medium|High|Critical",
      "category": "string",
      "affectedClauses": ["clause_1"],
      "mitigation": "string",
      "confidence": float
    }}
  ]
}}

Clauses:
{clauses}

JSON:"""

    RECOMMENDATION_PROMPT = """System: You are a contract negotiation advisor. Suggest one concrete action for each risk below.

Important rules:
1. Output ONLY valid JSON - no other text
2. priority must be one of: Low, Medium, High
3. riskId must be an id from the risk list
4. actionRequired is true when the risk must be resolved before signing

JSON Schema:
{{
  "recommendations": [
    {{
      "id": "rec_1",
      "title": "string",
      "description": "string",
      "priority": "Low|Medium|High",
      "category": "string",
      "actionRequired": true,
      "estimatedEffort": "Low|Medium|High",
      "timeline": "string",
      "riskReduction": float,
      "riskId": "risk_1"
    }}
  ]
}}

Risks:
{risks}

JSON:"""

    FULL_ANALYSIS_PROMPT = """System: You are a legal contract analyst. Analyse the contract and return clauses, risks and recommendations.

Important rules:
1. Output ONLY valid JSON - no other text
2. Clause categories: {categories}
3. Risk severity: Low, Medium, High, Critical. Recommendation priority: Low, Medium, High
4. affectedClauses may only reference clause ids you produced
5. All confidence and score values are between 0.0 and 1.0

JSON Schema:
{{
  "summary": {{"title": "string", "documentType": "string", "riskScore": float, "confidence": float}},
  "clauses": [{{"id": "clause_1", "text": "string", "type": "string", "category": "string", "confidence": float, "startPosition": int, "endPosition": int}}],
  "risks": [{{"id": "risk_1", "title": "string", "description": "string", "severity": "string", "category": "string", "affectedClauses": ["clause_1"], "mitigation": "string", "confidence": float}}],
  "recommendations": [{{"id": "rec_1", "title": "string", "description": "string", "priority": "string", "category": "string", "actionRequired": true, "riskId": "risk_1"}}]
}}

Contract:
\"\"\"
{text}
\"\"\"

JSON:"""

    REPAIR_SUFFIX = """

Your previous answer could not be used ({error}). Respond again with ONLY the JSON object described above, with no commentary and no markdown."""


def clause_extraction_prompt(text: str) -> str:
    return PromptTemplates.CLAUSE_EXTRACTION_PROMPT.format(categories=CATEGORY_LIST, text=text)


def risk_analysis_prompt(clauses: List[Clause]) -> str:
    listing = json.dumps(
        [{"id": c.id, "category": c.category.value, "text": c.text} for c in clauses],
        indent=2
    )
    return PromptTemplates.RISK_ANALYSIS_PROMPT.format(clauses=listing)


def recommendation_prompt(risks: List[Risk]) -> str:
    listing = json.dumps(
        [{"id": r.id, "title": r.title, "severity": r.severity.value, "description": r.description}
         for r in risks],
        indent=2
    )
    return PromptTemplates.RECOMMENDATION_PROMPT.format(risks=listing)


def full_analysis_prompt(text: str) -> str:
    return PromptTemplates.FULL_ANALYSIS_PROMPT.format(categories=CATEGORY_LIST, text=text)


def with_repair_instruction(prompt: str, error: str) -> str:
    """Constrained re-prompt after unusable output."""
    return prompt + PromptTemplates.REPAIR_SUFFIX.format(error=error)
