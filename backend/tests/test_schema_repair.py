"""Unit tests for schema repair of loosely shaped analysis output."""

import re

import pytest

from clearclause.analysis.schema_repair import (
    SchemaRepairer,
    clamp_confidence,
    clamp_score,
    coerce_bool,
    coerce_category,
    coerce_priority,
    coerce_severity,
    generate_analysis_id,
)
from clearclause.models.schemas import ClauseCategory, Priority, ProcessingMethod, RiskLevel

from conftest import CONTRACT, FALLBACK_PAYLOAD


@pytest.fixture
def repairer() -> SchemaRepairer:
    return SchemaRepairer()


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


class TestCoercion:
    @pytest.mark.parametrize("value,expected", [
        (1.7, 1.0),
        (-0.2, 0.0),
        ("0.8", 0.8),
        ("high", 0.5),
        (None, 0.5),
    ])
    def test_clamp_confidence(self, value, expected):
        assert clamp_confidence(value) == pytest.approx(expected)

    def test_clamp_score_reads_percentages(self):
        assert clamp_score(85) == pytest.approx(0.85)
        assert clamp_score("40%") == pytest.approx(0.4)
        assert clamp_score(None) is None

    def test_clamp_score_small_integers_are_percentages(self):
        assert clamp_score(5) == pytest.approx(0.05)
        assert clamp_score(1) == pytest.approx(1.0)
        assert clamp_score(150) == 1.0
        assert clamp_score(-3) == 0.0

    @pytest.mark.parametrize("value,expected", [
        ("severe", RiskLevel.CRITICAL),
        ("moderate", RiskLevel.MEDIUM),
        ("MAJOR", RiskLevel.HIGH),
        (0.9, RiskLevel.CRITICAL),
        (3, RiskLevel.HIGH),
        ("nonsense", RiskLevel.MEDIUM),
    ])
    def test_coerce_severity(self, value, expected):
        assert coerce_severity(value) == expected

    def test_coerce_priority_from_severity(self):
        assert coerce_priority(RiskLevel.CRITICAL) == Priority.HIGH
        assert coerce_priority("urgent") == Priority.HIGH
        assert coerce_priority(None) == Priority.MEDIUM

    @pytest.mark.parametrize("value,expected", [
        ("payment", ClauseCategory.PAYMENT),
        ("Payment Terms", ClauseCategory.PAYMENT),
        ("limitation_of_liability", ClauseCategory.LIABILITY),
        ("Intellectual-Property", ClauseCategory.INTELLECTUAL_PROPERTY),
        ("miscellaneous", ClauseCategory.OTHER),
        (None, ClauseCategory.OTHER),
    ])
    def test_coerce_category(self, value, expected):
        assert coerce_category(value) == expected

    def test_coerce_bool(self):
        assert coerce_bool("yes") is True
        assert coerce_bool("no") is False
        assert coerce_bool("maybe") is None

    def test_analysis_id_format(self):
        assert re.match(r"^analysis_\d+_[0-9a-f]{9}$", generate_analysis_id())


# ---------------------------------------------------------------------------
# Clauses
# ---------------------------------------------------------------------------


class TestRepairClauses:
    def test_aliases_and_located_positions(self, repairer):
        clauses, id_map = repairer.repair_clauses(
            [{"clause_id": "A", "content": "Payment is due within 30 days of invoice.", "type": "payment"}],
            CONTRACT,
        )
        clause = clauses[0]
        assert clause.id == "A"
        assert clause.category == ClauseCategory.PAYMENT
        assert clause.start_position == 0
        assert CONTRACT[clause.start_position:clause.end_position] == clause.text
        assert id_map == {"A": "A"}

    def test_positions_clipped_and_ordered(self, repairer):
        clauses, _ = repairer.repair_clauses(
            [{"text": "not in source", "start": 500, "end": 10}], "short text"
        )
        clause = clauses[0]
        assert 0 <= clause.start_position <= clause.end_position <= len("short text")

    def test_duplicate_ids_made_unique(self, repairer):
        clauses, id_map = repairer.repair_clauses([
            {"id": "x", "text": "First clause text here."},
            {"id": "x", "text": "Second clause text here."},
        ])
        assert [clause.id for clause in clauses] == ["x", "x_2"]
        assert id_map["x"] == "x"

    def test_garbage_entries_dropped(self, repairer):
        clauses, _ = repairer.repair_clauses([None, 42, {"text": ""}, "A bare string clause."])
        assert len(clauses) == 1
        assert clauses[0].text == "A bare string clause."
        assert clauses[0].id == "clause_4"


# ---------------------------------------------------------------------------
# Risks and recommendations
# ---------------------------------------------------------------------------


class TestRepairRisks:
    def test_unknown_references_dropped(self, repairer):
        clauses, id_map = repairer.repair_clauses([{"id": "c1", "text": "Clause one text."}])
        risks = repairer.repair_risks(
            [{"title": "Risk", "severity": "high", "affectedClauses": ["c1", "ghost"]}], clauses, id_map
        )
        assert risks[0].affected_clauses == ["c1"]
        assert risks[0].severity == RiskLevel.HIGH

    def test_index_references_resolved(self, repairer):
        clauses, id_map = repairer.repair_clauses([
            {"id": "c1", "text": "Clause one text."},
            {"id": "c2", "text": "Clause two text."},
        ])
        risks = repairer.repair_risks([{"name": "Risk", "clause_ids": [2]}], clauses, id_map)
        assert risks[0].affected_clauses == ["c2"]

    def test_untitled_risk_uses_description(self, repairer):
        risks = repairer.repair_risks([{"description": "Something worrying"}], [])
        assert risks[0].title == "Something worrying"
        assert risks[0].category == "General"


class TestRepairRecommendations:
    def test_explicit_action_required_kept(self, repairer):
        risks = repairer.repair_risks([{"id": "r1", "title": "Risk", "severity": "Critical"}], [])
        recommendations = repairer.repair_recommendations(
            [{"title": "Do it", "riskId": "r1", "action_required": False}], risks
        )
        assert recommendations[0].action_required is False
        assert recommendations[0].priority == Priority.HIGH

    def test_action_required_derived_from_risk(self, repairer):
        risks = repairer.repair_risks([{"id": "r1", "title": "Risk", "severity": "High"}], [])
        recommendations = repairer.repair_recommendations([{"title": "Do it", "riskId": "r1"}], risks)
        assert recommendations[0].action_required is True
        assert recommendations[0].risk_id == "r1"

    def test_unknown_risk_reference_cleared(self, repairer):
        recommendations = repairer.repair_recommendations(
            [{"title": "Do it", "riskId": "nope", "priority": "low"}], []
        )
        assert recommendations[0].risk_id is None
        assert recommendations[0].action_required is False


# ---------------------------------------------------------------------------
# Full repair
# ---------------------------------------------------------------------------


class TestRepair:
    def test_fallback_payload_repaired(self, repairer):
        result = repairer.repair(
            FALLBACK_PAYLOAD,
            processing_method=ProcessingMethod.API_FALLBACK,
            model_used="api_service",
            source_text=CONTRACT,
            fallback_reason="InferenceFailure: bad output",
        )
        assert result.summary.title == "Services Agreement"
        assert result.summary.total_clauses == 1
        assert result.summary.risk_score == pytest.approx(0.4)
        assert result.risks[0].affected_clauses == ["A"]
        assert result.risks[0].severity == RiskLevel.MEDIUM
        assert result.recommendations[0].priority == Priority.HIGH
        assert result.metadata.fallback_reason == "InferenceFailure: bad output"
        assert result.metadata.version == "1.0.0"

    def test_fallback_reason_dropped_for_ai_model(self, repairer):
        result = repairer.repair(
            {}, processing_method=ProcessingMethod.AI_MODEL, model_used="m", fallback_reason="ignored"
        )
        assert result.metadata.fallback_reason is None

    def test_integer_risk_score_read_as_percentage(self, repairer):
        result = repairer.repair(
            {"summary": {"riskScore": 5}}, processing_method=ProcessingMethod.API_FALLBACK, model_used="api_service"
        )
        assert result.summary.risk_score == pytest.approx(0.05)

    def test_empty_payload_is_well_formed(self, repairer):
        result = repairer.repair("not a dict", processing_method=ProcessingMethod.AI_MODEL, model_used="m")
        assert result.clauses == []
        assert result.summary.total_clauses == 0
        assert result.summary.risk_score == 0.0
        assert result.summary.confidence == 0.5

    def test_response_is_camel_case(self, repairer):
        response = repairer.repair(
            FALLBACK_PAYLOAD, processing_method=ProcessingMethod.API_FALLBACK, model_used="api_service"
        ).to_response()
        assert set(response) == {"summary", "clauses", "risks", "recommendations", "metadata"}
        assert "totalClauses" in response["summary"]
        assert "startPosition" in response["clauses"][0]
        assert response["metadata"]["processingMethod"] == "api_fallback"
