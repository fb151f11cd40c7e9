"""Unit tests for heuristic clause extraction."""

import pytest

from clearclause.extractors.clause_extractor import (
    ClauseExtractor,
    clause_type_counts,
    get_clause_extractor,
    group_clauses_by_type,
)
from clearclause.models.schemas import ClauseCategory


@pytest.fixture(scope="module")
def extractor() -> ClauseExtractor:
    return get_clause_extractor()


SERVICES_AGREEMENT = """1. Payment. Client shall pay each invoice within 30 days of receipt.
2. Confidentiality. Each party shall keep the other party's confidential information secret.
3. Governing Law. This agreement is governed by the laws of the State of New York.
4. Termination. Either party may terminate this agreement upon 60 days written notice."""


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------


class TestCategorize:
    def test_payment(self, extractor):
        category, confidence = extractor.categorize("The fee is payable upon invoice.")
        assert category == ClauseCategory.PAYMENT
        assert 0.6 <= confidence <= 1.0

    def test_termination_wins_tie_with_notice(self, extractor):
        category, _ = extractor.categorize("Either party may terminate with 30 days notice.")
        assert category == ClauseCategory.TERMINATION

    def test_uncategorized_text(self, extractor):
        category, confidence = extractor.categorize("The sky is blue today.")
        assert category == ClauseCategory.OTHER
        assert confidence == 0.3

    def test_repeated_keywords_raise_confidence(self, extractor):
        _, single = extractor.categorize("Each party is liable.")
        _, repeated = extractor.categorize("Each party is liable, and liable again for its own acts.")
        assert repeated > single


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class TestExtract:
    def test_payment_and_termination_scenario(self, extractor):
        text = "Payment due 30 days. Either party may terminate with 30 days notice."
        report = extractor.extract(text)

        categories = [clause.category for clause in report.clauses]
        assert ClauseCategory.PAYMENT in categories
        assert ClauseCategory.TERMINATION in categories

    def test_positions_point_into_source(self, extractor):
        report = extractor.extract(SERVICES_AGREEMENT)
        assert report.clauses
        for clause in report.clauses:
            assert SERVICES_AGREEMENT[clause.start_position:clause.end_position] == clause.text
            assert 0 <= clause.start_position <= clause.end_position <= len(SERVICES_AGREEMENT)

    def test_numbered_sections_become_clauses(self, extractor):
        report = extractor.extract(SERVICES_AGREEMENT)
        categories = {clause.category for clause in report.clauses}
        assert {
            ClauseCategory.PAYMENT,
            ClauseCategory.CONFIDENTIALITY,
            ClauseCategory.GOVERNING_LAW,
            ClauseCategory.TERMINATION,
        } <= categories

    def test_ids_are_sequential(self, extractor):
        report = extractor.extract(SERVICES_AGREEMENT)
        assert [clause.id for clause in report.clauses] == [
            f"clause_{i}" for i in range(1, len(report.clauses) + 1)
        ]

    def test_threshold_drops_low_confidence(self, extractor):
        text = "The sky is blue and the grass is green. Client shall pay each invoice promptly."
        everything = extractor.extract(text, confidence_threshold=0.0)
        confident = extractor.extract(text, confidence_threshold=0.5)
        assert confident.retained <= everything.retained
        assert all(clause.confidence >= 0.5 for clause in confident.clauses)
        assert confident.detected == everything.detected

    def test_short_fragments_dropped(self, extractor):
        assert extractor.extract("Fees.").clauses == []

    def test_clause_type_matches_category(self, extractor):
        report = extractor.extract("Client shall pay each invoice within 30 days.")
        assert report.clauses[0].type == "payment_terms"


# ---------------------------------------------------------------------------
# Grouping helpers
# ---------------------------------------------------------------------------


class TestGrouping:
    def test_group_and_count(self, extractor):
        report = extractor.extract(SERVICES_AGREEMENT)
        grouped = group_clauses_by_type(report.clauses)
        counts = clause_type_counts(report.clauses)
        assert set(grouped) == set(counts)
        assert sum(counts.values()) == len(report.clauses)

    def test_shared_instance(self):
        assert get_clause_extractor() is get_clause_extractor()
