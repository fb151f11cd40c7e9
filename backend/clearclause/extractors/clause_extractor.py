"""
Pattern-based clause segmentation and categorization.
Deterministic offline path used when no local model is attached.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import spacy

from ..models.schemas import CLAUSE_TYPE_BY_CATEGORY, Clause, ClauseCategory

logger = logging.getLogger(__name__)

MIN_CLAUSE_CHARS = 15
OTHER_CONFIDENCE = 0.3


@dataclass
class ClauseSegment:
    """A categorized span of the source text."""
    text: str
    start: int
    end: int
    category: ClauseCategory
    confidence: float


@dataclass
class ExtractionReport:
    """Clauses kept after thresholding plus detection counts."""
    clauses: List[Clause]
    detected: int
    retained: int


class ClauseExtractor:
    """Segment contract text into clauses and tag them with a taxonomy category."""

    # Stems longer than five characters count double
    CATEGORY_KEYWORDS: Dict[ClauseCategory, List[str]] = {
        ClauseCategory.PAYMENT: [
            "payment", "pay", "invoice", "billing", "fee", "price", "compensation", "reimburse"
        ],
        ClauseCategory.LIABILITY: [
            "liability", "liable", "damages", "loss", "harm", "limitation"
        ],
        ClauseCategory.TERMINATION: [
            "terminat", "expir", "cancel", "cease", "end of term"
        ],
        ClauseCategory.INTELLECTUAL_PROPERTY: [
            "intellectual property", "copyright", "patent", "trademark", "licens", "proprietary",
            "work made for hire"
        ],
        ClauseCategory.CONFIDENTIALITY: [
            "confidential", "non-disclosure", "nondisclosure", "disclos", "trade secret"
        ],
        ClauseCategory.WARRANTY: [
            "warrant", "represent", "guarantee", "as is", "merchantab", "fitness for"
        ],
        ClauseCategory.INDEMNIFICATION: [
            "indemni", "hold harmless", "defend"
        ],
        ClauseCategory.GOVERNING_LAW: [
            "governing law", "governed by", "laws of", "jurisdiction"
        ],
        ClauseCategory.DISPUTE_RESOLUTION: [
            "dispute", "arbitrat", "mediat", "litigation", "court"
        ],
        ClauseCategory.FORCE_MAJEURE: [
            "force majeure", "act of god", "acts of god", "beyond its reasonable control",
            "natural disaster", "pandemic"
        ],
        ClauseCategory.ASSIGNMENT: [
            "assign", "transfer", "successor"
        ],
        ClauseCategory.NON_COMPETE: [
            "non-compet", "noncompet", "compete", "solicit"
        ],
        ClauseCategory.AMENDMENT: [
            "amend", "modif", "in writing signed"
        ],
        ClauseCategory.SEVERABILITY: [
            "severab", "invalid", "unenforceable"
        ],
        ClauseCategory.ENTIRE_AGREEMENT: [
            "entire agreement", "supersede", "whole agreement", "integration"
        ],
        ClauseCategory.NOTICE: [
            "notice", "notif"
        ],
    }

    # Section boundaries: "1.", "2.3", "A.", "(a)", "Section 4", "Article IV"
    SECTION_PATTERNS = [
        r'^\s*(?:section|article)\s+(?:\d+|[ivxlc]+)\b[.:]?',
        r'^\s*\d+(?:\.\d+)*[.)]\s',
        r'^\s*[A-Z][.)]\s',
        r'^\s*\([a-z0-9]+\)\s',
    ]

    def __init__(self, min_clause_chars: int = MIN_CLAUSE_CHARS):
        self.min_clause_chars = min_clause_chars
        self.section_pattern = re.compile(
            "|".join(f"(?:{p})" for p in self.SECTION_PATTERNS),
            re.IGNORECASE | re.MULTILINE
        )
        self.keyword_patterns: Dict[ClauseCategory, List[Tuple[re.Pattern, int]]] = {
            category: [
                (re.compile(r'\b' + re.escape(stem).replace(r'\ ', r'\s+'), re.IGNORECASE),
                 2 if len(stem) > 5 else 1)
                for stem in stems
            ]
            for category, stems in self.CATEGORY_KEYWORDS.items()
        }
        self.nlp = spacy.blank("en")
        self.nlp.add_pipe("sentencizer")

    def extract(self, text: str, confidence_threshold: float = 0.0) -> ExtractionReport:
        """
        Extract clauses from contract text.

        Args:
            text: Contract text
            confidence_threshold: Clauses below this confidence are dropped

        Returns:
            Retained clauses with detection counts
        """
        segments = self.segment(text)
        clauses = []
        for segment in segments:
            if segment.confidence < confidence_threshold:
                continue
            clauses.append(Clause(
                id=f"clause_{len(clauses) + 1}",
                text=segment.text,
                type=CLAUSE_TYPE_BY_CATEGORY[segment.category],
                category=segment.category,
                confidence=segment.confidence,
                start_position=segment.start,
                end_position=segment.end
            ))

        logger.debug(f"Heuristic extraction kept {len(clauses)}/{len(segments)} clauses")
        return ExtractionReport(clauses=clauses, detected=len(segments), retained=len(clauses))

    def segment(self, text: str) -> List[ClauseSegment]:
        """Split text into categorized clause segments with source offsets."""
        segments: List[ClauseSegment] = []
        for section_start, section_end in self._section_bounds(text):
            merged: List[ClauseSegment] = []
            for start, end in self._sentence_bounds(text, section_start, section_end):
                sentence = text[start:end]
                category, confidence = self.categorize(sentence)
                previous = merged[-1] if merged else None

                # Uncategorized sentences continue the clause before them
                if previous and (previous.category == category or category == ClauseCategory.OTHER):
                    previous.end = end
                    previous.text = text[previous.start:end]
                    previous.category, previous.confidence = self.categorize(previous.text)
                    if previous.category == ClauseCategory.OTHER and category != ClauseCategory.OTHER:
                        previous.category, previous.confidence = category, confidence
                    continue

                merged.append(ClauseSegment(
                    text=sentence, start=start, end=end, category=category, confidence=confidence
                ))
            segments.extend(s for s in merged if len(s.text.strip()) >= self.min_clause_chars)
        return segments

    def categorize(self, text: str) -> Tuple[ClauseCategory, float]:
        """Pick the best-scoring category; ties go to taxonomy order."""
        best_category = ClauseCategory.OTHER
        best_score = 0
        best_matches: List[int] = []

        for category, patterns in self.keyword_patterns.items():
            counts = [len(pattern.findall(text)) for pattern, _ in patterns]
            score = sum(count * weight for count, (_, weight) in zip(counts, patterns))
            if score > best_score:
                best_category, best_score, best_matches = category, score, counts

        if best_category == ClauseCategory.OTHER:
            return best_category, OTHER_CONFIDENCE

        matched = sum(1 for count in best_matches if count)
        confidence = 0.6 + (matched / len(best_matches)) * 0.3
        if any(count > 1 for count in best_matches):
            confidence += 0.1
        return best_category, round(min(confidence, 1.0), 2)

    def _section_bounds(self, text: str) -> List[Tuple[int, int]]:
        starts = [match.start() for match in self.section_pattern.finditer(text)]
        if not starts or starts[0] != 0:
            starts.insert(0, 0)
        bounds = list(zip(starts, starts[1:] + [len(text)]))
        return [(start, end) for start, end in bounds if text[start:end].strip()]

    def _sentence_bounds(self, text: str, start: int, end: int) -> List[Tuple[int, int]]:
        section = text[start:end]
        bounds = []
        for sentence in self.nlp(section).sents:
            raw = sentence.text
            stripped = raw.strip()
            if not stripped:
                continue
            offset = start + sentence.start_char + (len(raw) - len(raw.lstrip()))
            bounds.append((offset, offset + len(stripped)))
        return bounds


def group_clauses_by_type(clauses: List[Clause]) -> Dict[str, List[Clause]]:
    """Group clauses by their category value."""
    grouped: Dict[str, List[Clause]] = defaultdict(list)
    for clause in clauses:
        grouped[clause.category.value].append(clause)
    return dict(grouped)


def clause_type_counts(clauses: List[Clause]) -> Dict[str, int]:
    return {category: len(items) for category, items in group_clauses_by_type(clauses).items()}


_extractor: Optional[ClauseExtractor] = None


def get_clause_extractor() -> ClauseExtractor:
    """Shared extractor instance; building the spaCy pipeline is not free."""
    global _extractor
    if _extractor is None:
        _extractor = ClauseExtractor()
    return _extractor
