"""
Contract analysis pipeline: clause extraction, risk assessment, recommendations
and schema repair. Runs against the local model when one is attached, otherwise
on the pattern-based heuristics.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from ..core.metrics import MetricsCollector
from ..core.resource_manager import ResourceManager
from ..errors import (
    ClearClauseError, InferenceFailure, InvalidInput, ModelNotLoaded, ResourceExhausted
)
from ..extractors.clause_extractor import ClauseExtractor, get_clause_extractor
from ..extractors.risk_rules import RiskAssessor, build_recommendations, prioritize_risks, summarize_risks
from ..models.schemas import (
    AnalysisOptions, AnalysisResult, Clause, ProcessingMethod, Recommendation, Risk
)
from .payloads import classify_payload, payload_items
from .prompts import (
    clause_extraction_prompt, recommendation_prompt, risk_analysis_prompt, with_repair_instruction
)
from .schema_repair import SchemaRepairer

logger = logging.getLogger(__name__)

HEURISTIC_MODEL_NAME = "rule-based-extractor"


@dataclass
class _Run:
    """Per-analysis bookkeeping."""
    text: str
    options: AnalysisOptions
    output_chars: int = 0
    detected_clauses: int = 0


class ContractAnalyzer:
    """Turns contract text into a canonical AnalysisResult."""

    def __init__(
        self,
        resource_manager: Optional[ResourceManager] = None,
        max_attempts: int = 3,
        max_document_chars: int = 200000,
        metrics: Optional[MetricsCollector] = None,
        extractor: Optional[ClauseExtractor] = None,
        assessor: Optional[RiskAssessor] = None,
        repairer: Optional[SchemaRepairer] = None
    ):
        self.resource_manager = resource_manager
        self.max_attempts = max(1, max_attempts)
        self.max_document_chars = max_document_chars
        self.metrics = metrics or MetricsCollector()
        self._extractor = extractor
        self.assessor = assessor or RiskAssessor()
        self.repairer = repairer or SchemaRepairer()

    @property
    def uses_model(self) -> bool:
        return self.resource_manager is not None

    @property
    def extractor(self) -> ClauseExtractor:
        """Lazy load the heuristic extractor."""
        if self._extractor is None:
            self._extractor = get_clause_extractor()
        return self._extractor

    @property
    def model_name(self) -> str:
        if self.resource_manager is None:
            return HEURISTIC_MODEL_NAME
        return self.resource_manager.config.model_name

    def validate_input(self, text: Any) -> str:
        """Reject empty or oversized input before any inference."""
        if text is None or not isinstance(text, str) or not text.strip():
            raise InvalidInput("Contract text must be a non-empty string")
        if len(text) > self.max_document_chars:
            raise InvalidInput(
                f"Document too large: {len(text)} characters, maximum is {self.max_document_chars}"
            )
        return text

    async def analyze(self, text: str, options: Optional[AnalysisOptions] = None) -> AnalysisResult:
        """
        Run the enabled pipeline stages and return a repaired result.

        Args:
            text: Contract text
            options: Feature toggles and confidence threshold

        Returns:
            Canonical analysis result tagged as ai_model

        Raises:
            InvalidInput: Empty or oversized text
            InferenceFailure: Clause extraction could not produce usable output
            ModelNotLoaded, ResourceExhausted: The local model cannot serve the request
        """
        text = self.validate_input(text)
        run = _Run(text=text, options=options or AnalysisOptions())
        started = time.perf_counter()
        logger.info(
            f"Analysis started: chars={len(text)} mode={'model' if self.uses_model else 'heuristic'}"
        )

        try:
            clauses = await self._extract_clauses(run) if run.options.enable_clause_extraction else []
            risks = await self._assess_risks(run, clauses) if run.options.enable_risk_assessment else []
            recommendations = (
                await self._recommend(run, risks) if run.options.enable_recommendations else []
            )
        except ClearClauseError as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.metrics.record_analysis(False, elapsed_ms, error_kind=e.kind)
            logger.error(f"Analysis failed after {elapsed_ms:.0f}ms: {e.kind}: {e}")
            raise

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        result = self.repairer.repair(
            {
                "clauses": [clause.model_dump() for clause in clauses],
                "risks": [risk.model_dump() for risk in risks],
                "recommendations": [rec.model_dump() for rec in recommendations],
            },
            processing_method=ProcessingMethod.AI_MODEL,
            model_used=self.model_name,
            source_text=text,
            processing_time_ms=elapsed_ms,
            token_usage=math.ceil(len(text) / 4) + math.ceil(run.output_chars / 4),
            title=run.options.title,
            document_type=run.options.document_type
        )

        self.metrics.record_analysis(
            True, elapsed_ms, result.metadata.token_usage, result.metadata.confidence
        )
        self.metrics.record_risks(risk.severity.value for risk in result.risks)
        risk_summary = summarize_risks(result.risks)
        logger.info(
            f"Analysis complete: id={result.metadata.analysis_id} clauses={len(result.clauses)} "
            f"risks={risk_summary['total']} highest={risk_summary['highest_severity']} "
            f"recommendations={len(result.recommendations)} time={elapsed_ms}ms"
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _extract_clauses(self, run: _Run) -> List[Clause]:
        threshold = run.options.confidence_threshold

        if not self.uses_model:
            report = self.extractor.extract(run.text, threshold)
            clauses, detected = report.clauses, report.detected
        else:
            def require_clauses(items: List[Any]) -> None:
                if not self.repairer.repair_clauses(items, run.text)[0]:
                    raise ValueError("no usable clauses in output")

            items = await self._infer_items(
                run, "clause_extraction", clause_extraction_prompt(run.text), "clauses", require_clauses
            )
            candidates, _ = self.repairer.repair_clauses(items, run.text)
            clauses = [clause for clause in candidates if clause.confidence >= threshold]
            detected = len(candidates)

        run.detected_clauses = detected
        self.metrics.record_clause_extraction(
            detected, len(clauses), (clause.category.value for clause in clauses)
        )
        return clauses

    async def _assess_risks(self, run: _Run, clauses: List[Clause]) -> List[Risk]:
        if not clauses:
            return []
        try:
            risks = self.assessor.assess(clauses)
            if self.uses_model:
                try:
                    items = await self._infer_items(
                        run, "risk_assessment", risk_analysis_prompt(clauses), "risks"
                    )
                    risks = merge_risks(risks, self.repairer.repair_risks(items, clauses))
                except ClearClauseError as e:
                    self._stage_degraded(run, "risk_assessment_model", e)
            return prioritize_risks(risks)
        except Exception as e:
            self._stage_degraded(run, "risk_assessment", e)
            return []

    async def _recommend(self, run: _Run, risks: List[Risk]) -> List[Recommendation]:
        if not risks:
            return []
        try:
            recommendations = build_recommendations(risks, self.assessor)
            if self.uses_model:
                try:
                    items = await self._infer_items(
                        run, "recommendations", recommendation_prompt(risks), "recommendations"
                    )
                    recommendations = merge_recommendations(
                        recommendations, self.repairer.repair_recommendations(items, risks)
                    )
                except ClearClauseError as e:
                    self._stage_degraded(run, "recommendations_model", e)
            return recommendations
        except Exception as e:
            self._stage_degraded(run, "recommendations", e)
            return []

    async def _infer_items(
        self,
        run: _Run,
        stage: str,
        prompt: str,
        key: str,
        validate: Optional[Callable[[List[Any]], None]] = None
    ) -> List[Any]:
        """Run inference with bounded constrained re-prompts until the output parses."""
        current = prompt
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                output = await self.resource_manager.infer(current)
            except (ModelNotLoaded, ResourceExhausted):
                raise
            except ClearClauseError as e:
                last_error = e
                logger.warning(f"{stage} attempt {attempt}/{self.max_attempts} failed: {e.kind}: {e}")
                continue

            run.output_chars += len(output)
            try:
                items = payload_items(classify_payload(output), key)
                if validate is not None:
                    validate(items)
                return items
            except ValueError as e:
                last_error = e
                logger.warning(f"{stage} attempt {attempt}/{self.max_attempts} unusable: {e}")
                current = with_repair_instruction(prompt, str(e))

        raise InferenceFailure(
            f"{stage} produced no usable output after {self.max_attempts} attempts: {last_error}"
        )

    def _stage_degraded(self, run: _Run, stage: str, error: Exception) -> None:
        kind = type(error).__name__
        logger.warning(
            f"Stage degraded: stage={stage} input_chars={len(run.text)} error_kind={kind} error={error}"
        )
        self.metrics.record_stage_failure(stage, kind)


def merge_risks(primary: List[Risk], extra: List[Risk]) -> List[Risk]:
    """Append risks not already covered, renumbering the additions."""
    merged = list(primary)
    seen = {(risk.title.lower(), tuple(risk.affected_clauses)) for risk in primary}
    titles = {risk.title.lower() for risk in primary}
    for risk in extra:
        key = (risk.title.lower(), tuple(risk.affected_clauses))
        if key in seen or risk.title.lower() in titles:
            continue
        seen.add(key)
        titles.add(risk.title.lower())
        merged.append(risk.model_copy(update={"id": f"risk_{len(merged) + 1}"}))
    return merged


def merge_recommendations(primary: List[Recommendation], extra: List[Recommendation]) -> List[Recommendation]:
    """Model recommendations replace the template for the risk they address."""
    by_risk = {rec.risk_id: rec for rec in extra if rec.risk_id is not None}
    merged = [by_risk.pop(rec.risk_id, rec) if rec.risk_id else rec for rec in primary]
    merged.extend(rec for rec in extra if rec.risk_id is None or rec.risk_id in by_risk)
    return [rec.model_copy(update={"id": f"rec_{index}"}) for index, rec in enumerate(merged, start=1)]
