"""
Per-request routing between the local model and the remote fallback.
"""

import logging
import time
import uuid
from collections import deque
from typing import Deque, List, Optional

from ..analysis.analyzer import ContractAnalyzer
from ..collaborators import DocumentSource, DocumentSourceResolver
from ..core.admission import AdmissionQueue
from ..core.metrics import MetricsCollector
from ..core.resource_manager import ResourceManager, create_resource_manager
from ..errors import ClearClauseError, FallbackFailure, describe_error
from ..fallback.clients import FallbackClient, create_fallback_client
from ..fallback.normalizer import ResponseNormalizer
from ..models.runtime import RouterStats, RoutingDecision, RoutingOutcome, StateSnapshot
from ..models.schemas import AnalysisOptions, AnalysisResult

logger = logging.getLogger(__name__)

MODEL_UNAVAILABLE = "model_unavailable"


class ContractAnalysisRouter:
    """Single entry point: local model first, remote fallback on failure or unavailability."""

    def __init__(
        self,
        resource_manager: ResourceManager,
        analyzer: ContractAnalyzer,
        fallback_client: FallbackClient,
        normalizer: Optional[ResponseNormalizer] = None,
        admission_queue: Optional[AdmissionQueue] = None,
        metrics: Optional[MetricsCollector] = None,
        auto_load: bool = False,
        history_size: int = 100,
        resolver: Optional[DocumentSourceResolver] = None,
        default_options: Optional[AnalysisOptions] = None
    ):
        self.resource_manager = resource_manager
        self.analyzer = analyzer
        self.fallback_client = fallback_client
        self.normalizer = normalizer or ResponseNormalizer()
        self.queue = admission_queue or AdmissionQueue()
        self.metrics = metrics or analyzer.metrics
        self.auto_load = auto_load
        self.resolver = resolver or DocumentSourceResolver()
        self.default_options = default_options or AnalysisOptions()

        self._stats = RouterStats()
        self._decisions: Deque[RoutingDecision] = deque(maxlen=history_size)

    async def analyze(self, text: str, options: Optional[AnalysisOptions] = None) -> AnalysisResult:
        """
        Analyze a contract on the best available path.

        Args:
            text: Contract text
            options: Analysis options; defaults to the configured ones

        Returns:
            Canonical result from the local model or the fallback

        Raises:
            InvalidInput: Empty or oversized text (never sent to the fallback)
            FallbackFailure: The fallback failed, after the primary failed or was unavailable
        """
        text = self.analyzer.validate_input(text)
        options = options or self.default_options

        started = time.perf_counter()
        decision = RoutingDecision(request_id=str(uuid.uuid4()), outcome=RoutingOutcome.FAILED)
        primary_error: Optional[Exception] = None

        try:
            if await self._primary_available():
                decision.primary_attempted = True
                try:
                    result = await self.queue.enqueue(
                        lambda: self.analyzer.analyze(text, options),
                        label=f"analysis {decision.request_id[:8]}"
                    )
                    decision.outcome = RoutingOutcome.PRIMARY_SUCCESS
                    return result
                except Exception as e:
                    primary_error = e
                    decision.primary_error = describe_error(e)

            reason = decision.primary_error
            decision.snapshot = self._snapshot()
            decision.fallback_attempted = True
            logger.warning(
                f"Falling back to {self.fallback_client.name}: "
                f"reason={reason or MODEL_UNAVAILABLE} state={decision.snapshot.model_dump(mode='json')}"
            )
            self.metrics.record_fallback(
                type(primary_error).__name__ if primary_error is not None else MODEL_UNAVAILABLE
            )

            try:
                result = await self._run_fallback(text, options, reason, started)
            except Exception as e:
                decision.fallback_error = describe_error(e)
                raise self._total_failure(decision, primary_error, e) from e

            decision.outcome = (
                RoutingOutcome.FALLBACK_AFTER_FAILURE if primary_error is not None
                else RoutingOutcome.FALLBACK_UNAVAILABLE
            )
            return result
        finally:
            self._finish(decision, started)

    async def analyze_source(
        self,
        source: DocumentSource,
        options: Optional[AnalysisOptions] = None
    ) -> AnalysisResult:
        """Resolve a text, URL or stored document and analyze it."""
        text = await self.resolver.resolve(source)
        return await self.analyze(text, options)

    def stats(self) -> RouterStats:
        return self._stats.model_copy()

    def reset_stats(self) -> None:
        self._stats = RouterStats()
        logger.info("Router statistics reset")

    def recent_decisions(self, limit: Optional[int] = None) -> List[RoutingDecision]:
        """Most recent routing decisions, oldest first."""
        decisions = [decision.model_copy() for decision in self._decisions]
        return decisions[-limit:] if limit else decisions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _primary_available(self) -> bool:
        manager = self.resource_manager
        if manager.is_loaded:
            return True
        if not self.auto_load:
            return False
        if not manager.can_load():
            logger.info(f"Model {manager.config.model_name} does not fit under the memory limit, skipping load")
            return False
        try:
            await manager.load()
        except ClearClauseError as e:
            logger.warning(f"Automatic model load failed: {describe_error(e)}")
            return False
        return manager.is_loaded

    async def _run_fallback(
        self,
        text: str,
        options: AnalysisOptions,
        reason: Optional[str],
        started: float
    ) -> AnalysisResult:
        payload = await self.fallback_client.analyze(text, options)
        result = self.normalizer.normalize(
            payload,
            model_used=self.fallback_client.name,
            source_text=text,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            fallback_reason=reason,
            title=options.title,
            document_type=options.document_type
        )
        logger.info(
            f"Fallback analysis complete: id={result.metadata.analysis_id} "
            f"clauses={len(result.clauses)} risks={len(result.risks)}"
        )
        return result

    def _total_failure(
        self,
        decision: RoutingDecision,
        primary_error: Optional[Exception],
        fallback_error: Exception
    ) -> FallbackFailure:
        code = getattr(fallback_error, "code", "FALLBACK_FAILED")
        status_code = getattr(fallback_error, "status_code", None)
        if primary_error is not None:
            message = (
                f"both AI model and API fallback failed: primary: {decision.primary_error}; "
                f"fallback: {decision.fallback_error}"
            )
        else:
            message = f"API fallback failed: {decision.fallback_error}"
        logger.error(message)
        return FallbackFailure(
            message,
            code=code,
            status_code=status_code,
            primary_error=primary_error,
            fallback_error=fallback_error
        )

    def _snapshot(self) -> StateSnapshot:
        state = self.resource_manager.get_status()
        return StateSnapshot(
            loaded=state.loaded,
            health_status=state.health_status,
            memory_usage_mb=state.memory_usage_mb,
            memory_utilization=round(self.resource_manager.memory_utilization, 4)
        )

    def _finish(self, decision: RoutingDecision, started: float) -> None:
        stats = self._stats
        stats.total_requests += 1
        if decision.outcome == RoutingOutcome.PRIMARY_SUCCESS:
            stats.ai_model_requests += 1
        if decision.fallback_attempted:
            stats.api_requests += 1
        if decision.primary_error is not None:
            stats.fallbacks += 1
        if decision.outcome == RoutingOutcome.FAILED:
            stats.failures += 1

        decision.duration_ms = int((time.perf_counter() - started) * 1000)
        if decision.snapshot is None:
            decision.snapshot = self._snapshot()
        self._decisions.append(decision)
        logger.info(
            f"Routing decision {decision.request_id}: outcome={decision.outcome.value} "
            f"duration={decision.duration_ms}ms"
        )


def create_analysis_router(
    settings,
    backend=None,
    fallback_client: Optional[FallbackClient] = None,
    resolver: Optional[DocumentSourceResolver] = None
) -> ContractAnalysisRouter:
    """Wire the full pipeline from application settings."""
    metrics = MetricsCollector()
    manager = create_resource_manager(settings, backend)
    analyzer = ContractAnalyzer(
        resource_manager=manager,
        max_attempts=settings.ANALYZER_MAX_ATTEMPTS,
        max_document_chars=settings.MAX_DOCUMENT_CHARS,
        metrics=metrics
    )
    return ContractAnalysisRouter(
        resource_manager=manager,
        analyzer=analyzer,
        fallback_client=fallback_client or create_fallback_client(settings),
        admission_queue=AdmissionQueue(settings.MAX_CONCURRENT_ANALYSES),
        metrics=metrics,
        auto_load=settings.AUTO_LOAD_MODEL,
        resolver=resolver,
        default_options=settings.default_analysis_options
    )
