"""
Lifecycle and memory accounting for the locally resident model.
All ModelState mutation happens inside ResourceManager methods.
"""

import asyncio
import logging
import math
import re
import time
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..errors import (
    ClearClauseError, ConfigurationError, InferenceFailure, ModelNotLoaded,
    OperationTimeoutError, ResourceExhausted
)
from ..models.runtime import (
    RELOAD_FIELDS, HealthStatus, LocalModelConfig, ModelState, OperationTimeouts,
    PerformanceMetrics, ResourceLimits
)
from .backends import HuggingFaceModelBackend, ModelBackend

logger = logging.getLogger(__name__)

MB = 1024 * 1024

# Accounting constants
CONTEXT_MB_PER_1K_TOKENS = 8.0
REQUEST_MB_PER_1K_TOKENS = 8.0
OPTIMIZED_CONTEXT_FACTOR = 0.5
CACHE_RETENTION_RATIO = 0.1
DEFAULT_PARAMETER_COUNT = 7_000_000_000

HEALTH_CHECK_PROMPT = "Respond with 'OK' if you are working correctly."
SLOW_HEALTH_CHECK_SECONDS = 5.0

_PARAMS_PATTERN = re.compile(r'(\d+(?:\.\d+)?)\s*([bm])(?![a-z])', re.IGNORECASE)


def parse_parameter_count(model_name: str) -> Optional[int]:
    """Infer parameter count from names like 'Llama-3.1-8B-Instruct' or 'phi-350m'."""
    match = _PARAMS_PATTERN.search(model_name or "")
    if not match:
        return None
    value = float(match.group(1))
    scale = 1_000_000_000 if match.group(2).lower() == "b" else 1_000_000
    return int(value * scale)


def estimate_weights_mb(parameter_count: int, memory_optimization: bool) -> float:
    bytes_per_parameter = 2 if memory_optimization else 4
    return parameter_count * bytes_per_parameter / MB


def estimate_context_overhead_mb(context_window: int, optimized: bool) -> float:
    overhead = context_window / 1024 * CONTEXT_MB_PER_1K_TOKENS
    return overhead * OPTIMIZED_CONTEXT_FACTOR if optimized else overhead


def estimate_model_memory_mb(config: LocalModelConfig, parameter_count: Optional[int] = None) -> float:
    """
    Estimate the footprint of a model before loading it.

    Larger context windows and unoptimized mode increase the estimate.
    """
    parameters = parameter_count or parse_parameter_count(config.model_name) or DEFAULT_PARAMETER_COUNT
    return (
        estimate_weights_mb(parameters, config.memory_optimization)
        + estimate_context_overhead_mb(config.context_window, config.memory_optimization)
    )


def estimate_request_memory_mb(prompt: str, max_tokens: int) -> float:
    """Working memory held for the duration of one inference."""
    tokens = math.ceil(len(prompt) / 4) + max_tokens
    return tokens / 1024 * REQUEST_MB_PER_1K_TOKENS


class ResourceManager:
    """Owns the local model: load, inference, optimization, unload and status."""

    def __init__(
        self,
        config: LocalModelConfig,
        limits: Optional[ResourceLimits] = None,
        timeouts: Optional[OperationTimeouts] = None,
        backend: Optional[ModelBackend] = None
    ):
        self._config = config
        self.limits = limits or ResourceLimits()
        self.timeouts = timeouts or OperationTimeouts()
        self.backend = backend or HuggingFaceModelBackend()

        self._state = ModelState()
        self._lock = asyncio.Lock()
        self._optimize_task: Optional[asyncio.Future] = None
        self._load_cleanup: Optional[asyncio.Task] = None
        self._generation = 0
        self._loaded_at = 0.0
        self._optimized = False

        # Memory components; memory_usage_mb is always their sum
        self._weights_mb = 0.0
        self._context_mb = 0.0
        self._cache_mb = 0.0
        self._reserved_mb = 0.0

    @property
    def config(self) -> LocalModelConfig:
        return self._config

    @property
    def is_loaded(self) -> bool:
        return self._state.loaded

    @property
    def memory_utilization(self) -> float:
        return self._total_memory() / self.limits.max_memory_usage_mb

    def get_status(self) -> ModelState:
        """Return a snapshot of the current model state."""
        return self._state.model_copy(deep=True)

    def can_load(self, config: Optional[LocalModelConfig] = None) -> bool:
        """Whether the model fits under the memory ceiling."""
        config = config or self._config
        if self._state.loaded and config == self._config:
            return True
        return estimate_model_memory_mb(config) <= self.limits.max_memory_usage_mb

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self, config: Optional[LocalModelConfig] = None) -> ModelState:
        """
        Load the model with the given configuration.

        Args:
            config: Configuration to load; defaults to the current one

        Returns:
            Model state after loading
        """
        async with self._lock:
            await self._load_locked(config or self._config)
        return self.get_status()

    async def unload(self) -> ModelState:
        """Release the model. Safe to call repeatedly."""
        async with self._lock:
            await self._unload_locked()
        return self.get_status()

    async def optimize_memory(self) -> float:
        """
        Reduce memory usage without unloading.

        Concurrent callers share a single in-flight optimization. The
        optimization budget also covers waiting for a running load, unload
        or reconfiguration to release the manager.

        Returns:
            Megabytes freed (never negative)
        """
        if self._optimize_task is None or self._optimize_task.done():
            self._optimize_task = asyncio.ensure_future(self._optimize_serialized())
        return await asyncio.shield(self._optimize_task)

    async def reconfigure(self, **changes: Any) -> LocalModelConfig:
        """Apply configuration changes, reloading when a critical field changed."""
        unknown = set(changes) - set(LocalModelConfig.model_fields)
        if unknown:
            raise ConfigurationError(f"Unknown model configuration keys: {sorted(unknown)}")

        previous = self._config
        try:
            updated = LocalModelConfig(**{**previous.model_dump(), **changes})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid model configuration: {e}") from e

        async with self._lock:
            needs_reload = self._state.loaded and any(
                getattr(previous, field) != getattr(updated, field) for field in RELOAD_FIELDS
            )
            self._config = updated
            if not needs_reload:
                return updated

            logger.info(f"Critical configuration changed, reloading {updated.model_name}")
            try:
                await self._unload_locked()
                await self._load_locked(updated)
            except ClearClauseError as e:
                logger.error(f"Reconfiguration failed, restoring previous configuration: {e}")
                self._config = previous
                await self._unload_locked()
                await self._load_locked(previous)
                raise

        return updated

    async def _load_locked(self, config: LocalModelConfig) -> None:
        if self._load_cleanup is not None and not self._load_cleanup.done():
            logger.info("Waiting for an abandoned model load to be released")
            await self._load_cleanup

        if self._state.loaded:
            if config == self._config:
                return
            await self._unload_locked()

        limit = self.limits.max_memory_usage_mb
        estimate = estimate_model_memory_mb(config)
        if self._total_memory() + estimate > limit:
            await self._optimize_locked()
            if self._total_memory() + estimate > limit:
                raise ResourceExhausted(
                    f"Model {config.model_name} needs ~{estimate:.0f} MB, limit is {limit:.0f} MB",
                    required_mb=estimate,
                    limit_mb=limit
                )

        logger.info(f"Loading model {config.model_name} (estimated {estimate:.0f} MB)")
        started = time.perf_counter()
        pending = self._submit_blocking(self.backend.load, config)
        try:
            await asyncio.wait_for(asyncio.shield(pending), timeout=self.timeouts.load_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Model load timed out after {self.timeouts.load_seconds}s")
            # The worker thread keeps loading; unload once it finishes
            self._load_cleanup = asyncio.ensure_future(self._release_abandoned_load(pending))
            self._reset_state()
            raise OperationTimeoutError("model load", self.timeouts.load_seconds) from None
        except Exception as e:
            logger.error(f"Model load failed: {str(e)}")
            await self._discard_partial_load()
            raise ModelNotLoaded(f"Failed to load model {config.model_name}: {e}") from e

        measured = self.backend.memory_footprint_mb()
        if measured is None:
            measured = estimate_weights_mb(
                self.backend.parameter_count()
                or parse_parameter_count(config.model_name)
                or DEFAULT_PARAMETER_COUNT,
                config.memory_optimization
            )
        context_mb = estimate_context_overhead_mb(config.context_window, config.memory_optimization)
        if measured + context_mb > limit:
            await self._discard_partial_load()
            raise ResourceExhausted(
                f"Loaded model uses {measured + context_mb:.0f} MB, limit is {limit:.0f} MB",
                required_mb=measured + context_mb,
                limit_mb=limit
            )

        self._generation += 1
        self._config = config
        self._optimized = config.memory_optimization
        self._weights_mb = measured
        self._context_mb = context_mb
        self._cache_mb = 0.0
        self._reserved_mb = 0.0
        self._loaded_at = time.monotonic()
        self._state = ModelState(
            loaded=True,
            model_name=config.model_name,
            load_timestamp=datetime.utcnow(),
            health_status=HealthStatus.HEALTHY
        )
        self._sync_memory()

        load_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Model {config.model_name} loaded in {load_ms:.0f}ms, "
            f"memory={self._state.memory_usage_mb:.0f}MB"
        )

    async def _unload_locked(self) -> None:
        if self._state.loaded:
            logger.info(f"Unloading model {self._state.model_name}")
            try:
                await asyncio.wait_for(
                    self._run_blocking(self.backend.unload),
                    timeout=self.timeouts.load_seconds
                )
            except Exception as e:
                logger.error(f"Backend unload raised, resetting state anyway: {e!r}")
        self._reset_state()

    async def _discard_partial_load(self) -> None:
        try:
            await self._run_blocking(self.backend.unload)
        except Exception as e:
            logger.warning(f"Cleanup after failed load raised: {e!r}")
        self._reset_state()

    async def _release_abandoned_load(self, pending: asyncio.Future) -> None:
        try:
            await pending
        except Exception as e:
            logger.warning(f"Abandoned model load failed late: {e!r}")
        try:
            await self._run_blocking(self.backend.unload)
        except Exception as e:
            logger.warning(f"Cleanup after abandoned load raised: {e!r}")
            return
        logger.info("Released weights from abandoned model load")

    def _reset_state(self) -> None:
        self._generation += 1
        self._state = ModelState()
        self._weights_mb = 0.0
        self._context_mb = 0.0
        self._cache_mb = 0.0
        self._reserved_mb = 0.0
        self._loaded_at = 0.0
        self._optimized = False

    async def _optimize_serialized(self) -> float:
        budget = self.timeouts.optimize_seconds
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=budget)
        except asyncio.TimeoutError:
            logger.error(f"Memory optimization could not start within {budget}s, manager busy")
            raise OperationTimeoutError("memory optimization", budget) from None
        try:
            return await self._optimize_locked()
        finally:
            self._lock.release()

    async def _optimize_locked(self) -> float:
        if not self._state.loaded:
            return 0.0

        before = self._weights_mb + self._context_mb + self._cache_mb
        try:
            await asyncio.wait_for(
                self._run_blocking(self.backend.release_memory),
                timeout=self.timeouts.optimize_seconds
            )
        except asyncio.TimeoutError:
            logger.error(f"Memory optimization timed out after {self.timeouts.optimize_seconds}s")
            raise OperationTimeoutError("memory optimization", self.timeouts.optimize_seconds) from None

        measured = self.backend.memory_footprint_mb()
        if measured is not None:
            self._weights_mb = min(self._weights_mb, measured)
        self._cache_mb = 0.0
        if not self._optimized:
            self._context_mb = min(
                self._context_mb,
                estimate_context_overhead_mb(self._config.context_window, True)
            )
            self._optimized = True
        self._sync_memory()

        freed = max(0.0, before - (self._weights_mb + self._context_mb + self._cache_mb))
        logger.info(f"Memory optimization freed {freed:.1f}MB, now {self._state.memory_usage_mb:.1f}MB")
        return freed

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    async def infer(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> str:
        """
        Run one inference against the resident model.

        Args:
            prompt: Prompt text
            options: Optional overrides for max_tokens and temperature

        Returns:
            Generated text
        """
        if not self._state.loaded:
            raise ModelNotLoaded("Model is not loaded")

        options = options or {}
        max_tokens = int(options.get("max_tokens") or self._config.max_tokens)
        temperature = float(options.get("temperature", self._config.temperature))
        timeout = min(self.timeouts.inference_seconds, self.limits.max_processing_time_ms / 1000)

        generation = self._generation
        self._state.performance_metrics.total_requests += 1
        request_mb = estimate_request_memory_mb(prompt, max_tokens)

        try:
            await self._ensure_capacity(request_mb)
        except ClearClauseError:
            self._record_failure(generation, 0.0)
            raise
        if generation != self._generation:
            raise ModelNotLoaded("Model was unloaded while the request was waiting for memory")

        self._reserved_mb += request_mb
        self._sync_memory()

        started = time.perf_counter()
        try:
            output = await asyncio.wait_for(
                self._run_blocking(self.backend.generate, prompt, max_tokens, temperature),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            self._record_failure(generation, request_mb)
            logger.error(f"Inference timed out after {timeout}s (prompt_chars={len(prompt)})")
            raise OperationTimeoutError("inference", timeout) from None
        except Exception as e:
            self._record_failure(generation, request_mb)
            logger.error(f"Inference failed: {str(e)}")
            raise InferenceFailure(f"Inference failed: {e}") from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        if not isinstance(output, str) or not output.strip():
            self._record_failure(generation, request_mb)
            raise InferenceFailure("Model returned empty output")

        self._record_success(generation, request_mb, elapsed_ms)
        return output

    async def _ensure_capacity(self, extra_mb: float) -> None:
        limit = self.limits.max_memory_usage_mb
        if self._total_memory() + extra_mb <= limit:
            return

        logger.warning(
            f"Request needs {extra_mb:.1f}MB with {self._total_memory():.1f}/{limit:.0f}MB in use, optimizing"
        )
        await self.optimize_memory()
        if self._total_memory() + extra_mb > limit:
            raise ResourceExhausted(
                f"Memory limit exceeded: {self._total_memory() + extra_mb:.1f}MB needed, limit {limit:.0f}MB",
                required_mb=self._total_memory() + extra_mb,
                limit_mb=limit
            )

    def _record_success(self, generation: int, request_mb: float, elapsed_ms: float) -> None:
        # A reload or unload in the meantime owns a fresh state
        if generation != self._generation:
            return
        self._reserved_mb = max(0.0, self._reserved_mb - request_mb)
        self._cache_mb += request_mb * CACHE_RETENTION_RATIO

        state = self._state
        state.inference_count += 1
        state.total_inference_time_ms += elapsed_ms
        state.performance_metrics.average_inference_time_ms = (
            state.total_inference_time_ms / state.inference_count
        )
        state.last_activity_timestamp = datetime.utcnow()
        self._sync_memory()

    def _record_failure(self, generation: int, request_mb: float) -> None:
        if generation != self._generation:
            return
        self._reserved_mb = max(0.0, self._reserved_mb - request_mb)
        self._state.performance_metrics.failed_requests += 1
        self._sync_memory()

    # ------------------------------------------------------------------
    # Health and metrics
    # ------------------------------------------------------------------

    async def health_check(self) -> HealthStatus:
        """Probe the model with a tiny prompt. The probe is not counted as a request."""
        if not self._state.loaded:
            return HealthStatus.NOT_LOADED

        generation = self._generation
        started = time.perf_counter()
        try:
            reply = await asyncio.wait_for(
                self._run_blocking(self.backend.generate, HEALTH_CHECK_PROMPT, 10, 0.0),
                timeout=self.timeouts.inference_seconds
            )
            elapsed = time.perf_counter() - started
            if not reply or not str(reply).strip():
                status = HealthStatus.ERROR
            elif elapsed > SLOW_HEALTH_CHECK_SECONDS:
                status = HealthStatus.SLOW
            else:
                status = HealthStatus.HEALTHY
        except asyncio.TimeoutError:
            status = HealthStatus.ERROR
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            status = HealthStatus.ERROR

        if generation == self._generation and self._state.loaded:
            self._state.health_status = status
        return status

    def performance_metrics(self) -> Dict[str, Any]:
        """Request counters plus memory utilization and uptime."""
        metrics = self._state.performance_metrics
        total = metrics.total_requests
        return {
            "total_requests": total,
            "failed_requests": metrics.failed_requests,
            "success_rate": (total - metrics.failed_requests) / total if total else 0.0,
            "average_inference_time_ms": round(metrics.average_inference_time_ms, 2),
            "inference_count": self._state.inference_count,
            "memory_usage_mb": self._state.memory_usage_mb,
            "memory_utilization": round(self.memory_utilization, 4),
            "uptime_seconds": round(time.monotonic() - self._loaded_at, 1) if self._state.loaded else 0.0,
            "health_status": self._state.health_status.value,
        }

    def reset_metrics(self) -> None:
        """Zero the request counters of a loaded model."""
        if not self._state.loaded:
            return
        self._state.performance_metrics = PerformanceMetrics()
        self._state.inference_count = 0
        self._state.total_inference_time_ms = 0.0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _total_memory(self) -> float:
        return self._weights_mb + self._context_mb + self._cache_mb + self._reserved_mb

    def _sync_memory(self) -> None:
        self._state.memory_usage_mb = round(self._total_memory(), 3)

    def _submit_blocking(self, func, *args) -> asyncio.Future:
        return asyncio.get_event_loop().run_in_executor(None, lambda: func(*args))

    async def _run_blocking(self, func, *args):
        return await self._submit_blocking(func, *args)


def create_resource_manager(settings, backend: Optional[ModelBackend] = None) -> ResourceManager:
    """Build a resource manager from application settings."""
    return ResourceManager(
        config=settings.local_model_config,
        limits=settings.resource_limits,
        timeouts=settings.operation_timeouts,
        backend=backend or HuggingFaceModelBackend(device=settings.MODEL_DEVICE)
    )
