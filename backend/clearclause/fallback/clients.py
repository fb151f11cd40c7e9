"""
Remote analysis clients used when the local model path is unavailable or fails.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..analysis.prompts import full_analysis_prompt
from ..errors import ConfigurationError, FallbackFailure
from ..models.schemas import AnalysisOptions

logger = logging.getLogger(__name__)

USER_AGENT = "ClearClause-AI/1.0.0"

ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_FAILED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    408: "TIMEOUT",
    429: "RATE_LIMIT_EXCEEDED",
    500: "INTERNAL_SERVER_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
    504: "GATEWAY_TIMEOUT",
}


def _is_retryable_error(exc: BaseException) -> bool:
    """Network errors, rate limiting and 5xx responses are retried; other 4xx are not."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class FallbackClient:
    """Abstract base class for remote analysis services."""

    name = "fallback"

    async def analyze(self, text: str, options: AnalysisOptions) -> Any:
        """Return the provider's raw payload; shape is not trusted."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class HTTPFallbackClient(FallbackClient):
    """Remote analysis API over HTTP with exponential backoff."""

    name = "api_service"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        max_concurrent: int = 5,
        backoff_min: float = 1.0,
        backoff_max: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._sem = asyncio.Semaphore(max_concurrent)
        self._request_count = 0

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy initialization of the HTTP client."""
        if self._client is None:
            headers = {"User-Agent": USER_AGENT, "Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
            )
        return self._client

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_):
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            logger.info(f"Closing fallback client after {self._request_count} requests")
            await self._client.aclose()
            self._client = None

    async def analyze(self, text: str, options: AnalysisOptions) -> Any:
        if not self.base_url:
            raise FallbackFailure("Fallback API URL is not configured", code="NOT_CONFIGURED")

        body = {
            "text": text,
            "options": {
                "extractClauses": options.enable_clause_extraction,
                "assessRisks": options.enable_risk_assessment,
                "generateRecommendations": options.enable_recommendations,
                "confidenceThreshold": options.confidence_threshold,
            },
            "timestamp": datetime.utcnow().isoformat(),
        }

        try:
            response = await self._post_with_retry("/analyze", body)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            code = ERROR_CODES.get(status, "HTTP_ERROR")
            logger.error(f"Fallback API returned {status} ({code})")
            raise FallbackFailure(
                f"Fallback API returned {status} ({code})", code=code, status_code=status
            ) from e
        except httpx.TimeoutException as e:
            raise FallbackFailure(
                f"Fallback API timed out after {self.timeout}s", code="TIMEOUT"
            ) from e
        except httpx.TransportError as e:
            raise FallbackFailure(
                f"Fallback API unreachable: {e}", code="NETWORK_ERROR"
            ) from e

        try:
            return response.json()
        except ValueError:
            return response.text

    async def _post_with_retry(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        """POST with exponential backoff on retryable failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=1, min=self.backoff_min, max=self.backoff_max),
            retry=retry_if_exception(_is_retryable_error),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(f"Retrying fallback request (attempt {attempt.retry_state.attempt_number})")
                async with self._sem:
                    self._request_count += 1
                    response = await self.client.post(path, json=body)
                    response.raise_for_status()
        return response


class GeminiFallbackClient(FallbackClient):
    """Gemini on Vertex AI as the remote analysis service."""

    name = "gemini"

    def __init__(
        self,
        project: str,
        location: str,
        model_name: str,
        temperature: float = 0.1,
        max_output_tokens: int = 4096
    ):
        self.project = project
        self.location = location
        self.model_name = model_name
        self.generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
            "response_mime_type": "application/json",
        }
        self._client = None

    @property
    def client(self):
        """Lazy initialization of Vertex AI Gemini client."""
        if self._client is None:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(project=self.project, location=self.location)
            self._client = GenerativeModel(self.model_name)
        return self._client

    async def analyze(self, text: str, options: AnalysisOptions) -> Any:
        prompt = full_analysis_prompt(text)
        try:
            response = await asyncio.get_event_loop().run_in_executor(
                None,
                lambda: self.client.generate_content(prompt, generation_config=self.generation_config)
            )
        except Exception as e:
            logger.error(f"Gemini fallback failed: {str(e)}")
            raise FallbackFailure(f"Gemini request failed: {e}", code="PROVIDER_ERROR") from e

        if not response or not response.text:
            raise FallbackFailure("Gemini returned an empty response", code="EMPTY_RESPONSE")
        return response.text


def create_fallback_client(settings) -> FallbackClient:
    """Build the configured fallback client."""
    provider = settings.FALLBACK_PROVIDER.lower()
    if provider == "gemini":
        return GeminiFallbackClient(
            project=settings.GOOGLE_CLOUD_PROJECT,
            location=settings.VERTEX_AI_LOCATION,
            model_name=settings.VERTEX_GENERATION_MODEL,
            temperature=settings.GENERATION_TEMPERATURE,
            max_output_tokens=settings.GENERATION_MAX_TOKENS
        )
    if provider == "http":
        return HTTPFallbackClient(
            base_url=settings.FALLBACK_API_URL,
            api_key=settings.FALLBACK_API_KEY,
            timeout=settings.FALLBACK_TIMEOUT_SECONDS,
            retry_attempts=settings.FALLBACK_RETRY_ATTEMPTS,
            max_concurrent=settings.FALLBACK_MAX_CONCURRENT
        )
    raise ConfigurationError(f"Unknown fallback provider: {settings.FALLBACK_PROVIDER}")
