"""
Configuration management for the ClearClause analysis backend.
Values are read once from the environment (or .env) at startup.
"""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings

from .runtime import LocalModelConfig, OperationTimeouts, ResourceLimits
from .schemas import AnalysisOptions


class Settings(BaseSettings):
    """Application configuration settings."""

    # Application
    APP_NAME: str = "ClearClause Contract Analyzer"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # API Configuration
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080

    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173"
    ]
    ALLOW_CREDENTIALS: bool = True

    # Local model
    MODEL_NAME: str = "meta-llama/Llama-3.1-8B-Instruct"
    MODEL_CONTEXT_WINDOW: int = 128000
    MODEL_MAX_TOKENS: int = 2048
    MODEL_TEMPERATURE: float = 0.1
    MODEL_MEMORY_OPTIMIZATION: bool = True
    MODEL_DEVICE: Optional[str] = None

    # Resource limits
    MAX_MEMORY_USAGE_MB: float = 16384.0
    MAX_PROCESSING_TIME_MS: int = 30000
    MAX_CONCURRENT_ANALYSES: int = 2

    # Operation time budgets
    MODEL_LOAD_TIMEOUT_SECONDS: float = 60.0
    INFERENCE_TIMEOUT_SECONDS: float = 30.0
    OPTIMIZE_TIMEOUT_SECONDS: float = 5.0

    # Routing
    AUTO_LOAD_MODEL: bool = False

    # Analyzer
    ENABLE_CLAUSE_EXTRACTION: bool = True
    ENABLE_RISK_ASSESSMENT: bool = True
    ENABLE_RECOMMENDATIONS: bool = True
    CONFIDENCE_THRESHOLD: float = 0.3
    ANALYZER_MAX_ATTEMPTS: int = 3
    MAX_DOCUMENT_CHARS: int = 200000

    # Fallback analysis service
    FALLBACK_PROVIDER: str = "http"
    FALLBACK_API_URL: str = "http://localhost:9000"
    FALLBACK_API_KEY: Optional[str] = None
    FALLBACK_TIMEOUT_SECONDS: float = 30.0
    FALLBACK_RETRY_ATTEMPTS: int = 3
    FALLBACK_MAX_CONCURRENT: int = 5

    # Google Cloud Platform (Gemini fallback)
    GOOGLE_CLOUD_PROJECT: str = "clearclause"
    VERTEX_AI_LOCATION: str = "us-central1"
    VERTEX_GENERATION_MODEL: str = "gemini-2.5-pro"
    GENERATION_TEMPERATURE: float = 0.1
    GENERATION_MAX_TOKENS: int = 4096

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        case_sensitive = True

    @property
    def local_model_config(self) -> LocalModelConfig:
        """Immutable local model configuration."""
        return LocalModelConfig(
            model_name=self.MODEL_NAME,
            context_window=self.MODEL_CONTEXT_WINDOW,
            max_tokens=self.MODEL_MAX_TOKENS,
            temperature=self.MODEL_TEMPERATURE,
            memory_optimization=self.MODEL_MEMORY_OPTIMIZATION
        )

    @property
    def resource_limits(self) -> ResourceLimits:
        return ResourceLimits(
            max_memory_usage_mb=self.MAX_MEMORY_USAGE_MB,
            max_processing_time_ms=self.MAX_PROCESSING_TIME_MS
        )

    @property
    def operation_timeouts(self) -> OperationTimeouts:
        return OperationTimeouts(
            load_seconds=self.MODEL_LOAD_TIMEOUT_SECONDS,
            inference_seconds=self.INFERENCE_TIMEOUT_SECONDS,
            optimize_seconds=self.OPTIMIZE_TIMEOUT_SECONDS
        )

    @property
    def default_analysis_options(self) -> AnalysisOptions:
        return AnalysisOptions(
            enable_clause_extraction=self.ENABLE_CLAUSE_EXTRACTION,
            enable_risk_assessment=self.ENABLE_RISK_ASSESSMENT,
            enable_recommendations=self.ENABLE_RECOMMENDATIONS,
            confidence_threshold=self.CONFIDENCE_THRESHOLD
        )

    @property
    def gemini_config(self) -> Dict[str, object]:
        """Gemini generation configuration for the remote fallback."""
        return {
            "model": self.VERTEX_GENERATION_MODEL,
            "temperature": self.GENERATION_TEMPERATURE,
            "max_output_tokens": self.GENERATION_MAX_TOKENS
        }

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
