"""Unit tests for environment-driven settings."""

from clearclause.models.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.API_PORT == 8080
        assert settings.AUTO_LOAD_MODEL is False
        assert settings.FALLBACK_PROVIDER == "http"
        assert settings.is_production() is False

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("MODEL_NAME", "Qwen/Qwen2.5-3B-Instruct")
        monkeypatch.setenv("MAX_MEMORY_USAGE_MB", "8192")
        monkeypatch.setenv("ENVIRONMENT", "Production")
        monkeypatch.setenv("ALLOWED_ORIGINS", '["https://app.example.com"]')

        settings = Settings()
        assert settings.local_model_config.model_name == "Qwen/Qwen2.5-3B-Instruct"
        assert settings.resource_limits.max_memory_usage_mb == 8192.0
        assert settings.ALLOWED_ORIGINS == ["https://app.example.com"]
        assert settings.is_production() is True

    def test_derived_records(self):
        settings = Settings(
            MODEL_CONTEXT_WINDOW=8192,
            INFERENCE_TIMEOUT_SECONDS=12.5,
            ENABLE_RECOMMENDATIONS=False,
            CONFIDENCE_THRESHOLD=0.6,
        )
        assert settings.local_model_config.context_window == 8192
        assert settings.operation_timeouts.inference_seconds == 12.5
        options = settings.default_analysis_options
        assert options.enable_recommendations is False
        assert options.confidence_threshold == 0.6

    def test_gemini_config(self):
        settings = Settings(VERTEX_GENERATION_MODEL="gemini-2.5-flash", GENERATION_MAX_TOKENS=1024)
        assert settings.gemini_config == {
            "model": "gemini-2.5-flash",
            "temperature": 0.1,
            "max_output_tokens": 1024,
        }
