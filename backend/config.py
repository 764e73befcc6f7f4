"""Settings and structured logging for the Workflow X-Ray backend.

Every field of ``Settings`` can be set through an environment variable of
the same name (case-insensitive) or a ``.env`` file. Importing this module
configures structlog from those settings.
"""

import json
import logging
import os
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGIN = "http://localhost:3000"


class Settings(BaseSettings):
    """Runtime configuration.

    Attributes:
        anthropic_api_key: Provider key, exported as ANTHROPIC_API_KEY for LiteLLM.
        decompose_model: LiteLLM model string (provider-prefixed) for decomposition.
        llm_fallback_model: Model tried once after the primary model gives up.
        use_mock_llm: Serve a canned decomposition instead of calling a model.
        llm_request_timeout_seconds: Per-request model timeout.
        llm_max_retries: Retries on rate limits, outages and timeouts.
        llm_max_tokens: Completion token cap.
        llm_temperature: Sampling temperature.
        database_path: SQLite file for the key/value store. An empty value
            selects the non-durable in-memory store.
        cache_enabled: Serve repeated analyses from the analysis cache.
        cache_ttl_seconds: Analysis cache entry lifetime.
        backend_port: HTTP port.
        cors_origins: Origins allowed by the CORS middleware.
        log_level: Minimum level emitted (DEBUG, INFO, WARNING, ERROR).
        log_format: ``json`` or ``text``.
    """

    model_config = SettingsConfigDict(
        # .env is looked up in backend/ and in the repository root
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Model
    anthropic_api_key: str = ""
    decompose_model: str = "anthropic/claude-sonnet-4-20250514"
    llm_fallback_model: str | None = None
    use_mock_llm: bool = False
    llm_request_timeout_seconds: int = 120
    llm_max_retries: int = 3
    llm_max_tokens: int = 8192
    llm_temperature: float = 0.2

    # Storage
    database_path: str = "./data/xray.db"
    cache_enabled: bool = True
    cache_ttl_seconds: int = 7 * 24 * 60 * 60

    # Server
    backend_port: int = 8000
    cors_origins: str | list[str] = [DEFAULT_CORS_ORIGIN]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors_origins(cls, value: Any) -> list[str]:
        """Accept a list, a JSON array string, or a comma-separated string."""
        if isinstance(value, list):
            return value
        if not isinstance(value, str):
            return [DEFAULT_CORS_ORIGIN]

        text = value.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(origin) for origin in parsed]
        return [origin.strip() for origin in text.split(",") if origin.strip()]

    def model_post_init(self, __context: Any) -> None:
        """Make the provider key visible to LiteLLM without overriding the environment."""
        if self.anthropic_api_key:
            os.environ.setdefault("ANTHROPIC_API_KEY", self.anthropic_api_key)


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Set up structlog.

    Args:
        log_level: Minimum level to emit; unknown names fall back to INFO.
        log_format: ``json`` for machine-readable lines, anything else for the
            colored console renderer.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


settings = Settings()

configure_logging(settings.log_level, settings.log_format)
