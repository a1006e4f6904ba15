from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PIPELINE_VERSION = "stage6_0"
SCHEMA_VERSION = "1.0"


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Immutable knobs threaded through one analysis run."""

    pipeline_version: str = PIPELINE_VERSION
    schema_version: str = SCHEMA_VERSION
    overall_timeout_ms: int = 45_000
    market_timeout_ms: int = 15_000
    llm_timeout_ms: int = 30_000
    llm_retries: int = 2
    rate_limit_ms: int = 0
    gamma_rate_limit_ms: int = 0
    gamma_retries: int = 2
    gamma_backoff_ms: int = 500
    gamma_request_delay_ms: int = 120
    search_enabled: bool = False
    search_timeout_ms: int = 5_000
    search_total_timeout_ms: int = 12_000
    search_retries: int = 1
    search_backoff_ms: int = 400
    search_rate_limit_ms: int = 0
    search_per_query_count: int = 10
    search_top_n: int = 12
    search_max_per_domain: int = 2
    search_query_limit: int = 4
    cache_ttl_sec: int = 1800
    ai_response_format: str = "json_object"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    polymarket_base_url: AnyUrl = Field(
        default="https://gamma-api.polymarket.com",
        description="Base URL for the Polymarket Gamma API",
    )
    ai_api_key: str | None = Field(
        default=None,
        description="API key for the configured LLM provider",
    )
    ai_provider: str = Field(
        default="openai",
        description="LLM provider used for the analysis report (openai|openrouter)",
    )
    ai_model: str | None = Field(
        default=None,
        description="Optional model override; providers fall back to their own default",
    )
    ai_base_url: AnyUrl | str | None = Field(
        default=None,
        description="Optional override for the provider API base URL (proxy support)",
    )
    ai_response_format: str | None = Field(
        default=None,
        description="Structured output mode (json_object|none); provider default when unset",
    )
    ai_prompt_path: str | None = Field(
        default="./prompts/base.txt",
        description="Prompt template file; the built-in template is used when missing",
    )
    overall_timeout_ms: int = Field(45_000, description="Deadline for the whole analysis run", ge=0)
    llm_timeout_ms: int = Field(30_000, description="Per-call LLM timeout", ge=0)
    llm_retries: int = Field(
        2, description="Corrective re-prompts after an invalid LLM output", ge=0
    )
    market_timeout_ms: int = Field(15_000, description="Deadline for market resolution", ge=0)
    rate_limit_ms: int = Field(
        0, description="Minimum interval between analysis runs (0 disables)", ge=0
    )
    gamma_rate_limit_ms: int = Field(
        0, description="Minimum interval between Gamma resolution attempts (0 disables)", ge=0
    )
    gamma_retries: int = Field(2, description="Retries for market resolution", ge=0)
    gamma_backoff_ms: int = Field(500, description="Base backoff for market retries", ge=0)
    gamma_request_delay_ms: int = Field(
        120, description="Delay inserted between consecutive Gamma requests", ge=0
    )
    search_enabled: bool = Field(False, description="Enable external web search evidence")
    search_api_key: str | None = Field(
        default=None,
        description="Brave Search subscription token",
    )
    search_timeout_ms: int = Field(5_000, description="Per-query search timeout", ge=0)
    search_total_timeout_ms: int = Field(
        12_000, description="Deadline for the whole search step", ge=0
    )
    search_retries: int = Field(1, description="Retries per search query", ge=0)
    search_backoff_ms: int = Field(400, description="Base backoff for search retries", ge=0)
    search_rate_limit_ms: int = Field(
        0, description="Minimum interval between search steps (0 disables)", ge=0
    )
    search_per_query_count: int = Field(10, description="Results requested per query", ge=1)
    search_top_n: int = Field(12, description="Maximum external sources kept", ge=0)
    search_max_per_domain: int = Field(2, description="Maximum sources kept per domain", ge=0)
    search_query_limit: int = Field(4, description="Maximum generated search queries", ge=1, le=7)
    cache_dir: str = Field(
        default=".cache",
        description="Directory used for the analysis cache and rate-limit timestamps",
    )
    cache_ttl_sec: int = Field(1800, description="Lifetime of cached analysis envelopes", ge=0)
    runs_dir: str | None = Field(
        default="runs",
        description="Directory where per-run artifacts are written (set blank to disable)",
    )
    analyzer_host: str = Field(default="127.0.0.1", description="HTTP bind host")
    analyzer_port: int = Field(default=8787, description="HTTP bind port")

    @field_validator("ai_provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"openai", "openrouter"}:
            raise ValueError("AI_PROVIDER must be either 'openai' or 'openrouter'")
        return normalized

    @field_validator("ai_response_format")
    @classmethod
    def _validate_response_format(cls, value: str | None) -> str | None:
        if value in (None, ""):
            return None
        normalized = value.strip().lower()
        if normalized not in {"json_object", "none"}:
            raise ValueError("AI_RESPONSE_FORMAT must be 'json_object' or 'none'")
        return normalized

    @field_validator("search_enabled", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "on", "yes"}
        return value

    @field_validator("ai_api_key", "search_api_key", "runs_dir", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def resolved_response_format(self) -> str:
        if self.ai_response_format:
            return self.ai_response_format
        return "none" if self.ai_provider == "openrouter" else "json_object"

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            overall_timeout_ms=self.overall_timeout_ms,
            market_timeout_ms=self.market_timeout_ms,
            llm_timeout_ms=self.llm_timeout_ms,
            llm_retries=self.llm_retries,
            rate_limit_ms=self.rate_limit_ms,
            gamma_rate_limit_ms=self.gamma_rate_limit_ms,
            gamma_retries=self.gamma_retries,
            gamma_backoff_ms=self.gamma_backoff_ms,
            gamma_request_delay_ms=self.gamma_request_delay_ms,
            search_enabled=self.search_enabled,
            search_timeout_ms=self.search_timeout_ms,
            search_total_timeout_ms=self.search_total_timeout_ms,
            search_retries=self.search_retries,
            search_backoff_ms=self.search_backoff_ms,
            search_rate_limit_ms=self.search_rate_limit_ms,
            search_per_query_count=self.search_per_query_count,
            search_top_n=self.search_top_n,
            search_max_per_domain=self.search_max_per_domain,
            search_query_limit=self.search_query_limit,
            cache_ttl_sec=self.cache_ttl_sec,
            ai_response_format=self.resolved_response_format,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
