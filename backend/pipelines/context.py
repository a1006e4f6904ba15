from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from app.core.config import PipelineConfig, Settings
from app.services.llm import LLMProvider, provider_from_settings
from app.services.search import BraveSearchClient
from ingestion.client import PolymarketClient
from ingestion.resolver import MarketDataSource

from .cache import AnalysisCache
from .evidence import SearchClient
from .prompt import load_prompt_template
from .ratelimit import FileRateLimitStore, RateLimiter


@dataclass(slots=True)
class AnalysisContext:
    """Collaborators and configuration shared by analysis runs."""

    config: PipelineConfig
    market_client: MarketDataSource
    llm_provider: LLMProvider | None
    search_client: SearchClient | None = None
    cache: AnalysisCache | None = None
    rate_limiter: RateLimiter | None = None
    prompt_template: str | None = None
    runs_dir: Path | None = None

    async def aclose(self) -> None:
        for client in (self.market_client, self.search_client):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()


def build_context(settings: Settings) -> AnalysisContext:
    """Wire the production collaborators described by ``settings``."""

    config = settings.pipeline_config()
    llm_provider: LLMProvider | None = None
    if settings.ai_api_key:
        llm_provider = provider_from_settings(settings)
    else:
        logger.warning("AI_API_KEY is not configured; analysis requests will fail")

    search_client: BraveSearchClient | None = None
    if config.search_enabled and settings.search_api_key:
        search_client = BraveSearchClient(settings.search_api_key)

    cache_dir = Path(settings.cache_dir)
    return AnalysisContext(
        config=config,
        market_client=PolymarketClient(
            base_url=str(settings.polymarket_base_url),
        ),
        llm_provider=llm_provider,
        search_client=search_client,
        cache=AnalysisCache(cache_dir, config.cache_ttl_sec),
        rate_limiter=RateLimiter(FileRateLimitStore(cache_dir)),
        prompt_template=load_prompt_template(settings.ai_prompt_path),
        runs_dir=Path(settings.runs_dir) if settings.runs_dir else None,
    )


__all__ = ["AnalysisContext", "build_context"]
