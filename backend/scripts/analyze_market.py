import argparse
import asyncio
import json
import sys
from pathlib import Path

import yaml
from loguru import logger

from app.core.config import get_settings
from app.domain import AnalysisRequest
from pipelines.analyze import AnalysisResult, analyze
from pipelines.context import build_context


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Analyse a Polymarket market and print the JSON report")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--slug", help="Market slug or event/market path")
    target.add_argument("--id", dest="market_id", help="Gamma market id")
    target.add_argument("--event", dest="event_slug", help="Event slug (see --market-index)")
    parser.add_argument("--market-index", type=int, default=None, help="Market index within an event")
    parser.add_argument(
        "--sources-file",
        type=Path,
        default=None,
        help="YAML or JSON file holding a list of caller-supplied sources",
    )
    return parser.parse_args(argv)


def load_sources(path: Path | None) -> object:
    """Read caller sources from a YAML or JSON list; JSON parses as YAML."""

    if path is None:
        return None
    file_path = path.expanduser()
    try:
        raw = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Ignoring unreadable sources file {}: {}", file_path, exc)
        return None
    if isinstance(raw, dict) and "sources" in raw:
        return raw["sources"]
    return raw


async def run(args: argparse.Namespace) -> AnalysisResult:
    request = AnalysisRequest(
        slug=args.slug,
        market_id=args.market_id,
        event_slug=args.event_slug,
        market_index=args.market_index,
        caller_sources=load_sources(args.sources_file),
    )
    context = build_context(get_settings())
    try:
        return await analyze(request, context)
    finally:
        await context.aclose()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    result = asyncio.run(run(args))
    body = result.payload if result.ok else result.error.to_dict()  # type: ignore[union-attr]
    sys.stdout.write(json.dumps(body, ensure_ascii=False) + "\n")
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
