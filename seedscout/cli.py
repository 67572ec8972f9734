from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .batch import BatchRunner
from .cache import CacheResolver
from .extractor import CanonicalExtractor
from .hero import HeroPhotoResolver
from .llm import LLMClient
from .pipeline import PipelineController
from .profiles import load_vendor_profiles
from .rescue import RescueExtractor
from .scraper import HttpFetcher, PageScraper
from .store import LoggingAuditSink, SupabaseAuditSink, SupabaseStore
from .utils import Settings, configure_logging, load_settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seedscout",
        description="Extract canonical seed/plant metadata from vendor product URLs.",
    )
    parser.add_argument("urls", nargs="+", help="Product page URLs")
    parser.add_argument("--token", help="Bearer credential used to resolve the user for per-user cache and tags")
    parser.add_argument(
        "--blocked-tag",
        action="append",
        default=[],
        dest="blocked_tags",
        metavar="TAG",
        help="Tag to drop from results (repeatable)",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging and debug payload dumps")
    return parser


async def run_batch(settings: Settings, urls: List[str], token: Optional[str], blocked_tags: List[str]) -> List[dict]:
    profiles = load_vendor_profiles(settings.vendor_profiles_path)
    store = SupabaseStore.from_settings(settings)
    audit_sink = SupabaseAuditSink(store) if store is not None else LoggingAuditSink()
    fetcher = HttpFetcher()
    llm_client = LLMClient(
        settings.openai_api_key,
        settings.openai_model,
        web_model=settings.openai_web_model,
        enable_web=settings.enable_openai_web,
    )
    if not llm_client.enabled:
        logger.warning("OPENAI_API_KEY is not set; AI extraction, rescue and hero search are disabled")

    controller = PipelineController(
        cache=CacheResolver(store, fetcher, profiles, image_check_timeout=settings.image_check_timeout),
        extractor=CanonicalExtractor(
            PageScraper(fetcher, profiles, timeout=settings.page_fetch_timeout),
            llm_client,
            page_timeout=settings.page_fetch_timeout,
            ai_timeout=settings.ai_timeout,
            budget=settings.metadata_budget,
            profiles=profiles,
        ),
        rescue=RescueExtractor(llm_client, audit_sink, profiles, timeout=settings.ai_timeout),
        hero=HeroPhotoResolver(llm_client, audit_sink, rung_timeout=settings.hero_rung_timeout),
        store=store,
        profiles=profiles,
        debug_dir=settings.debug_dir if settings.debug_extract else None,
    )
    runner = BatchRunner(
        controller,
        group_size=settings.batch_group_size,
        delay_range=(settings.batch_delay_min, settings.batch_delay_max),
        rate_limit_backoff=settings.rate_limit_backoff,
    )

    try:
        await fetcher.start()
        await llm_client.start()
        outcomes = await runner.run(urls, credential=token, blocked_tags=blocked_tags)
    finally:
        await fetcher.close()
        await llm_client.close()
    return [outcome.as_dict() for outcome in outcomes]


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    if args.debug:
        settings = settings.model_copy(update={"debug_extract": True})
    configure_logging(settings.debug_extract)

    try:
        results = asyncio.run(run_batch(settings, args.urls, args.token, args.blocked_tags))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130

    for result in results:
        print(json.dumps(result, default=str))
    return 0 if all("record" in result for result in results) else 1


if __name__ == "__main__":
    sys.exit(main())
