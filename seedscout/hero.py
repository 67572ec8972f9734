from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .llm import LLMClient, build_hero_prompt, decode_hero_image_url
from .utils import IMPORTED_SEED, AuditEntry, ExtractedRecord, short_url

logger = logging.getLogger(__name__)


def _part(value: Optional[str]) -> str:
    text = (value or "").strip()
    return "" if text == IMPORTED_SEED else text


def build_queries(record: ExtractedRecord) -> List[str]:
    """Search rungs from most to least specific, without blanks or repeats."""
    vendor = _part(record.vendor)
    plant = _part(record.plant_type)
    variety = _part(record.variety)
    scientific = _part(record.scientific_name)

    rungs = [
        (vendor, variety, plant),
        (variety, plant),
        (scientific, variety) if scientific else (),
        (plant,),
    ]
    queries: List[str] = []
    for parts in rungs:
        query = " ".join(p for p in parts if p).strip()
        if query and query.lower() not in (q.lower() for q in queries):
            queries.append(query)
    return queries


class HeroPhotoResolver:
    """Escalating image search; stops at the first rung that returns an absolute URL."""

    def __init__(self, llm: LLMClient, audit_sink, rung_timeout: float = 20.0) -> None:
        self._llm = llm
        self._audit = audit_sink
        self._rung_timeout = rung_timeout

    async def find(
        self,
        record: ExtractedRecord,
        identity_key: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[str]:
        queries = build_queries(record)
        if not queries:
            logger.info("Nothing to search a hero image for: %s", short_url(record.source_url))
            return None

        for pass_number, query in enumerate(queries, start=1):
            image_url: Optional[str] = None
            error: Optional[str] = None
            try:
                text = await asyncio.wait_for(
                    self._llm.generate(build_hero_prompt(query), search_enabled=True),
                    timeout=self._rung_timeout,
                )
                image_url = decode_hero_image_url(text)
                if not image_url:
                    error = "no image url in response"
            except asyncio.TimeoutError:
                error = f"timed out after {self._rung_timeout:.0f}s"

            await self._audit.record(
                AuditEntry(
                    url=record.source_url,
                    stage="hero",
                    pass_number=pass_number,
                    success=image_url is not None,
                    vendor=record.vendor,
                    identity_key=identity_key,
                    status_code=record.page_status_code,
                    query_used=query,
                    result_image_url=image_url,
                    error_message=error,
                    user_id=user_id,
                )
            )
            if image_url:
                logger.info("Hero image found on pass %d for %s", pass_number, short_url(record.source_url))
                return image_url
            logger.info("Hero pass %d failed for %s (%s)", pass_number, short_url(record.source_url), error)

        return None
