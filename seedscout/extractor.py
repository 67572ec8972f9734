from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from .llm import AIRecordPayload, LLMClient, build_link_prompt, decode_ai_record
from .profiles import DEFAULT_PROFILES, VendorProfiles
from .scraper import PageScraper
from .urls import variety_slug_from_url, vendor_from_url
from .utils import IMPORTED_SEED, ExtractedRecord, PageResult, Quality, short_url

logger = logging.getLogger(__name__)


@dataclass
class LiveResult:
    record: ExtractedRecord
    page: PageResult = field(default_factory=PageResult)
    ai_found: bool = False


class CanonicalExtractor:
    """Runs the page scrape and the AI extraction side by side and merges them.

    Each branch has its own timeout and the pair shares an overall budget; a
    branch that times out or fails counts as absent.
    """

    def __init__(
        self,
        scraper: PageScraper,
        llm: LLMClient,
        page_timeout: float = 8.0,
        ai_timeout: float = 20.0,
        budget: float = 25.0,
        profiles: VendorProfiles = DEFAULT_PROFILES,
    ) -> None:
        self._scraper = scraper
        self._llm = llm
        self._page_timeout = page_timeout
        self._ai_timeout = ai_timeout
        self._budget = budget
        self._profiles = profiles

    async def extract(self, url: str) -> LiveResult:
        page_task = asyncio.create_task(self._scrape_page(url))
        ai_task = asyncio.create_task(self._ask_ai(url))
        done, pending = await asyncio.wait({page_task, ai_task}, timeout=self._budget)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Metadata budget of %.0fs exhausted for %s", self._budget, short_url(url))
            await asyncio.gather(*pending, return_exceptions=True)

        page = page_task.result() if page_task in done else PageResult()
        payload = ai_task.result() if ai_task in done else None
        return LiveResult(record=self.merge(url, page, payload), page=page, ai_found=payload is not None)

    def merge(self, url: str, page: PageResult, payload: Optional[AIRecordPayload]) -> ExtractedRecord:
        if payload is None:
            logger.info("No AI result for %s; using URL fallback", short_url(url))
            return ExtractedRecord(
                source_url=url,
                vendor=vendor_from_url(url, self._profiles),
                plant_type=IMPORTED_SEED,
                variety=variety_slug_from_url(url),
                hero_image_url=page.image_url,
                quality=Quality.FAILED,
                failed=True,
                page_status_code=page.status,
            )

        record = payload.to_record(url, quality=Quality.FULL if page.ok else Quality.PARTIAL)
        if page.image_url:
            record.hero_image_url = page.image_url
        record.page_status_code = page.status
        logger.info(
            "Canonical extraction for %s: %s / %s (page %s)",
            short_url(url),
            record.plant_type,
            record.variety or "-",
            page.status or "n/a",
        )
        return record

    async def _scrape_page(self, url: str) -> PageResult:
        try:
            return await asyncio.wait_for(self._scraper.scrape(url), timeout=self._page_timeout)
        except asyncio.TimeoutError:
            logger.warning("Page fetch timed out after %.0fs: %s", self._page_timeout, short_url(url))
            return PageResult()

    async def _ask_ai(self, url: str) -> Optional[AIRecordPayload]:
        try:
            text = await asyncio.wait_for(
                self._llm.generate(build_link_prompt(url), url=url, search_enabled=True),
                timeout=self._ai_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("AI extraction timed out after %.0fs: %s", self._ai_timeout, short_url(url))
            return None
        payload = decode_ai_record(text)
        if payload is None or not payload.has_identity:
            logger.debug("AI extraction returned nothing usable for %s", short_url(url))
            return None
        return payload
