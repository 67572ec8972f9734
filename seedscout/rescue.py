from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .llm import LLMClient, build_rescue_prompt, decode_ai_record
from .profiles import DEFAULT_PROFILES, VendorProfiles
from .urls import hostname, variety_slug_from_url, vendor_from_url
from .utils import AuditEntry, ExtractedRecord, Quality, short_url

logger = logging.getLogger(__name__)


class RescueExtractor:
    """Fills in a record from URL hints plus the model's own knowledge when the page could not be read."""

    def __init__(
        self,
        llm: LLMClient,
        audit_sink,
        profiles: VendorProfiles = DEFAULT_PROFILES,
        timeout: float = 20.0,
    ) -> None:
        self._llm = llm
        self._audit = audit_sink
        self._profiles = profiles
        self._timeout = timeout

    def hints(self, url: str):
        return vendor_from_url(url, self._profiles), variety_slug_from_url(url)

    async def rescue(
        self,
        url: str,
        status_code: int = 0,
        identity_key: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[ExtractedRecord]:
        vendor_hint, variety_hint = self.hints(url)
        if not vendor_hint and not variety_hint:
            logger.info("No URL hints for rescue of %s", short_url(url))
            return None

        logger.info("Rescue for %s (vendor=%r, variety=%r)", short_url(url), vendor_hint, variety_hint)
        error: Optional[str] = None
        record: Optional[ExtractedRecord] = None
        try:
            text = await asyncio.wait_for(
                self._llm.generate(build_rescue_prompt(variety_hint, vendor_hint), url=url, search_enabled=True),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            text = ""
            error = f"rescue timed out after {self._timeout:.0f}s"
            logger.warning("Rescue timed out for %s", short_url(url))

        payload = decode_ai_record(text)
        if payload is not None and payload.has_identity:
            record = payload.to_record(url, quality=Quality.AI_ONLY)
            record.vendor = record.vendor or vendor_hint
            if self._profiles.is_blocked_vendor(hostname(url)) and variety_hint:
                record.variety = variety_hint
            record.page_status_code = status_code
        elif error is None:
            error = "rescue returned no usable record"

        await self._audit.record(
            AuditEntry(
                url=url,
                stage="rescue",
                pass_number=1,
                success=record is not None,
                vendor=(record.vendor if record else vendor_hint),
                identity_key=identity_key,
                status_code=status_code,
                error_message=error,
                user_id=user_id,
            )
        )
        return record
