from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from .identity import identity_key, normalize_vendor_key
from .normalize import merge_tags, parse_harvest_days
from .profiles import DEFAULT_PROFILES, VendorProfiles
from .scraper import HttpFetcher
from .store import CacheRow
from .urls import parse_prefill_from_url, vendor_from_url
from .utils import IMPORTED_SEED, ExtractedRecord, GrowingSpecs, Quality, has_absolute_scheme, quality_rank, short_url

logger = logging.getLogger(__name__)


def _text(data: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def select_best_row(rows: List[CacheRow], vendor: Optional[str] = None) -> Optional[CacheRow]:
    """Highest quality first, newest first among equals; same-vendor rows preferred when there is a choice."""
    if not rows:
        return None
    candidates = rows
    vendor_key = normalize_vendor_key(vendor)
    if vendor_key and len(rows) > 1:
        filtered = [row for row in rows if normalize_vendor_key(row.vendor) == vendor_key]
        candidates = filtered or rows
    return max(candidates, key=lambda row: (quality_rank(row.quality), row.sort_timestamp))


def record_from_row(
    row: CacheRow,
    url: str,
    hero_image_url: Optional[str],
    vendor_fallback: str = "",
    keep_row_source: bool = True,
) -> ExtractedRecord:
    """Cached extract_data in the same shape every tier returns."""
    data = row.extract_data or {}
    days_to_maturity = _text(data, "days_to_maturity")
    tags = data.get("tags")
    try:
        quality = Quality((row.quality or "").strip().lower())
    except ValueError:
        quality = Quality.PARTIAL
    return ExtractedRecord(
        source_url=(_text(data, "source_url") or url) if keep_row_source else url,
        vendor=_text(data, "vendor") or vendor_fallback,
        plant_type=_text(data, "type", "plant_type") or IMPORTED_SEED,
        variety=_text(data, "variety") or "",
        scientific_name=_text(data, "scientific_name"),
        tags=merge_tags(tags) if isinstance(tags, list) else [],
        specs=GrowingSpecs(
            sowing_depth=_text(data, "sowing_depth"),
            spacing=_text(data, "spacing", "plant_spacing"),
            sun_requirement=_text(data, "sun_requirement", "sun"),
            days_to_germination=_text(data, "days_to_germination"),
            days_to_maturity=days_to_maturity,
            harvest_days=parse_harvest_days(days_to_maturity, data.get("harvest_days")),
            water=_text(data, "water"),
            plant_description=_text(data, "plant_description"),
        ),
        hero_image_url=hero_image_url if has_absolute_scheme(hero_image_url) else None,
        quality=quality,
        page_status_code=200,
        cached=True,
    )


class CacheResolver:
    """Three-tier lookup: global exact URL, user exact URL, then identity key + vendor."""

    def __init__(
        self,
        store,
        fetcher: HttpFetcher,
        profiles: VendorProfiles = DEFAULT_PROFILES,
        image_check_timeout: float = 5.0,
        identity_limit: int = 10,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._profiles = profiles
        self._image_check_timeout = image_check_timeout
        self._identity_limit = identity_limit

    async def resolve(self, url: str, user_id: Optional[str] = None) -> Optional[ExtractedRecord]:
        if self._store is None:
            return None

        row = await self._query("global cache", self._store.find_by_source_url, url, None)
        if row and row.extract_data:
            logger.info("Global cache hit for %s", short_url(url))
            hero = _text(row.extract_data, "hero_image_url") or row.original_hero_url
            return record_from_row(row, url, hero)

        if user_id:
            row = await self._query("user cache", self._store.find_by_source_url, url, user_id)
            if row and row.extract_data:
                logger.info("User cache hit for %s", short_url(url))
                hero = _text(row.extract_data, "hero_image_url") or row.original_hero_url
                if row.hero_storage_path:
                    stored = await self._query("hero storage", self._store.public_image_url, row.hero_storage_path)
                    hero = stored or hero
                return record_from_row(row, url, hero)

        return await self._resolve_identity(url)

    async def _resolve_identity(self, url: str) -> Optional[ExtractedRecord]:
        prefill = parse_prefill_from_url(url, self._profiles)
        if prefill is None:
            return None
        vendor = (prefill.vendor or vendor_from_url(url, self._profiles)).strip()
        key = identity_key(prefill.name or IMPORTED_SEED, prefill.variety)
        if not key or not vendor:
            return None

        rows = await self._query("identity cache", self._store.find_by_identity_key, key, self._identity_limit)
        best = select_best_row(rows or [], vendor)
        if best is None:
            return None

        hero = (best.original_hero_url or "").strip() or _text(best.extract_data, "hero_image_url") or ""
        if not has_absolute_scheme(hero):
            hero = ""
        if hero and not await self._image_is_live(hero):
            logger.info("Dropping dead cached hero image for %s", short_url(url))
            hero = ""
        logger.info("Identity+vendor cache hit (%s) for %s", key, short_url(url))
        return record_from_row(best, url, hero or None, vendor_fallback=vendor, keep_row_source=False)

    async def _image_is_live(self, image_url: str) -> bool:
        try:
            return await asyncio.wait_for(
                self._fetcher.head_ok(image_url, self._image_check_timeout),
                timeout=self._image_check_timeout,
            )
        except asyncio.TimeoutError:
            return False

    async def _query(self, label: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except Exception as exc:
            logger.warning("%s check failed, proceeding: %s", label.capitalize(), exc)
            return None
