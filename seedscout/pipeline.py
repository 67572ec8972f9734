from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .cache import CacheResolver
from .errors import ExtractionFailed, GenericNameDetected, LinkDeadError, RateLimitedError, RescueFailedError
from .extractor import CanonicalExtractor, LiveResult
from .hero import HeroPhotoResolver
from .identity import identity_key
from .normalize import NormalizeContext, normalize_record
from .profiles import DEFAULT_PROFILES, VendorProfiles
from .rescue import RescueExtractor
from .utils import ExtractedRecord, Quality, dump_debug_payload, short_url

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    CACHE_LOOKUP = "cache_lookup"
    LIVE_EXTRACT = "live_extract"
    LINK_DEAD = "link_dead"
    RATE_LIMITED = "rate_limited"
    RESCUE = "rescue"
    HERO_SEARCH = "hero_search"
    DONE = "done"


@dataclass
class PipelineRun:
    """Per-invocation bookkeeping; nothing here outlives a single run()."""

    url: str
    user_id: Optional[str] = None
    blocked_tags: frozenset = frozenset()
    states: List[PipelineState] = field(default_factory=list)
    notes: Dict[str, Any] = field(default_factory=dict)

    def enter(self, state: PipelineState) -> None:
        self.states.append(state)
        logger.debug("%s -> %s", short_url(self.url), state.value)


def _strip_bearer(credential: Optional[str]) -> Optional[str]:
    if not credential:
        return None
    token = credential.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token or None


class PipelineController:
    """Cache lookup, live extraction, rescue and hero search for one URL at a time."""

    def __init__(
        self,
        cache: CacheResolver,
        extractor: CanonicalExtractor,
        rescue: RescueExtractor,
        hero: HeroPhotoResolver,
        store=None,
        profiles: VendorProfiles = DEFAULT_PROFILES,
        debug_dir: Optional[str] = None,
    ) -> None:
        self._cache = cache
        self._extractor = extractor
        self._rescue = rescue
        self._hero = hero
        self._store = store
        self._profiles = profiles
        self._debug_dir = debug_dir

    async def run(
        self,
        url: str,
        credential: Optional[str] = None,
        blocked_tags: Iterable[str] = (),
    ) -> ExtractedRecord:
        """Return the final record for url.

        Raises LinkDeadError, RateLimitedError or RescueFailedError; every other
        problem degrades to a record with its failed/advisory flags set.
        """
        url = url.strip()
        run = PipelineRun(url=url)
        run.user_id = await self._resolve_user(_strip_bearer(credential))
        run.blocked_tags = frozenset(list(blocked_tags) + await self._load_blocked_tags(run.user_id))
        try:
            record = await self._run(run)
            run.notes["record"] = record.as_dict()
            return record
        except Exception as exc:
            run.notes["error"] = repr(exc)
            raise
        finally:
            self._dump(run)

    async def _run(self, run: PipelineRun) -> ExtractedRecord:
        run.enter(PipelineState.CACHE_LOOKUP)
        cached = await self._cache.resolve(run.url, run.user_id)
        if cached is not None:
            run.notes["cache"] = "hit"
            run.enter(PipelineState.DONE)
            return cached

        run.enter(PipelineState.LIVE_EXTRACT)
        live = await self._extractor.extract(run.url)
        run.notes["page_status"] = live.page.status
        run.notes["ai_found"] = live.ai_found
        if live.page.link_dead:
            run.enter(PipelineState.LINK_DEAD)
            raise LinkDeadError(run.url, live.page.status)
        if live.page.rate_limited:
            run.enter(PipelineState.RATE_LIMITED)
            raise RateLimitedError(run.url, live.page.status)

        ctx = NormalizeContext(
            url=run.url,
            page_title=live.page.title,
            blocked_tags=run.blocked_tags,
            profiles=self._profiles,
        )
        try:
            if live.record.failed:
                raise ExtractionFailed(
                    "live extraction produced no usable record",
                    url=run.url,
                    status_code=live.page.status,
                    partial=live.record,
                )
            record = normalize_record(live.record, ctx)
        except (ExtractionFailed, GenericNameDetected) as signal:
            logger.info("Routing %s to rescue: %s", short_url(run.url), signal)
            run.notes["rescue_reason"] = str(signal)
            run.enter(PipelineState.RESCUE)
            record = await self._rescue_record(run, live, replace(ctx, page_title=None), signal)

        if record.failed:
            run.enter(PipelineState.DONE)
            return record

        key = identity_key(record.plant_type, record.variety)
        if not record.hero_image_url:
            run.enter(PipelineState.HERO_SEARCH)
            record.hero_image_url = await self._hero.find(record, identity_key=key, user_id=run.user_id)

        run.enter(PipelineState.DONE)
        logger.info(
            "Extracted %s: %s / %s [%s]",
            short_url(run.url),
            record.plant_type,
            record.variety or "-",
            record.quality.value,
        )
        return record

    async def _rescue_record(
        self,
        run: PipelineRun,
        live: LiveResult,
        ctx: NormalizeContext,
        signal: Exception,
    ) -> ExtractedRecord:
        partial: Optional[ExtractedRecord] = getattr(signal, "partial", None)
        if not isinstance(partial, ExtractedRecord):
            partial = live.record
        key = identity_key(partial.plant_type, partial.variety)

        rescued = await self._rescue.rescue(
            run.url,
            status_code=live.page.status,
            identity_key=key,
            user_id=run.user_id,
        )
        if rescued is not None:
            if not rescued.hero_image_url:
                rescued.hero_image_url = live.page.image_url
            if live.ai_found:
                rescued.specs = rescued.specs.fill_missing(partial.specs)
            try:
                return normalize_record(rescued, ctx)
            except GenericNameDetected as still_generic:
                logger.info("Rescue for %s is still generic: %s", short_url(run.url), still_generic)

        if live.ai_found and isinstance(signal, GenericNameDetected):
            logger.info("Returning partial record for manual naming: %s", short_url(run.url))
            partial.failed = True
            partial.trigger_rescue_hint = True
            partial.quality = Quality.FAILED
            return partial

        raise RescueFailedError("rescue produced no usable record", url=run.url, status_code=live.page.status)

    async def _resolve_user(self, token: Optional[str]) -> Optional[str]:
        if not token or self._store is None:
            return None
        try:
            return await asyncio.to_thread(self._store.resolve_user_id, token)
        except Exception as exc:
            logger.warning("Could not resolve user from credential, continuing anonymously: %s", exc)
            return None

    async def _load_blocked_tags(self, user_id: Optional[str]) -> List[str]:
        if not user_id or self._store is None:
            return []
        try:
            return list(await asyncio.to_thread(self._store.fetch_blocked_tags, user_id))
        except Exception as exc:
            logger.warning("Could not load blocked tags, proceeding without them: %s", exc)
            return []

    def _dump(self, run: PipelineRun) -> None:
        if not self._debug_dir:
            return
        payload = {
            "url": run.url,
            "user_id": run.user_id,
            "states": [state.value for state in run.states],
            **run.notes,
        }
        try:
            path = dump_debug_payload(self._debug_dir, f"extract-{abs(hash(run.url))}", payload)
            logger.debug("Wrote debug payload to %s", path)
        except OSError:  # pragma: no cover - best effort debug output
            logger.exception("Failed to write debug payload for %s", short_url(run.url))
