from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ExtractionError, RateLimitedError
from .pipeline import PipelineController
from .utils import ExtractedRecord, short_url

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    url: str
    record: Optional[ExtractedRecord] = None
    error: Optional[str] = None
    message: Optional[str] = None
    status_code: int = 0
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.record is not None

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"url": self.url, "attempts": self.attempts}
        if self.record is not None:
            data["record"] = self.record.as_dict()
        else:
            data["error"] = self.error
            data["message"] = self.message
            data["status_code"] = self.status_code
        return data


class BatchRunner:
    """Runs many URLs through the controller in small groups with a pause between groups."""

    def __init__(
        self,
        controller: PipelineController,
        group_size: int = 3,
        delay_range: Tuple[float, float] = (1.0, 3.0),
        rate_limit_backoff: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._controller = controller
        self._group_size = max(1, group_size)
        self._delay_range = delay_range
        self._rate_limit_backoff = rate_limit_backoff
        self._sleep = sleep

    async def run(
        self,
        urls: Sequence[str],
        credential: Optional[str] = None,
        blocked_tags: Iterable[str] = (),
    ) -> List[BatchOutcome]:
        blocked = tuple(blocked_tags)
        outcomes: List[BatchOutcome] = []
        groups = [urls[i:i + self._group_size] for i in range(0, len(urls), self._group_size)]
        for index, group in enumerate(groups):
            if index:
                delay = random.uniform(*self._delay_range)
                logger.debug("Waiting %.1fs before next group", delay)
                await self._sleep(delay)
            results = await asyncio.gather(*(self._run_one(url, credential, blocked) for url in group))
            outcomes.extend(results)
        logger.info(
            "Batch finished: %d ok, %d failed",
            sum(1 for o in outcomes if o.ok),
            sum(1 for o in outcomes if not o.ok),
        )
        return outcomes

    async def _run_one(self, url: str, credential: Optional[str], blocked: Tuple[str, ...]) -> BatchOutcome:
        attempts = 0
        while True:
            attempts += 1
            try:
                record = await self._controller.run(url, credential=credential, blocked_tags=blocked)
                return BatchOutcome(url=url, record=record, attempts=attempts)
            except RateLimitedError as exc:
                if attempts > 1:
                    logger.warning("Still rate limited after retry: %s", short_url(url))
                    return self._failure(url, exc, attempts)
                logger.info("Rate limited on %s, retrying in %.0fs", short_url(url), self._rate_limit_backoff)
                await self._sleep(self._rate_limit_backoff)
            except ExtractionError as exc:
                logger.warning("Extraction failed for %s: %s", short_url(url), exc)
                return self._failure(url, exc, attempts)
            except Exception as exc:
                logger.exception("Unexpected error while extracting %s", short_url(url))
                return BatchOutcome(url=url, error="unexpected", message=str(exc), attempts=attempts)

    @staticmethod
    def _failure(url: str, exc: ExtractionError, attempts: int) -> BatchOutcome:
        return BatchOutcome(
            url=url,
            error=exc.code,
            message=str(exc),
            status_code=exc.status_code,
            attempts=attempts,
        )
