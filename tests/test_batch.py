import asyncio

import pytest

from seedscout.batch import BatchRunner
from seedscout.errors import LinkDeadError, RateLimitedError
from seedscout.utils import ExtractedRecord


class FakeController:
    """Pops one scripted outcome per call for each URL; records concurrency."""

    def __init__(self, script=None, hang=False):
        self.script = {url: list(outcomes) for url, outcomes in (script or {}).items()}
        self.calls = []
        self.active = 0
        self.max_active = 0
        self.hang = hang
        self.started = asyncio.Event()
        self.cancelled = []

    async def run(self, url, credential=None, blocked_tags=()):
        self.calls.append((url, credential, tuple(blocked_tags)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.hang:
                self.started.set()
                try:
                    await asyncio.Event().wait()
                except asyncio.CancelledError:
                    self.cancelled.append(url)
                    raise
            await asyncio.sleep(0)
            outcomes = self.script.get(url)
            outcome = outcomes.pop(0) if outcomes else ExtractedRecord(source_url=url, plant_type="Okra")
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.active -= 1


def _runner(controller, sleeps, **kwargs):
    async def fake_sleep(delay):
        sleeps.append(delay)

    kwargs.setdefault("delay_range", (1.0, 3.0))
    return BatchRunner(controller, sleep=fake_sleep, **kwargs)


async def test_urls_run_in_fixed_groups_with_pauses():
    urls = [f"https://vendor.example/products/p{i}" for i in range(7)]
    controller = FakeController()
    sleeps = []

    outcomes = await _runner(controller, sleeps, group_size=3).run(urls, credential="tok", blocked_tags=["F1"])

    assert [o.url for o in outcomes] == urls
    assert all(o.ok for o in outcomes)
    assert controller.max_active == 3
    assert len(sleeps) == 2
    assert all(1.0 <= delay <= 3.0 for delay in sleeps)
    assert controller.calls[0][1:] == ("tok", ("F1",))


async def test_rate_limited_url_is_retried_once():
    url = "https://vendor.example/products/okra"
    controller = FakeController({url: [RateLimitedError(url, 429)]})
    sleeps = []

    [outcome] = await _runner(controller, sleeps, rate_limit_backoff=30).run([url])

    assert outcome.ok
    assert outcome.attempts == 2
    assert sleeps == [30]


async def test_second_rate_limit_gives_up():
    url = "https://vendor.example/products/okra"
    controller = FakeController({url: [RateLimitedError(url, 429), RateLimitedError(url, 429)]})
    sleeps = []

    [outcome] = await _runner(controller, sleeps, rate_limit_backoff=30).run([url])

    assert outcome.error == "rate_limited"
    assert outcome.status_code == 429
    assert outcome.attempts == 2
    assert len(controller.calls) == 2
    assert sleeps == [30]


async def test_failures_do_not_stop_the_batch():
    dead = "https://vendor.example/products/gone"
    broken = "https://vendor.example/products/broken"
    fine = "https://vendor.example/products/fine"
    controller = FakeController({dead: [LinkDeadError(dead)], broken: [ValueError("boom")]})

    outcomes = await _runner(controller, []).run([dead, broken, fine])

    assert [o.error for o in outcomes] == ["link_dead", "unexpected", None]
    assert outcomes[0].attempts == 1
    assert outcomes[0].as_dict()["status_code"] == 404
    assert outcomes[2].as_dict()["record"]["plant_type"] == "Okra"


async def test_cancelling_the_batch_cancels_in_flight_urls():
    urls = ["https://vendor.example/products/a", "https://vendor.example/products/b"]
    controller = FakeController(hang=True)
    task = asyncio.create_task(_runner(controller, []).run(urls))

    await asyncio.wait_for(controller.started.wait(), timeout=1)
    while len(controller.calls) < len(urls):
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert sorted(controller.cancelled) == urls
