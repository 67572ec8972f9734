import json

import pytest

from seedscout.cache import CacheResolver
from seedscout.errors import LinkDeadError, RateLimitedError, RescueFailedError
from seedscout.extractor import CanonicalExtractor
from seedscout.hero import HeroPhotoResolver
from seedscout.pipeline import PipelineController
from seedscout.rescue import RescueExtractor
from seedscout.scraper import PageScraper
from seedscout.utils import Quality

OKRA_URL = "https://vendor.example/products/clemson-spineless-okra"
OKRA_PAGE = (
    "<html><head><title>Clemson Spineless Okra</title>"
    '<script type="application/ld+json">{"@type": "Product", "image": "https://img.example/okra.jpg"}</script>'
    "</head><body></body></html>"
)


def _controller(store, fetcher, llm, audit, debug_dir=None):
    return PipelineController(
        cache=CacheResolver(store, fetcher),
        extractor=CanonicalExtractor(PageScraper(fetcher), llm, page_timeout=1, ai_timeout=1, budget=2),
        rescue=RescueExtractor(llm, audit, timeout=1),
        hero=HeroPhotoResolver(llm, audit, rung_timeout=1),
        store=store,
        debug_dir=debug_dir,
    )


async def test_okra_end_to_end(store, fetcher, llm, audit):
    fetcher.add_page(OKRA_URL, OKRA_PAGE)
    llm.script("extract", {"plant_type": "Okra", "variety": "Clemson Spineless Okra 2024", "vendor": "", "tags": []})

    record = await _controller(store, fetcher, llm, audit).run(OKRA_URL)

    assert record.vendor == "Vendor"
    assert record.plant_type == "Okra"
    assert record.variety == "Clemson Spineless"
    assert record.hero_image_url == "https://img.example/okra.jpg"
    assert record.failed is False
    assert record.quality is Quality.FULL
    assert llm.calls_of("hero") == []
    assert llm.calls_of("rescue") == []


async def test_cache_hit_skips_live_work(store, fetcher, llm, audit, make_row):
    store.global_rows[OKRA_URL] = make_row(source_url=OKRA_URL, extract_data={"type": "Okra", "variety": "Clemson Spineless"})

    record = await _controller(store, fetcher, llm, audit).run(OKRA_URL)

    assert record.cached is True
    assert record.variety == "Clemson Spineless"
    assert fetcher.requests == []
    assert llm.calls == []


async def test_dead_link_is_terminal(store, fetcher, llm, audit):
    fetcher.add_page(OKRA_URL, status=404)

    with pytest.raises(LinkDeadError) as excinfo:
        await _controller(store, fetcher, llm, audit).run(OKRA_URL)

    assert excinfo.value.status_code == 404
    assert llm.calls_of("rescue") == []
    assert llm.calls_of("hero") == []


@pytest.mark.parametrize("status", [403, 429])
async def test_rate_limit_is_terminal(store, fetcher, llm, audit, status):
    fetcher.add_page(OKRA_URL, status=status)

    with pytest.raises(RateLimitedError) as excinfo:
        await _controller(store, fetcher, llm, audit).run(OKRA_URL)

    assert excinfo.value.status_code == status
    assert excinfo.value.retryable
    assert llm.calls_of("rescue") == []


async def test_failed_extraction_goes_through_rescue_and_hero(store, fetcher, llm, audit):
    url = "https://vendor.example/products/okra-red-burgundy"
    llm.script("rescue", {"plant_type": "Okra", "variety": "Red Burgundy Okra"})
    llm.script("hero", {"hero_image_url": "https://img.example/burgundy.jpg"})

    record = await _controller(store, fetcher, llm, audit).run(url)

    assert record.failed is False
    assert record.variety == "Red Burgundy"
    assert record.quality is Quality.AI_ONLY
    assert record.hero_image_url == "https://img.example/burgundy.jpg"
    assert [e.stage for e in audit.entries] == ["rescue", "hero"]


async def test_failed_rescue_is_terminal(store, fetcher, llm, audit):
    with pytest.raises(RescueFailedError):
        await _controller(store, fetcher, llm, audit).run("https://vendor.example/products/okra-red-burgundy")


async def test_generic_name_is_rescued(store, fetcher, llm, audit):
    url = "https://vendor.example/products/sungold"
    fetcher.add_page(url, '<html><head><meta property="og:image" content="https://img.example/sungold.jpg"></head></html>')
    llm.script("extract", {"plant_type": "Tomato", "variety": "Vegetables", "days_to_maturity": "65"})
    llm.script("rescue", {"plant_type": "Tomato", "variety": "Sungold"})

    record = await _controller(store, fetcher, llm, audit).run(url)

    assert record.failed is False
    assert record.variety == "Sungold"
    assert record.specs.days_to_maturity == "65"
    assert record.hero_image_url == "https://img.example/sungold.jpg"


async def test_generic_name_without_rescue_returns_flagged_partial(store, fetcher, llm, audit):
    url = "https://vendor.example/vegetables"
    llm.script("extract", {"plant_type": "Tomato", "variety": "Vegetables"})
    llm.script("rescue", {"plant_type": "Tomato", "variety": "Vegetables"})

    record = await _controller(store, fetcher, llm, audit).run(url)

    assert record.failed is True
    assert record.trigger_rescue_hint is True
    assert record.quality is Quality.FAILED
    assert record.plant_type == "Tomato"
    assert llm.calls_of("hero") == []


async def test_user_credential_loads_blocked_tags_and_user_cache(store, fetcher, llm, audit):
    store.users["tok"] = "u1"
    store.blocked["u1"] = ["organic"]
    fetcher.add_page(OKRA_URL, OKRA_PAGE)
    llm.script("extract", {"plant_type": "Okra", "variety": "Clemson Spineless", "tags": ["Organic", "Heirloom"]})

    record = await _controller(store, fetcher, llm, audit).run(OKRA_URL, credential="Bearer tok", blocked_tags=["F1"])

    assert record.tags == ["Heirloom"]
    assert ("source_url", OKRA_URL, "u1") in store.calls


async def test_debug_payload_written(store, fetcher, llm, audit, tmp_path):
    fetcher.add_page(OKRA_URL, status=404)

    with pytest.raises(LinkDeadError):
        await _controller(store, fetcher, llm, audit, debug_dir=str(tmp_path)).run(OKRA_URL)

    [dump] = list(tmp_path.glob("extract-*.json"))
    payload = json.loads(dump.read_text())
    assert payload["states"] == ["cache_lookup", "live_extract", "link_dead"]
    assert "LinkDeadError" in payload["error"]
