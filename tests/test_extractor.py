import asyncio

from seedscout.extractor import CanonicalExtractor
from seedscout.scraper import PageScraper
from seedscout.utils import IMPORTED_SEED, PageResult, Quality

URL = "https://vendor.example/products/clemson-spineless-okra"
PAGE = '<html><head><meta property="og:image" content="https://img.example/okra.jpg"></head></html>'


def _extractor(fetcher, llm, **kwargs):
    return CanonicalExtractor(PageScraper(fetcher), llm, **kwargs)


async def test_page_image_and_ai_fields_are_merged(fetcher, llm):
    fetcher.add_page(URL, PAGE)
    llm.script("extract", {"plant_type": "Okra", "variety": "Clemson Spineless", "hero_image_url": "https://ai.example/x.jpg"})

    result = await _extractor(fetcher, llm).extract(URL)

    assert result.ai_found
    assert result.record.plant_type == "Okra"
    assert result.record.hero_image_url == "https://img.example/okra.jpg"
    assert result.record.quality is Quality.FULL
    assert result.record.page_status_code == 200
    assert not result.record.failed
    call = llm.calls_of("extract")[0]
    assert call["url"] == URL and call["search_enabled"] is True


async def test_ai_image_used_when_page_has_none(fetcher, llm):
    llm.script("extract", {"plant_type": "Okra", "hero_image_url": "https://ai.example/x.jpg"})

    result = await _extractor(fetcher, llm).extract(URL)

    assert result.record.hero_image_url == "https://ai.example/x.jpg"
    assert result.record.quality is Quality.PARTIAL


async def test_missing_ai_result_falls_back_to_url(fetcher, llm):
    fetcher.add_page(URL, PAGE)
    llm.script("extract", "sorry, I cannot help with that")

    result = await _extractor(fetcher, llm).extract(URL)

    assert not result.ai_found
    assert result.record.failed is True
    assert result.record.quality is Quality.FAILED
    assert result.record.vendor == "Vendor"
    assert result.record.plant_type == IMPORTED_SEED
    assert result.record.variety == "Clemson Spineless Okra"
    assert result.record.hero_image_url == "https://img.example/okra.jpg"


async def test_slow_ai_counts_as_absent(fetcher, llm):
    fetcher.add_page(URL, PAGE)

    async def slow():
        await asyncio.sleep(5)
        return '{"plant_type": "Okra"}'

    llm.script("extract", slow)

    result = await _extractor(fetcher, llm, ai_timeout=0.05).extract(URL)

    assert not result.ai_found
    assert result.record.failed is True
    assert result.page.ok


async def test_slow_page_counts_as_absent(fetcher, llm):
    class SlowScraper:
        async def scrape(self, url):
            await asyncio.sleep(5)
            return PageResult(status=200, image_url="https://img.example/late.jpg")

    llm.script("extract", {"plant_type": "Okra", "variety": "Clemson Spineless"})
    extractor = CanonicalExtractor(SlowScraper(), llm, page_timeout=0.05)

    result = await extractor.extract(URL)

    assert result.page.status == 0
    assert result.record.hero_image_url is None
    assert result.record.quality is Quality.PARTIAL


async def test_overall_budget_cancels_both_branches(llm):
    cancelled = []

    class HangingScraper:
        async def scrape(self, url):
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.append("page")
                raise

    async def hang():
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.append("ai")
            raise

    llm.script("extract", hang)
    extractor = CanonicalExtractor(HangingScraper(), llm, page_timeout=10, ai_timeout=10, budget=0.05)

    result = await extractor.extract(URL)

    assert result.record.failed is True
    assert sorted(cancelled) == ["ai", "page"]
