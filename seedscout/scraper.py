from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import aiohttp
from bs4 import BeautifulSoup

from .normalize import title_from_soup
from .profiles import DEFAULT_PROFILES, VendorProfiles
from .urls import hostname
from .utils import PageResult, has_absolute_scheme, short_url

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
]

_MAX_JSON_LD_BLOCKS = 15
_REJECTED_IMAGE = re.compile(r"\.(?:svg|gif|ico)(?:\?|$)", re.IGNORECASE)
_PRODUCT_IMAGE_HINT = re.compile(r"product|main|primary", re.IGNORECASE)


def pick_user_agent(url: str) -> str:
    """Same hostname always gets the same user agent."""
    host = hostname(url)
    if not host:
        return USER_AGENTS[0]
    value = 0
    for char in host:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return USER_AGENTS[abs(value) % len(USER_AGENTS)]


def resolve_image_url(raw: Optional[str], base_url: str) -> str:
    text = (raw or "").strip()
    if not text or has_absolute_scheme(text):
        return text
    try:
        return urljoin(base_url, text)
    except ValueError:
        return text


def browser_headers(url: str) -> Dict[str, str]:
    return {
        "User-Agent": pick_user_agent(url),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }


@dataclass
class FetchResponse:
    status: int
    body: str = ""


class HttpFetcher:
    """aiohttp-backed fetch capability; network failures surface as status 0."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def fetch(self, url: str, headers: Dict[str, str], timeout: float) -> FetchResponse:
        await self.start()
        try:
            async with self._session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as response:
                body = ""
                if 200 <= response.status < 300:
                    body = await response.text(errors="replace")
                return FetchResponse(status=response.status, body=body)
        except asyncio.TimeoutError:
            logger.warning("Fetch timed out after %.1fs: %s", timeout, short_url(url))
            return FetchResponse(status=0)
        except aiohttp.ClientError as exc:
            logger.warning("Fetch failed for %s: %s", short_url(url), exc)
            return FetchResponse(status=0)

    async def head_ok(self, url: str, timeout: float) -> bool:
        if not has_absolute_scheme(url):
            return False
        await self.start()
        try:
            async with self._session.head(
                url,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as response:
                return 200 <= response.status < 300
        except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
            logger.debug("HEAD check failed for %s: %s", short_url(url), exc)
            return False


def _image_source(img, attrs: Tuple[str, ...]) -> Optional[str]:
    for attr in attrs:
        value = img.get(attr)
        if isinstance(value, str) and value.strip():
            # srcset: "a.jpg 1x, b.jpg 2x"
            return re.split(r"[\s,]", value.strip())[0]
    return None


def _class_and_id(tag) -> str:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    return " ".join(classes) + " " + (tag.get("id") or "")


def _json_ld_images(data: Any) -> List[Any]:
    nodes = data if isinstance(data, list) else [data]
    candidates: List[Any] = []
    for node in nodes:
        if not isinstance(node, dict):
            continue
        candidates.append(node.get("image"))
        graph = node.get("@graph")
        if isinstance(graph, list):
            candidates.extend(item.get("image") for item in graph if isinstance(item, dict))
    return candidates


def _first_image_value(value: Any) -> Optional[str]:
    if isinstance(value, list) and value:
        value = value[0]
    if isinstance(value, dict):
        value = value.get("url") or value.get("contentUrl")
    return value if isinstance(value, str) else None


class PageScraper:
    """Direct product page fetch: HTTP status classification, hero image and title."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        profiles: VendorProfiles = DEFAULT_PROFILES,
        timeout: float = 8.0,
    ) -> None:
        self._fetcher = fetcher
        self._profiles = profiles
        self._timeout = timeout
        self._strategies: Tuple[Tuple[str, Callable[[BeautifulSoup, str], Optional[str]]], ...] = (
            ("og:image", self._from_og_image),
            ("vendor selectors", self._from_vendor_selectors),
            ("main image", self._from_main_image),
            ("product image", self._from_product_image),
            ("json-ld", self._from_json_ld),
        )

    async def scrape(self, url: str) -> PageResult:
        response = await self._fetcher.fetch(url, browser_headers(url), self._timeout)
        status = response.status
        if status == 404:
            logger.info("Link not found (404): %s", short_url(url))
            return PageResult(status=404)
        if status in (403, 429):
            logger.info("Rate limited (%s): %s", status, short_url(url))
            return PageResult(status=status)
        if not 200 <= status < 300:
            logger.info("Product page fetch not OK (%s): %s", status, short_url(url))
            return PageResult(status=status)

        soup = BeautifulSoup(response.body or "", "html.parser")
        title = title_from_soup(soup)
        image_url = self.extract_image(soup, url)
        if not image_url:
            logger.info("No product image in page: %s", short_url(url))
            logger.debug("First 500 chars of page: %s", (response.body or "")[:500])
        return PageResult(status=status, image_url=image_url, title=title)

    def extract_image(self, soup: BeautifulSoup, url: str) -> Optional[str]:
        for name, strategy in self._strategies:
            image_url = strategy(soup, url)
            if image_url:
                logger.debug("Found product image via %s: %s", name, image_url[:100])
                return image_url
        return None

    def _accept(self, raw: Optional[str], url: str, reject_icons: bool = False) -> Optional[str]:
        resolved = resolve_image_url(raw, url)
        if not has_absolute_scheme(resolved):
            return None
        if reject_icons and _REJECTED_IMAGE.search(resolved):
            return None
        return resolved

    def _from_og_image(self, soup: BeautifulSoup, url: str) -> Optional[str]:
        for attrs in ({"property": "og:image"}, {"name": "og:image"}):
            meta = soup.find("meta", attrs=attrs)
            if meta and meta.get("content"):
                accepted = self._accept(meta["content"], url)
                if accepted:
                    return accepted
        return None

    def _from_vendor_selectors(self, soup: BeautifulSoup, url: str) -> Optional[str]:
        for selector in self._profiles.selectors_for_host(hostname(url)):
            for img in soup.select(selector):
                if img.name != "img":
                    continue
                accepted = self._accept(_image_source(img, ("data-src", "data-srcset", "src")), url, reject_icons=True)
                if accepted:
                    return accepted
        return None

    def _from_main_image(self, soup: BeautifulSoup, url: str) -> Optional[str]:
        for img in soup.find_all("img", attrs={"data-main-image": True}):
            accepted = self._accept(_image_source(img, ("data-src", "src")), url)
            if accepted:
                return accepted
        return None

    def _from_product_image(self, soup: BeautifulSoup, url: str) -> Optional[str]:
        for img in soup.find_all("img"):
            if not _PRODUCT_IMAGE_HINT.search(_class_and_id(img)):
                continue
            accepted = self._accept(_image_source(img, ("data-src", "data-lazy", "src")), url)
            if accepted:
                return accepted
        return None

    def _from_json_ld(self, soup: BeautifulSoup, url: str) -> Optional[str]:
        scripts = soup.find_all("script", attrs={"type": "application/ld+json"}, limit=_MAX_JSON_LD_BLOCKS)
        for script in scripts:
            try:
                data = json.loads(script.string or script.get_text() or "")
            except json.JSONDecodeError:
                continue
            for candidate in _json_ld_images(data):
                value = _first_image_value(candidate)
                if value and has_absolute_scheme(value):
                    return value.strip()
        return None
