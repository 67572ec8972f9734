from __future__ import annotations

import json
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from seedscout.llm import HERO_SEARCH_PROMPT, LINK_EXTRACT_PROMPT, RESCUE_PROMPT
from seedscout.scraper import FetchResponse
from seedscout.store import CacheRow
from seedscout.utils import AuditEntry, ExtractedRecord, GrowingSpecs, Quality


class FakeStore:
    """In-memory stand-in for SupabaseStore; methods are sync like the real client."""

    def __init__(self) -> None:
        self.global_rows: Dict[str, CacheRow] = {}
        self.user_rows: Dict[Tuple[str, str], CacheRow] = {}
        self.identity_rows: Dict[str, List[CacheRow]] = {}
        self.users: Dict[str, str] = {}
        self.blocked: Dict[str, List[str]] = {}
        self.calls: List[tuple] = []
        self.fail_global = False

    def find_by_source_url(self, url: str, scope: Optional[str] = None) -> Optional[CacheRow]:
        self.calls.append(("source_url", url, scope))
        if scope is None:
            if self.fail_global:
                raise RuntimeError("store unavailable")
            return self.global_rows.get(url)
        return self.user_rows.get((scope, url))

    def find_by_identity_key(self, key: str, limit: int = 10) -> List[CacheRow]:
        self.calls.append(("identity_key", key, limit))
        return list(self.identity_rows.get(key, []))[:limit]

    def resolve_user_id(self, credential: str) -> Optional[str]:
        return self.users.get(credential)

    def fetch_blocked_tags(self, user_id: str) -> List[str]:
        return list(self.blocked.get(user_id, []))

    def public_image_url(self, storage_path: str) -> Optional[str]:
        return f"https://cdn.example/{storage_path}"


class FakeFetcher:
    def __init__(self) -> None:
        self.pages: Dict[str, FetchResponse] = {}
        self.live_images: Dict[str, bool] = {}
        self.requests: List[Tuple[str, Dict[str, str]]] = []
        self.head_requests: List[str] = []

    def add_page(self, url: str, body: str = "", status: int = 200) -> None:
        self.pages[url] = FetchResponse(status=status, body=body)

    async def fetch(self, url: str, headers: Dict[str, str], timeout: float) -> FetchResponse:
        self.requests.append((url, headers))
        return self.pages.get(url, FetchResponse(status=0))

    async def head_ok(self, url: str, timeout: float) -> bool:
        self.head_requests.append(url)
        return self.live_images.get(url, False)

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None


class ScriptedLLM:
    """Answers by prompt kind; each kind has a queue of replies (str, dict or exception)."""

    def __init__(self) -> None:
        self.replies: Dict[str, list] = {"extract": [], "rescue": [], "hero": []}
        self.calls: List[Dict[str, object]] = []
        self.enabled = True

    @staticmethod
    def kind_of(prompt: str) -> str:
        if prompt.startswith(LINK_EXTRACT_PROMPT):
            return "extract"
        if prompt.startswith(RESCUE_PROMPT):
            return "rescue"
        if prompt.startswith(HERO_SEARCH_PROMPT):
            return "hero"
        return "other"

    def script(self, kind: str, *replies) -> None:
        self.replies[kind].extend(replies)

    def calls_of(self, kind: str) -> List[Dict[str, object]]:
        return [call for call in self.calls if call["kind"] == kind]

    async def generate(self, prompt: str, url: Optional[str] = None, search_enabled: bool = False) -> str:
        kind = self.kind_of(prompt)
        self.calls.append({"kind": kind, "prompt": prompt, "url": url, "search_enabled": search_enabled})
        queue = self.replies.get(kind) or []
        if not queue:
            return ""
        reply = queue.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = await reply()
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None


class RecordingAuditSink:
    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def make_record() -> Callable[..., ExtractedRecord]:
    def _make(**overrides) -> ExtractedRecord:
        values = {
            "source_url": "https://vendor.example/products/roma",
            "vendor": "Vendor",
            "plant_type": "Tomato",
            "variety": "Roma",
            "specs": GrowingSpecs(days_to_maturity="75", harvest_days=75),
            "quality": Quality.FULL,
        }
        values.update(overrides)
        return ExtractedRecord(**values)

    return _make


@pytest.fixture
def make_row() -> Callable[..., CacheRow]:
    def _make(**overrides) -> CacheRow:
        data = {
            "source_url": "https://vendor.example/products/roma",
            "extract_data": {"type": "Tomato", "variety": "Roma", "vendor": "Vendor", "days_to_maturity": "75"},
            "identity_key": "tomato_roma",
            "vendor": "Vendor",
            "scrape_quality": "full",
            "updated_at": "2024-05-01T00:00:00Z",
        }
        data.update(overrides)
        return CacheRow.from_row(data)

    return _make
