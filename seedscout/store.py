from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from .utils import AuditEntry, Settings, has_absolute_scheme, short_url

logger = logging.getLogger(__name__)

GLOBAL_CACHE_TABLE = "global_plant_cache"
USER_CACHE_TABLE = "plant_extract_cache"
BLOCKED_TAGS_TABLE = "blocked_tags"
IMPORT_LOG_TABLE = "seed_import_logs"
HERO_BUCKET = "journal-photos"

_CACHE_COLUMNS = (
    "source_url, identity_key, vendor, extract_data, hero_storage_path, "
    "original_hero_url, scrape_quality, updated_at"
)
_USER_CACHE_COLUMNS = "source_url, extract_data, hero_storage_path, original_hero_url, updated_at"

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class CacheRow:
    source_url: str
    extract_data: Dict[str, Any] = field(default_factory=dict)
    identity_key: Optional[str] = None
    vendor: Optional[str] = None
    quality: Optional[str] = None
    updated_at: Optional[datetime] = None
    hero_storage_path: Optional[str] = None
    original_hero_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CacheRow":
        extract_data = row.get("extract_data")
        return cls(
            source_url=row.get("source_url") or "",
            extract_data=extract_data if isinstance(extract_data, dict) else {},
            identity_key=row.get("identity_key"),
            vendor=row.get("vendor"),
            quality=row.get("scrape_quality") or row.get("quality"),
            updated_at=_parse_timestamp(row.get("updated_at")),
            hero_storage_path=row.get("hero_storage_path"),
            original_hero_url=row.get("original_hero_url"),
        )

    @property
    def sort_timestamp(self) -> datetime:
        return self.updated_at or _EPOCH


class SupabaseStore:
    """Read side of the plant cache plus the per-user tables the pipeline consults.

    All methods are blocking; async callers go through asyncio.to_thread.
    """

    def __init__(self, client: Client) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["SupabaseStore"]:
        if not settings.store_enabled:
            logger.info("Supabase is not configured; cache tiers are disabled")
            return None
        return cls(create_client(settings.supabase_url, settings.supabase_key))

    def find_by_source_url(self, url: str, scope: Optional[str] = None) -> Optional[CacheRow]:
        """scope None reads the shared cache; a user id reads that user's cache."""
        if scope is None:
            query = self._client.table(GLOBAL_CACHE_TABLE).select(_CACHE_COLUMNS).eq("source_url", url)
        else:
            query = (
                self._client.table(USER_CACHE_TABLE)
                .select(_USER_CACHE_COLUMNS)
                .eq("user_id", scope)
                .eq("source_url", url)
            )
        result = query.limit(1).execute()
        rows = result.data or []
        return CacheRow.from_row(rows[0]) if rows else None

    def find_by_identity_key(self, key: str, limit: int = 10) -> List[CacheRow]:
        result = (
            self._client.table(GLOBAL_CACHE_TABLE)
            .select(_CACHE_COLUMNS)
            .eq("identity_key", key)
            .limit(limit)
            .execute()
        )
        return [CacheRow.from_row(row) for row in (result.data or [])]

    def resolve_user_id(self, credential: str) -> Optional[str]:
        response = self._client.auth.get_user(credential)
        user = getattr(response, "user", None)
        return getattr(user, "id", None) if user else None

    def fetch_blocked_tags(self, user_id: str) -> List[str]:
        result = self._client.table(BLOCKED_TAGS_TABLE).select("tag_name").eq("user_id", user_id).execute()
        return [row["tag_name"] for row in (result.data or []) if isinstance(row.get("tag_name"), str)]

    def public_image_url(self, storage_path: str) -> Optional[str]:
        public = self._client.storage.from_(HERO_BUCKET).get_public_url(storage_path)
        if isinstance(public, dict):
            public = public.get("publicUrl") or public.get("publicURL")
        return public if has_absolute_scheme(public) else None

    def insert_import_log(self, row: Dict[str, Any]) -> None:
        self._client.table(IMPORT_LOG_TABLE).insert(row).execute()


def _describe(entry: AuditEntry) -> str:
    parts = [f"stage={entry.stage}", f"pass={entry.pass_number}", f"success={str(entry.success).lower()}"]
    if entry.query_used:
        parts.append(f"query={entry.query_used!r}")
    if entry.error_message:
        parts.append(entry.error_message)
    return " ".join(parts)


class LoggingAuditSink:
    async def record(self, entry: AuditEntry) -> None:
        logger.info(
            "Audit %s pass %d %s for %s%s",
            entry.stage,
            entry.pass_number,
            "ok" if entry.success else "failed",
            short_url(entry.url),
            f" (query: {entry.query_used})" if entry.query_used else "",
        )


class SupabaseAuditSink:
    """Writes one seed_import_logs row per attempt; write failures are logged and dropped."""

    def __init__(self, store: SupabaseStore, user_id: Optional[str] = None) -> None:
        self._store = store
        self._user_id = user_id
        self._fallback = LoggingAuditSink()

    async def record(self, entry: AuditEntry) -> None:
        await self._fallback.record(entry)
        user_id = entry.user_id or self._user_id
        if not user_id:
            return
        row = {
            "user_id": user_id,
            "url": entry.url,
            "vendor_name": entry.vendor or None,
            "status_code": entry.status_code,
            "identity_key_generated": entry.identity_key,
            "error_message": _describe(entry),
            "hero_image_url": entry.result_image_url if has_absolute_scheme(entry.result_image_url) else None,
        }
        try:
            await asyncio.to_thread(self._store.insert_import_log, row)
        except Exception:  # pragma: no cover - best effort audit path
            logger.exception("Failed to write import log for %s", short_url(entry.url))
