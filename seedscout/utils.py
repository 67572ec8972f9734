from __future__ import annotations

import json
import logging
import os
import pathlib
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

load_dotenv()

IMPORTED_SEED = "Imported seed"


class Settings(BaseModel):
    openai_api_key: Optional[str] = None
    openai_model: Optional[str] = "gpt-4o-mini"
    openai_web_model: Optional[str] = "gpt-4o-mini-search-preview"
    enable_openai_web: bool = True
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    page_fetch_timeout: float = 8.0
    ai_timeout: float = 20.0
    metadata_budget: float = 25.0
    image_check_timeout: float = 5.0
    hero_rung_timeout: float = 20.0
    batch_group_size: int = 3
    batch_delay_min: float = 1.0
    batch_delay_max: float = 3.0
    rate_limit_backoff: float = 30.0
    vendor_profiles_path: str = "vendor-profiles.json"
    debug_extract: bool = False
    debug_dir: str = "debug-artifacts"

    model_config = {
        "extra": "ignore"
    }

    @property
    def store_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def load_settings() -> Settings:
    raw: Dict[str, Any] = {
        "openai_api_key": os.getenv("OPENAI_API_KEY"),
        "openai_model": os.getenv("OPENAI_MODEL") or "gpt-4o-mini",
        "openai_web_model": os.getenv("OPENAI_WEB_MODEL") or "gpt-4o-mini-search-preview",
        "enable_openai_web": _parse_bool(os.getenv("ENABLE_OPENAI_WEB"), True),
        "supabase_url": os.getenv("SUPABASE_URL"),
        "supabase_key": os.getenv("SUPABASE_SERVICE_KEY"),
        "page_fetch_timeout": os.getenv("PAGE_FETCH_TIMEOUT") or 8.0,
        "ai_timeout": os.getenv("AI_TIMEOUT") or 20.0,
        "metadata_budget": os.getenv("METADATA_BUDGET") or 25.0,
        "image_check_timeout": os.getenv("IMAGE_CHECK_TIMEOUT") or 5.0,
        "hero_rung_timeout": os.getenv("HERO_RUNG_TIMEOUT") or 20.0,
        "batch_group_size": os.getenv("BATCH_GROUP_SIZE") or 3,
        "batch_delay_min": os.getenv("BATCH_DELAY_MIN") or 1.0,
        "batch_delay_max": os.getenv("BATCH_DELAY_MAX") or 3.0,
        "rate_limit_backoff": os.getenv("RATE_LIMIT_BACKOFF") or 30.0,
        "vendor_profiles_path": os.getenv("VENDOR_PROFILES_PATH") or "vendor-profiles.json",
        "debug_extract": _parse_bool(os.getenv("DEBUG_EXTRACT"), False),
        "debug_dir": os.getenv("DEBUG_DIR") or "debug-artifacts",
    }

    try:
        settings = Settings(**raw)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.batch_group_size < 1:
        raise RuntimeError("Invalid configuration: BATCH_GROUP_SIZE must be at least 1")
    if settings.batch_delay_max < settings.batch_delay_min:
        raise RuntimeError("Invalid configuration: BATCH_DELAY_MAX is below BATCH_DELAY_MIN")

    if settings.debug_extract:
        pathlib.Path(settings.debug_dir).mkdir(parents=True, exist_ok=True)

    return settings


class Quality(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    AI_ONLY = "ai_only"
    FAILED = "failed"


_QUALITY_RANK = {
    Quality.FULL.value: 3,
    Quality.PARTIAL.value: 2,
    Quality.AI_ONLY.value: 1,
    Quality.FAILED.value: 0,
}


def quality_rank(quality: Optional[str]) -> int:
    """Ordinal used to pick among cached rows; unknown labels rank below failed."""
    if isinstance(quality, Quality):
        quality = quality.value
    return _QUALITY_RANK.get((quality or "").strip().lower(), -1)


@dataclass
class GrowingSpecs:
    sowing_depth: Optional[str] = None
    spacing: Optional[str] = None
    sun_requirement: Optional[str] = None
    days_to_germination: Optional[str] = None
    days_to_maturity: Optional[str] = None
    harvest_days: Optional[int] = None
    water: Optional[str] = None
    plant_description: Optional[str] = None

    def fill_missing(self, other: "GrowingSpecs") -> "GrowingSpecs":
        merged = GrowingSpecs(**asdict(self))
        for key, value in asdict(other).items():
            if getattr(merged, key) in (None, "") and value not in (None, ""):
                setattr(merged, key, value)
        return merged


@dataclass
class ExtractedRecord:
    source_url: str
    vendor: str = ""
    plant_type: str = IMPORTED_SEED
    variety: str = ""
    scientific_name: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    specs: GrowingSpecs = field(default_factory=GrowingSpecs)
    hero_image_url: Optional[str] = None
    quality: Quality = Quality.PARTIAL
    failed: bool = False
    trigger_rescue_hint: bool = False
    page_status_code: int = 0
    cached: bool = False

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["quality"] = self.quality.value
        return data


@dataclass
class PageResult:
    """Outcome of the direct product page fetch; status 0 means unknown/network failure."""

    status: int = 0
    image_url: Optional[str] = None
    title: Optional[str] = None

    @property
    def link_dead(self) -> bool:
        return self.status == 404

    @property
    def rate_limited(self) -> bool:
        return self.status in (403, 429)

    @property
    def ok(self) -> bool:
        return self.status == 200


@dataclass
class AuditEntry:
    url: str
    stage: str
    pass_number: int
    success: bool
    vendor: str = ""
    identity_key: Optional[str] = None
    status_code: int = 0
    query_used: Optional[str] = None
    result_image_url: Optional[str] = None
    error_message: Optional[str] = None
    user_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def has_absolute_scheme(value: Optional[str]) -> bool:
    if not value or not isinstance(value, str):
        return False
    return value.strip().lower().startswith(("http://", "https://"))


def short_url(url: str, limit: int = 60) -> str:
    return url if len(url) <= limit else url[:limit] + "..."


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def dump_debug_payload(debug_dir: str, prefix: str, payload: Dict[str, Any]) -> pathlib.Path:
    path = pathlib.Path(debug_dir) / f"{prefix}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    return path
