from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from openai import APIError, APITimeoutError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, ValidationError, field_validator, model_validator
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .normalize import parse_harvest_days
from .utils import IMPORTED_SEED, ExtractedRecord, GrowingSpecs, Quality, has_absolute_scheme

logger = logging.getLogger(__name__)

LINK_EXTRACT_PROMPT = """You are a botanical inventory expert. Search for and read the given URL (a seed or plant product page) and extract information.

VENDOR BLOCKERS: Some seed sites use bot protection and may block live reading. If you cannot read the page content, rely on your knowledge of that seed company and the URL/product context: infer vendor, plant_type and variety from the URL slug, domain and their catalog. Use empty string only when you truly do not know.

When the page is readable, also find a photo of the actual plant, flower or fruit for this variety. Not a logo, not a seed packet.

Return a single JSON object only (no markdown, no explanation) with these exact keys:
- vendor: string (brand or company name, e.g. "Baker Creek", "Burpee")
- plant_type: string (main crop name, e.g. "Tomato", "Sunflower", "Lettuce")
- variety: string (specific variety/cultivar name if shown, else empty string)
- scientific_name: string (Latin name when known, e.g. "Beta vulgaris", else empty string)
- tags: array of strings from the page, e.g. ["Heirloom", "Organic", "Non-GMO", "Open Pollinated", "F1", "Hybrid"]
- sowing_depth: string (e.g. "0.25 inches")
- spacing: string (e.g. "12-18 inches")
- sun_requirement: string (e.g. "Full Sun", "Partial Shade")
- days_to_germination: string (e.g. "7-14")
- days_to_maturity: string (e.g. "65" or "55-70")
- water: string (watering notes, else empty string)
- plant_description: string (one or two sentences, else empty string)
- source_url: the URL you used
- hero_image_url: direct https URL to a photo of the actual plant, flower or fruit, else empty string

Use empty string for any field you cannot find. Return only valid JSON."""

RESCUE_PROMPT = """I have a seed link that blocked scraping. You cannot see the page, so rely on general horticultural knowledge and search. Treat the variety name and vendor below as ground truth; do not replace them with other catalog names.

Return a single JSON object only (no markdown, no explanation) with these exact keys:
- plant_type: string (main crop name, e.g. "Tomato", "Okra", "Lettuce")
- variety: string (use the name given below)
- scientific_name: string (Latin name if known, else empty string)
- vendor: string (use the name given below)
- days_to_maturity: string (e.g. "65" or "55-70")
- sowing_depth: string (e.g. "0.5 inches")
- spacing: string (e.g. "12-18 inches")
- sun_requirement: string (e.g. "Full Sun", "Partial Shade")
- days_to_germination: string (e.g. "7-14")
- tags: array of strings if known (e.g. ["Heirloom", "Open Pollinated"]), or []

Use empty string for any field you cannot find. Return only valid JSON."""

HERO_SEARCH_PROMPT = """Find a high-quality stock image URL of the actual plant, flower, or fruit (not a seed packet) for this variety.

Return a single JSON object only (no markdown, no explanation):
- hero_image_url: a direct URL (https://...) to a photo representing the plant/variety. Use empty string if none found.

Return only valid JSON."""

HERO_QUERY_SUFFIX = "botanical plant -packet -seeds"

_SYSTEM_MESSAGE = "You are a careful horticultural data assistant. Always answer with a single JSON object."

_FIELD_ALIASES = {
    "plant_type": ("type", "plant_name"),
    "spacing": ("plant_spacing",),
    "sun_requirement": ("sun",),
    "hero_image_url": ("stock_photo_url", "image_url"),
}


def build_link_prompt(url: str) -> str:
    return f"{LINK_EXTRACT_PROMPT}\n\nURL to analyze: {url}"


def build_rescue_prompt(variety_hint: str, vendor_hint: str) -> str:
    return (
        f"{RESCUE_PROMPT}\n\n"
        f"Variety name (from URL): {variety_hint or 'unknown'}\n"
        f"Vendor (from domain): {vendor_hint or 'unknown'}"
    )


def build_hero_prompt(query: str) -> str:
    return f"{HERO_SEARCH_PROMPT}\n\nSearch for: {query} {HERO_QUERY_SUFFIX}"


def _balanced_objects(text: str) -> Iterator[str]:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    yield text[start:index + 1]
                    break
        start = text.find("{", start + 1)


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Whole-document JSON first, then the first balanced {...} that parses."""
    if not text or not text.strip():
        return None
    body = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip(), flags=re.IGNORECASE)
    try:
        parsed = json.loads(body)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    for candidate in _balanced_objects(body):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    logger.debug("No JSON object found in AI response: %s", text[:300])
    return None


class AIRecordPayload(BaseModel):
    """The one place raw AI JSON becomes typed fields; every field is optional."""

    vendor: Optional[str] = None
    plant_type: Optional[str] = None
    variety: Optional[str] = None
    scientific_name: Optional[str] = None
    tags: List[str] = []
    sowing_depth: Optional[str] = None
    spacing: Optional[str] = None
    sun_requirement: Optional[str] = None
    days_to_germination: Optional[str] = None
    days_to_maturity: Optional[str] = None
    water: Optional[str] = None
    plant_description: Optional[str] = None
    source_url: Optional[str] = None
    hero_image_url: Optional[str] = None

    model_config = {
        "extra": "ignore"
    }

    @model_validator(mode="before")
    @classmethod
    def _apply_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return {}
        data = dict(data)
        for field_name, aliases in _FIELD_ALIASES.items():
            current = data.get(field_name)
            if isinstance(current, str) and current.strip():
                continue
            for alias in aliases:
                value = data.get(alias)
                if isinstance(value, str) and value.strip():
                    data[field_name] = value
                    break
        return data

    @field_validator(
        "vendor", "plant_type", "variety", "scientific_name", "sowing_depth", "spacing",
        "sun_requirement", "days_to_germination", "days_to_maturity", "water",
        "plant_description", "source_url", "hero_image_url",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        if isinstance(value, str):
            return value.strip() or None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return None

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]

    @property
    def has_identity(self) -> bool:
        return bool(self.plant_type or self.variety or self.vendor)

    def specs(self) -> GrowingSpecs:
        return GrowingSpecs(
            sowing_depth=self.sowing_depth,
            spacing=self.spacing,
            sun_requirement=self.sun_requirement,
            days_to_germination=self.days_to_germination,
            days_to_maturity=self.days_to_maturity,
            harvest_days=parse_harvest_days(self.days_to_maturity),
            water=self.water,
            plant_description=self.plant_description,
        )

    def to_record(self, source_url: str, quality: Quality = Quality.PARTIAL) -> ExtractedRecord:
        hero = self.hero_image_url if has_absolute_scheme(self.hero_image_url) else None
        return ExtractedRecord(
            source_url=source_url,
            vendor=self.vendor or "",
            plant_type=self.plant_type or IMPORTED_SEED,
            variety=self.variety or "",
            scientific_name=self.scientific_name,
            tags=list(self.tags),
            specs=self.specs(),
            hero_image_url=hero,
            quality=quality,
        )


def decode_ai_record(text: Optional[str]) -> Optional[AIRecordPayload]:
    parsed = parse_json_object(text)
    if parsed is None:
        return None
    try:
        return AIRecordPayload.model_validate(parsed)
    except ValidationError as exc:
        logger.warning("AI record did not validate: %s", exc)
        return None


def decode_hero_image_url(text: Optional[str]) -> Optional[str]:
    parsed = parse_json_object(text)
    if not parsed:
        return None
    for key in ("hero_image_url", "image_url", "url", "stock_photo_url"):
        value = parsed.get(key)
        if isinstance(value, str) and has_absolute_scheme(value):
            return value.strip()
    return None


class LLMClient:
    """Thin wrapper around the OpenAI Chat Completions API with retries on transient errors."""

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str],
        web_model: Optional[str] = None,
        enable_web: bool = True,
    ) -> None:
        self._api_key = api_key
        self._model = model or "gpt-4o-mini"
        self._web_model = web_model if enable_web else None
        self._client: Optional[AsyncOpenAI] = None

    @property
    def enabled(self) -> bool:
        return self._api_key is not None

    async def start(self) -> None:
        if not self.enabled:
            return
        self._client = AsyncOpenAI(api_key=self._api_key)

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    async def generate(self, prompt: str, url: Optional[str] = None, search_enabled: bool = False) -> str:
        if not self.enabled:
            logger.debug("LLM is not enabled, skipping")
            return ""
        if self._client is None:
            await self.start()

        content = prompt if not url or url in prompt else f"{prompt}\n\nURL: {url}"
        messages = [
            {"role": "system", "content": _SYSTEM_MESSAGE},
            {"role": "user", "content": content},
        ]
        use_search = bool(search_enabled and self._web_model)
        logger.debug("Sending to LLM: prompt length %d, search: %s", len(content), use_search)
        return await self._call_llm(messages, use_search)

    async def _call_llm(self, messages: List[Dict[str, str]], use_search: bool) -> str:
        if not self._client:
            raise RuntimeError("LLM client not initialized")

        if use_search:
            request: Dict[str, Any] = {
                "model": self._web_model,
                "messages": messages,
                "web_search_options": {},
            }
        else:
            request = {
                "model": self._model,
                "messages": messages,
                "response_format": {"type": "json_object"},
                "temperature": 0.1,
            }

        @retry(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=4, max=10),
            retry=retry_if_exception_type((APIError, APITimeoutError, RateLimitError)),
        )
        async def _attempt() -> str:
            try:
                response = await self._client.chat.completions.create(**request)
                return response.choices[0].message.content or ""
            except (APIError, APITimeoutError, RateLimitError) as exc:
                logger.warning("OpenAI API error: %s", exc)
                raise

        try:
            return await _attempt()
        except RetryError as exc:
            logger.error("Failed to call LLM after retries: %s", exc)
            return ""
