from __future__ import annotations

import html
import math
import re
from dataclasses import dataclass, field, replace
from typing import Callable, FrozenSet, Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup

from .errors import GenericNameDetected
from .profiles import DEFAULT_PROFILES, VendorProfiles
from .urls import (
    hostname,
    is_generic_segment,
    plant_from_product_slug,
    plant_from_segment_before_product,
    plant_from_url_slug,
    plant_variety_from_slug,
    title_case,
    variety_slug_from_url,
    vendor_from_url,
)
from .utils import IMPORTED_SEED, ExtractedRecord

GENERIC_TRAP_NAMES = frozenset({
    "vegetables", "vegetable", "seeds", "seed", "shop", "cool season", "warm season",
    "herbs", "flowers", "fruits", "products", "catalog", "all products", "new arrivals", "sale",
})

JUNK_TITLE_TERMS = frozenset({
    "vegetables", "seeds", "herbs", "flowers", "home", "products", "shop", "catalog",
    "seed", "vegetable", "herb", "flower", "product", "store", "cart", "account",
})

# Longer phrases first
VARIETY_SUFFIXES = (
    "Drought Tolerant",
    "Selected Seeds",
    "Non-GMO",
    "Seeds",
    "Seed",
    "Organic",
    "Heirloom",
)

PROMOTED_TAGS = ("F1", "Hybrid", "Heirloom", "Pelleted", "Organic")

_VIEW_ALL = re.compile(r"^(all|view\s+all|shop\s+all|see\s+all)$", re.IGNORECASE)
_CATALOG_NUMBER = re.compile(r"\s+\d{3,4}$")
_PACK_SIZE = re.compile(
    r"\(?\b\d[\d,]*\s*(?:seeds?|pk|packs?|ct|count|grams?|g|oz|lbs?)\b\.?\)?",
    re.IGNORECASE,
)
_DAYS = re.compile(r"\b\d+(?:\s*-\s*\d+)?\s*Days?\b", re.IGNORECASE)
_GENERIC_FLOWER_SEGMENT = re.compile(r"^(flower|flowers|flower\s+seed|flower\s+seeds)$")
_NAV_CONTEXT = re.compile(r"breadcrumb|nav|category", re.IGNORECASE)
_TITLE_VENDOR_SUFFIXES = (
    re.compile(r"\|?\s*Johnny'?s?\s+(?:Selected\s+)?Seeds?", re.IGNORECASE),
    re.compile(r"\|?\s*San\s+Diego\s+Seed\s+Company", re.IGNORECASE),
    re.compile(r"\|?\s*Baker\s+Creek", re.IGNORECASE),
    re.compile(r"\|?\s*Burpee", re.IGNORECASE),
    re.compile(r"\|?\s*Rare\s+Seeds?", re.IGNORECASE),
    re.compile(r"\|?\s*Seeds?\s+Company", re.IGNORECASE),
    re.compile(r"\|?\s*-\s*Buy\s+Seeds?", re.IGNORECASE),
)


def decode_entities(value: Optional[str]) -> str:
    if not isinstance(value, str):
        return ""
    return html.unescape(value.strip()).strip()


def is_generic_trap(value: Optional[str]) -> bool:
    normalized = re.sub(r"\s+", " ", (value or "").strip().lower())
    return bool(normalized) and normalized in GENERIC_TRAP_NAMES


def is_junk_title(value: Optional[str]) -> bool:
    text = (value or "").strip()
    if len(text) < 2:
        return True
    lowered = text.lower()
    if lowered in JUNK_TITLE_TERMS:
        return True
    return bool(_VIEW_ALL.match(lowered))


def is_generic_flower_type(plant_type: Optional[str]) -> bool:
    lowered = (plant_type or "").strip().lower()
    if lowered in {"flower", "flowers", "flower seed", "flower seeds"}:
        return True
    return lowered.startswith("flower") and len(lowered) <= 20


def _tidy(text: str) -> str:
    text = re.sub(r"\(\s*\)|\[\s*\]", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    text = re.sub(r"[\s\-._,(\[/&+]+$", "", text)
    text = re.sub(r"^[\s\-._,)\]/&+]+", "", text)
    return text.strip()


def strip_variety_suffixes(value: Optional[str]) -> str:
    """Drop marketing suffixes so "Cherokee Purple Heirloom" and "Cherokee Purple" agree."""
    out = (value or "").strip().replace("_", " ")
    if not out:
        return out
    parts = re.split(r"\bSeeds\b", out, flags=re.IGNORECASE)
    if len(parts) > 1:
        after = parts[-1].strip()
        if re.search(r"[A-Za-z0-9]", after):
            out = after

    changed = True
    while changed and out:
        changed = False
        for suffix in VARIETY_SUFFIXES:
            escaped = re.escape(suffix)
            trailing = re.compile(rf"(?:^|\s+){escaped}\s*$", re.IGNORECASE)
            leading = re.compile(rf"^\s*{escaped}(?:\s+|$)", re.IGNORECASE)
            if trailing.search(out):
                out = trailing.sub("", out).strip()
                changed = True
                break
            if leading.search(out):
                out = leading.sub("", out).strip()
                changed = True
                break

    out = re.sub(r"\s+", " ", out).strip()
    out = re.sub(r"[^A-Za-z0-9)]+$", "", out)
    return _tidy(out)


def plural_of(plant_type: str) -> str:
    p = (plant_type or "").strip().lower()
    if not p:
        return ""
    if p.endswith(("s", "x", "z", "ch", "sh")):
        return p + "es"
    if p.endswith("y") and len(p) > 1 and p[-2] not in "aeiou":
        return p[:-1] + "ies"
    if p.endswith("o"):
        return p + "es"
    return p + "s"


def strip_plant_from_variety(variety: Optional[str], plant_type: Optional[str]) -> str:
    """Remove a redundant leading or trailing plant name; never a substring in the middle."""
    v = (variety or "").strip()
    p = (plant_type or "").strip()
    if not v or not p:
        return v
    lowered = v.lower()
    singular = p.lower()
    plural = plural_of(p)

    for form in (singular, plural):
        if lowered.startswith(form + " "):
            return v[len(form) + 1:].strip()

    noise = re.search(r"\s+(Seeds?)\s*$", v, re.IGNORECASE)
    noise_word = noise.group(1) if noise else ""
    core = v[: noise.start()].strip() if noise else v
    core_lower = core.lower()
    for form in (singular, plural):
        if core_lower.endswith(" " + form):
            trimmed = core[: len(core) - len(form) - 1].strip()
            return f"{trimmed} {noise_word}".strip() if noise_word else trimmed
    return v


def strip_catalog_number(variety: Optional[str]) -> str:
    return _CATALOG_NUMBER.sub("", (variety or "").strip()).strip()


def _display_pass(text: str, plant_type: Optional[str]) -> Tuple[str, List[str]]:
    text = _PACK_SIZE.sub(" ", text)
    tags: List[str] = []
    for tag in PROMOTED_TAGS:
        pattern = re.compile(rf"\b{re.escape(tag)}\b", re.IGNORECASE)
        if pattern.search(text):
            tags.append(tag)
            text = pattern.sub(" ", text)

    text = strip_variety_suffixes(text)
    text = _DAYS.sub(" ", text)
    text = _tidy(text)
    text = strip_catalog_number(strip_plant_from_variety(text, plant_type))
    return text, tags


def clean_variety_for_display(variety: Optional[str], plant_type: Optional[str]) -> Tuple[str, List[str]]:
    """Return the display variety plus tags lifted out of it (F1, Hybrid, ...).

    Lifting a tag can expose a plant name or catalog number, so passes repeat
    until the text stops changing.
    """
    text = (variety or "").strip()
    tags: List[str] = []
    while True:
        cleaned, lifted = _display_pass(text, plant_type)
        tags = merge_tags(tags, lifted)
        if cleaned == text:
            return text, tags
        text = cleaned


def infer_specific_plant(variety: Optional[str], flower_names: Iterable[str] = DEFAULT_PROFILES.flower_names) -> Optional[str]:
    text = (variety or "").strip()
    if not text:
        return None
    for name in flower_names:
        pattern = r"\b" + r"\s+".join(re.escape(part) for part in name.split()) + r"\b"
        if re.search(pattern, text, re.IGNORECASE):
            if name in ("sweet pea", "sweetpea"):
                return "Sweet Pea"
            return title_case(name)
    first = text.split()[0]
    if len(first) >= 2 and first.isascii() and first.isalpha():
        return title_case(first.lower()) if first.isupper() else title_case(first)
    return None


def _tag_key(tag: str) -> str:
    return re.sub(r"\s+", " ", tag.strip().lower())


def filter_blocked_tags(tags: Iterable[str], blocked: Iterable[str]) -> List[str]:
    blocked_keys = {_tag_key(b) for b in blocked if isinstance(b, str) and b.strip()}
    return [t for t in tags if isinstance(t, str) and t.strip() and _tag_key(t) not in blocked_keys]


def merge_tags(tags: Iterable[str], extra: Iterable[str] = ()) -> List[str]:
    merged: List[str] = []
    seen = set()
    for tag in list(tags) + list(extra):
        if not isinstance(tag, str) or not tag.strip():
            continue
        key = _tag_key(tag)
        if key not in seen:
            seen.add(key)
            merged.append(tag.strip())
    return merged


def parse_harvest_days(days_to_maturity: Optional[object], harvest_days: Optional[object] = None) -> Optional[int]:
    value: Optional[int] = None
    if isinstance(harvest_days, (int, float)) and not isinstance(harvest_days, bool) and math.isfinite(harvest_days):
        value = int(harvest_days)
    elif days_to_maturity is not None:
        match = re.match(r"\s*(\d+)", str(days_to_maturity))
        if match:
            value = int(match.group(1))
    if value is None or not 0 < value < 365:
        return None
    return value


def strip_vendor_suffix_from_title(title: str) -> str:
    text = title.strip()
    cut = len(text)
    for separator in ("|", " – ", " - "):
        index = text.find(separator)
        if index > 0:
            cut = min(cut, index)
    text = text[:cut].strip()
    for pattern in _TITLE_VENDOR_SUFFIXES:
        text = pattern.sub("", text).strip()
    return text


def _title_candidate(raw: Optional[str]) -> Optional[str]:
    text = re.sub(r"\s+", " ", decode_entities(raw)).strip()
    if len(text) < 2 or len(text) > 200:
        return None
    if is_junk_title(text) or is_generic_trap(text):
        return None
    return text


def _class_and_id(tag) -> str:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    return " ".join(classes) + " " + (tag.get("id") or "")


def _h1_in_navigation(h1) -> bool:
    if _NAV_CONTEXT.search(_class_and_id(h1)):
        return True
    parent = h1.parent
    if parent is None or parent.name in (None, "[document]"):
        return False
    if parent.name in ("nav", "header"):
        return True
    return bool(_NAV_CONTEXT.search(_class_and_id(parent)))


def title_from_soup(soup: BeautifulSoup) -> Optional[str]:
    """Product title from og:title, then a content <h1>, then <title> minus the vendor suffix."""
    og = soup.find("meta", attrs={"property": "og:title"})
    if og and og.get("content"):
        candidate = _title_candidate(og["content"])
        if candidate:
            return candidate

    for h1 in soup.find_all("h1"):
        if _h1_in_navigation(h1):
            continue
        candidate = _title_candidate(h1.get_text(" ", strip=True))
        if candidate:
            return candidate

    if soup.title:
        candidate = _title_candidate(strip_vendor_suffix_from_title(soup.title.get_text(" ", strip=True)))
        if candidate:
            return candidate
    return None


def title_from_html(page_html: str) -> Optional[str]:
    if not page_html:
        return None
    return title_from_soup(BeautifulSoup(page_html, "html.parser"))


@dataclass(frozen=True)
class Draft:
    vendor: str = ""
    plant_type: str = IMPORTED_SEED
    variety: str = ""
    tags: Tuple[str, ...] = ()

    @classmethod
    def from_record(cls, record: ExtractedRecord) -> "Draft":
        return cls(
            vendor=record.vendor or "",
            plant_type=record.plant_type or "",
            variety=record.variety or "",
            tags=tuple(record.tags or ()),
        )

    def apply_to(self, record: ExtractedRecord) -> ExtractedRecord:
        return replace(
            record,
            vendor=self.vendor,
            plant_type=self.plant_type,
            variety=self.variety,
            tags=list(self.tags),
        )


@dataclass(frozen=True)
class NormalizeContext:
    url: str
    page_title: Optional[str] = None
    blocked_tags: FrozenSet[str] = frozenset()
    profiles: VendorProfiles = field(default=DEFAULT_PROFILES)

    @property
    def host(self) -> str:
        return hostname(self.url)


def _needs_plant(plant_type: str) -> bool:
    text = (plant_type or "").strip()
    return not text or text == IMPORTED_SEED or is_generic_flower_type(text) or is_generic_trap(text)


def decode_fields(draft: Draft, ctx: NormalizeContext) -> Draft:
    return replace(
        draft,
        vendor=decode_entities(draft.vendor),
        plant_type=decode_entities(draft.plant_type) or IMPORTED_SEED,
        variety=decode_entities(draft.variety),
    )


def vendor_from_host(draft: Draft, ctx: NormalizeContext) -> Draft:
    known = ctx.profiles.vendor_for_host(ctx.host)
    if known:
        return replace(draft, vendor=known)
    if not draft.vendor.strip():
        return replace(draft, vendor=vendor_from_url(ctx.url, ctx.profiles))
    return draft


def drop_blocked_tags(draft: Draft, ctx: NormalizeContext) -> Draft:
    return replace(draft, tags=tuple(merge_tags(filter_blocked_tags(draft.tags, ctx.blocked_tags))))


def split_broad_type_from_slug(draft: Draft, ctx: NormalizeContext) -> Draft:
    if not ctx.profiles.splits_slug(ctx.host) or not _needs_plant(draft.plant_type):
        return draft
    plant, variety = plant_variety_from_slug(ctx.url)
    if not plant or is_generic_trap(plant) or is_generic_segment(plant, ctx.profiles):
        return draft
    return replace(draft, plant_type=plant, variety=variety)


def infer_flower_type(draft: Draft, ctx: NormalizeContext) -> Draft:
    if not is_generic_flower_type(draft.plant_type):
        return draft
    specific = infer_specific_plant(draft.variety, ctx.profiles.flower_names)
    return replace(draft, plant_type=specific) if specific else draft


def plant_from_vendor_path(draft: Draft, ctx: NormalizeContext) -> Draft:
    if not ctx.profiles.uses_segment_plant(ctx.host):
        return draft
    from_url = plant_from_segment_before_product(ctx.url)
    if from_url and is_generic_segment(from_url, ctx.profiles):
        from_url = plant_from_product_slug(ctx.url) or ""
    if not from_url and ctx.profiles.uses_slug_plant(ctx.host):
        from_url = plant_from_url_slug(ctx.url)
    if from_url and _needs_plant(draft.plant_type):
        return replace(draft, plant_type=from_url)
    return draft


def flower_type_from_segment(draft: Draft, ctx: NormalizeContext) -> Draft:
    if not is_generic_flower_type(draft.plant_type):
        return draft
    segment = plant_from_segment_before_product(ctx.url).strip()
    if not segment or is_generic_segment(segment, ctx.profiles):
        return draft
    if _GENERIC_FLOWER_SEGMENT.match(re.sub(r"\s+", " ", segment.lower())):
        return draft
    return replace(draft, plant_type=segment)


def strip_redundant_plant(draft: Draft, ctx: NormalizeContext) -> Draft:
    variety = strip_plant_from_variety(draft.variety, draft.plant_type)
    return replace(draft, variety=strip_catalog_number(variety))


def prefer_page_title(draft: Draft, ctx: NormalizeContext) -> Draft:
    title = decode_entities(ctx.page_title)
    if not title or not ctx.profiles.uses_title_priority(ctx.host):
        return draft
    if is_generic_trap(title):
        raise GenericNameDetected(f"page title is a category label: {title!r}", url=ctx.url, partial=draft)
    if not is_junk_title(title):
        return replace(draft, variety=title)
    if is_junk_title(draft.variety):
        raise GenericNameDetected(f"page title and variety are both junk: {title!r}", url=ctx.url, partial=draft)
    return draft


def display_cleanup(draft: Draft, ctx: NormalizeContext) -> Draft:
    variety, lifted = clean_variety_for_display(draft.variety, draft.plant_type)
    return replace(draft, variety=variety, tags=tuple(merge_tags(draft.tags, lifted)))


def _scrub_slug(slug: str, plant_type: str) -> Tuple[str, List[str]]:
    variety = strip_catalog_number(strip_plant_from_variety(slug, plant_type))
    return clean_variety_for_display(variety, plant_type)


def reject_generic_variety(draft: Draft, ctx: NormalizeContext) -> Draft:
    if is_generic_trap(draft.variety):
        raise GenericNameDetected(f"variety is a category label: {draft.variety!r}", url=ctx.url, partial=draft)
    if not is_junk_title(draft.variety):
        return draft

    slug = variety_slug_from_url(ctx.url)
    recovered, lifted = _scrub_slug(slug, draft.plant_type) if slug else ("", [])
    if recovered and not is_junk_title(recovered) and not is_generic_trap(recovered):
        return replace(draft, variety=recovered, tags=tuple(merge_tags(draft.tags, lifted)))
    raise GenericNameDetected(
        f"no usable variety name (got {draft.variety!r})",
        url=ctx.url,
        partial=replace(draft, variety=draft.variety or slug),
    )


NormalizeStep = Callable[[Draft, NormalizeContext], Draft]

NORMALIZE_STEPS: Tuple[NormalizeStep, ...] = (
    decode_fields,
    vendor_from_host,
    drop_blocked_tags,
    split_broad_type_from_slug,
    infer_flower_type,
    plant_from_vendor_path,
    flower_type_from_segment,
    strip_redundant_plant,
    prefer_page_title,
    strip_redundant_plant,
    display_cleanup,
    reject_generic_variety,
)


def normalize_draft(draft: Draft, ctx: NormalizeContext, steps: Tuple[NormalizeStep, ...] = NORMALIZE_STEPS) -> Draft:
    for step in steps:
        draft = step(draft, ctx)
    return draft


def normalize_record(record: ExtractedRecord, ctx: NormalizeContext) -> ExtractedRecord:
    """Run every cleanup step over the record's naming fields.

    Raises GenericNameDetected carrying the partially normalized record when
    the variety cannot be resolved to a real product name.
    """
    try:
        draft = normalize_draft(Draft.from_record(record), ctx)
    except GenericNameDetected as signal:
        if isinstance(signal.partial, Draft):
            signal.partial = replace(
                signal.partial.apply_to(record),
                failed=True,
                trigger_rescue_hint=True,
            )
        raise
    return draft.apply_to(record)
