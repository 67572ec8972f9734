from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlparse

from .profiles import DEFAULT_PROFILES, VendorProfiles

_TAG_KEYWORDS = [
    (re.compile(r"slope\s*stabilizer|ceanothus|carex|cistus|erosion", re.IGNORECASE), "Slope Stabilizer"),
    (re.compile(r"groundcover|ground\s*cover|kurapia|dymondia", re.IGNORECASE), "Groundcover"),
    (re.compile(r"low\s*chill|chill\s*hours|<\s*400|under\s*400|less\s*than\s*400", re.IGNORECASE), "Low Chill"),
    (re.compile(r"edible\s*flower|flowers\s*edible|edible\s*bloom", re.IGNORECASE), "Edible Flower"),
    (re.compile(r"pollinator|bee\s*friendly|attract\s*pollinator", re.IGNORECASE), "Pollinator"),
    (re.compile(r"cutting\s*garden|cut\s*flower", re.IGNORECASE), "Cutting Garden"),
    (re.compile(r"drought\s*tolerant|drought\s*resistant|drought", re.IGNORECASE), "Drought Tolerant"),
    (re.compile(r"heat\s*lover|heat\s*tolerant|heat\s*resistant", re.IGNORECASE), "Heat Lover"),
    (re.compile(r"fruit\s*tree|tree\s*fruit", re.IGNORECASE), "Fruit Tree"),
    (re.compile(r"winter\s*sow|winter\s*sowing|winter\s*sown", re.IGNORECASE), "Winter Sower"),
    (re.compile(r"zone\s*10|10a|10b|zone\s*10a", re.IGNORECASE), "Zone 10a Optimized"),
]

_PRODUCT_SLUG = re.compile(r"/(?:products?|seeds)/([^/?#]+)", re.IGNORECASE)
_LAST_SEGMENT = re.compile(r"/([^/?#]+)/?$")
_DAYS_IN_SLUG = re.compile(r"(\d{2,3})-?day", re.IGNORECASE)


def title_case(text: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group().upper(), text).strip()


def _slug_to_title(raw: str) -> str:
    return title_case(unquote(raw).replace("-", " "))


def hostname(url: str) -> str:
    """Lowercased hostname without a leading www., or "" when the URL has none."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def _segments(url: str) -> List[str]:
    try:
        path = urlparse(url).path
    except ValueError:
        return []
    return [segment for segment in path.split("/") if segment]


def vendor_from_url(url: str, profiles: VendorProfiles = DEFAULT_PROFILES) -> str:
    host = hostname(url)
    if not host:
        return ""
    known = profiles.vendor_for_host(host)
    if known:
        return known
    return title_case(host.split(".")[0].replace("-", " "))


def variety_slug_from_url(url: str) -> str:
    """/products/clemson-spineless-okra -> "Clemson Spineless Okra"."""
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    match = _PRODUCT_SLUG.search(path) or _LAST_SEGMENT.search(path)
    if not match:
        return ""
    raw = re.sub(r"\.html?$", "", match.group(1).strip(), flags=re.IGNORECASE)
    return _slug_to_title(raw) if raw else ""


def plant_from_url_slug(url: str) -> str:
    """First path segment minus a -seed(s) suffix: /fruit-seed/... -> "Fruit"."""
    segments = _segments(url)
    if not segments:
        return ""
    stripped = re.sub(r"-seeds?$", "", segments[0], flags=re.IGNORECASE)
    return _slug_to_title(stripped) if stripped else ""


def plant_from_segment_before_product(url: str) -> str:
    segments = _segments(url)
    if len(segments) < 2:
        return ""
    raw = re.sub(r"\.[^.]*$", "", segments[-2]).strip()
    return _slug_to_title(raw) if raw else ""


def plant_variety_from_slug(url: str) -> Tuple[str, str]:
    """/products/arugula-runway -> ("Arugula", "Runway"); ("", "") for single-word slugs."""
    segments = _segments(url)
    if not segments:
        return "", ""
    raw = re.sub(r"\.(?:html?|aspx|php)$", "", unquote(segments[-1]), flags=re.IGNORECASE)
    raw = re.sub(r"[-_]?\d+$", "", raw).strip()
    parts = [part for part in re.split(r"[-_]+", raw) if part]
    if len(parts) < 2:
        return "", ""
    return title_case(parts[0]), title_case(" ".join(parts[1:]))


def is_generic_segment(segment: str, profiles: VendorProfiles = DEFAULT_PROFILES) -> bool:
    normalized = re.sub(r"\s+", " ", (segment or "").strip().lower())
    if not normalized:
        return True
    return normalized in profiles.generic_segments


def plant_from_product_slug(url: str) -> str:
    segments = _segments(url)
    if not segments:
        return ""
    raw = re.sub(r"\.[^.]*$", "", segments[-1]).strip()
    if len(raw) < 2:
        return ""
    first = raw.split("-")[0]
    return title_case(unquote(first)) if first else ""


def tags_from_text(text: str) -> List[str]:
    tags: List[str] = []
    if not text or not text.strip():
        return tags
    for pattern, tag in _TAG_KEYWORDS:
        if pattern.search(text) and tag not in tags:
            tags.append(tag)
    return tags


@dataclass
class UrlPrefill:
    source_url: str
    vendor: str = ""
    name: str = ""
    variety: str = ""
    harvest_days: Optional[str] = None
    tags: List[str] = field(default_factory=list)


def parse_prefill_from_url(url: str, profiles: VendorProfiles = DEFAULT_PROFILES) -> Optional[UrlPrefill]:
    """Best-effort name/variety/vendor guess from the URL alone, without fetching it."""
    trimmed = (url or "").strip()
    if not trimmed:
        return None
    if not trimmed.lower().startswith(("http://", "https://")):
        trimmed = "https://" + trimmed
    try:
        parsed = urlparse(trimmed)
    except ValueError:
        return None
    if not parsed.hostname:
        return None

    prefill = UrlPrefill(source_url=trimmed, vendor=vendor_from_url(trimmed, profiles))

    path = re.sub(r"/products/?", "/", parsed.path, flags=re.IGNORECASE)
    path = re.sub(r"\.html$", "", path, flags=re.IGNORECASE)
    parts = [part for part in path.split("/") if part]

    if parts:
        last = parts[-1]
        words = [w for w in unquote(last.replace("-", " ")).split() if not w.isdigit()]
        if words:
            prefill.name = title_case(words[0])
            if len(words) > 1:
                prefill.variety = title_case(" ".join(words[1:]))
        days = _DAYS_IN_SLUG.search(last) or _DAYS_IN_SLUG.search(path)
        if days:
            prefill.harvest_days = days.group(1)

    if len(parts) >= 2 and not prefill.variety:
        decoded = unquote(parts[-2].replace("-", " ")).strip()
        if decoded and not decoded.isdigit():
            prefill.variety = title_case(decoded)

    query = parse_qs(parsed.query)
    if query.get("name", [""])[0]:
        prefill.name = title_case(query["name"][0])
    if query.get("variety", [""])[0]:
        prefill.variety = title_case(query["variety"][0])
    if query.get("vendor", [""])[0]:
        prefill.vendor = query["vendor"][0].strip()
    if query.get("harvest_days", [""])[0]:
        prefill.harvest_days = query["harvest_days"][0].strip()

    seen: List[str] = []
    for text in (" ".join(parts), prefill.name, prefill.variety):
        for tag in tags_from_text(text):
            if tag not in seen:
                seen.append(tag)
    prefill.tags = seen
    return prefill
