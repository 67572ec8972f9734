from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional, Tuple

logger = logging.getLogger(__name__)

_DEFAULT_VENDOR_HOSTS: Dict[str, str] = {
    "rareseeds.com": "Rare Seeds",
    "hudsonvalleyseed": "Hudson Valley Seed Co",
    "floretflowers.com": "Floret",
    "johnnyseeds.com": "Johnny's Selected Seeds",
    "outsidepride.com": "Outsidepride",
    "sandiegoseedcompany.com": "San Diego Seed Company",
    "edenbrothers.com": "Eden Brothers",
    "territorialseed.com": "Territorial Seed Company",
    "highmowingseeds.com": "High Mowing Seeds",
    "botanicalinterests.com": "Botanical Interests",
    "reneesgarden.com": "Renee's Garden",
    "superseeds.com": "Super Seeds",
}

_DEFAULT_IMAGE_SELECTORS: Dict[str, Tuple[str, ...]] = {
    "superseeds.com": (
        "img[class*=product]",
        "img[class*=gallery]",
        "img[class*=main]",
        "img[class*=featured]",
        "img[id*=product]",
        "[class*=product] img",
        "[class*=gallery] img",
        "[class*=main] img",
    ),
}

_DEFAULT_GENERIC_SEGMENTS = frozenset({
    "silver", "gold", "red", "white", "blue", "green", "yellow", "pink", "orange", "purple", "black",
    "ornamental", "flower", "flowers", "foliage", "vegetable", "vegetables", "fruit", "herb", "herbs",
    "annual", "perennial", "organic", "heirloom", "mix", "mixed",
    "products", "product", "collections", "shop", "seeds", "catalog",
})

_DEFAULT_FLOWER_NAMES: Tuple[str, ...] = (
    "celosia", "zinnia", "marigold", "cosmos", "snapdragon", "petunia", "dahlia", "nasturtium",
    "sunflower", "pansy", "viola", "calendula", "ageratum", "coleus", "impatiens", "salvia",
    "verbena", "lisianthus", "stock", "sweet pea", "sweetpea", "aster", "phlox", "rudbeckia",
    "echinacea", "coreopsis", "gaillardia", "dianthus", "geranium", "pelargonium", "begonia",
)


@dataclass(frozen=True)
class VendorProfiles:
    """Host tables and allow-lists that tune extraction for particular vendors."""

    vendor_hosts: Dict[str, str] = field(default_factory=lambda: dict(_DEFAULT_VENDOR_HOSTS))
    title_priority_hosts: Tuple[str, ...] = ("johnny", "outsidepride", "sandiegoseed")
    segment_plant_hosts: Tuple[str, ...] = ("outsidepride.com", "sandiegoseed")
    slug_plant_hosts: Tuple[str, ...] = ("outsidepride.com",)
    slug_split_hosts: Tuple[str, ...] = ("reneesgarden.com",)
    blocked_vendor_hosts: Tuple[str, ...] = ("rareseeds",)
    image_selectors: Dict[str, Tuple[str, ...]] = field(default_factory=lambda: dict(_DEFAULT_IMAGE_SELECTORS))
    generic_segments: FrozenSet[str] = _DEFAULT_GENERIC_SEGMENTS
    flower_names: Tuple[str, ...] = _DEFAULT_FLOWER_NAMES

    def vendor_for_host(self, host: str) -> Optional[str]:
        host = (host or "").lower()
        for needle, vendor in self.vendor_hosts.items():
            if needle in host:
                return vendor
        return None

    def uses_title_priority(self, host: str) -> bool:
        return _matches(host, self.title_priority_hosts)

    def uses_segment_plant(self, host: str) -> bool:
        return _matches(host, self.segment_plant_hosts)

    def uses_slug_plant(self, host: str) -> bool:
        return _matches(host, self.slug_plant_hosts)

    def splits_slug(self, host: str) -> bool:
        return _matches(host, self.slug_split_hosts)

    def is_blocked_vendor(self, host: str) -> bool:
        return _matches(host, self.blocked_vendor_hosts)

    def selectors_for_host(self, host: str) -> Tuple[str, ...]:
        host = (host or "").lower()
        for needle, selectors in self.image_selectors.items():
            if needle in host:
                return selectors
        return ()


def _matches(host: str, needles: Tuple[str, ...]) -> bool:
    host = (host or "").lower()
    return any(needle in host for needle in needles)


DEFAULT_PROFILES = VendorProfiles()


def _overlay(base: VendorProfiles, data: Dict[str, Any]) -> VendorProfiles:
    changes: Dict[str, Any] = {}
    if isinstance(data.get("vendor_hosts"), dict):
        merged = dict(base.vendor_hosts)
        merged.update({str(k).lower(): str(v) for k, v in data["vendor_hosts"].items()})
        changes["vendor_hosts"] = merged
    if isinstance(data.get("image_selectors"), dict):
        selectors = dict(base.image_selectors)
        for host, values in data["image_selectors"].items():
            if isinstance(values, list):
                selectors[str(host).lower()] = tuple(str(v) for v in values)
        changes["image_selectors"] = selectors
    for key in ("title_priority_hosts", "segment_plant_hosts", "slug_plant_hosts", "slug_split_hosts", "blocked_vendor_hosts", "flower_names"):
        if isinstance(data.get(key), list):
            changes[key] = tuple(str(v).lower() for v in data[key])
    if isinstance(data.get("generic_segments"), list):
        changes["generic_segments"] = frozenset(str(v).lower() for v in data["generic_segments"])
    return replace(base, **changes)


def load_vendor_profiles(path: str = "vendor-profiles.json") -> VendorProfiles:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        logger.info("%s not found; continuing with built-in vendor profiles", path)
        return DEFAULT_PROFILES
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse vendor profiles: %s", exc)
        return DEFAULT_PROFILES

    if not isinstance(data, dict):
        logger.warning("Vendor profiles must be a JSON object; ignoring %s", path)
        return DEFAULT_PROFILES
    return _overlay(DEFAULT_PROFILES, data)
