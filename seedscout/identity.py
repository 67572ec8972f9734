from __future__ import annotations

import re
from typing import Optional

from .normalize import is_generic_trap, strip_variety_suffixes

_VENDOR_KEY_SUFFIXES = (
    "seeds", "seed", "company", "co", "inc", "llc", "garden", "heirloom",
    "selected", "organic", "store", "shop",
)

CANONICAL_VENDORS = {
    "bakercreek": "Baker Creek Heirloom Seeds",
    "johnnysselectedseeds": "Johnny's Selected Seeds",
    "johnnysseeds": "Johnny's Selected Seeds",
    "johnnys": "Johnny's Selected Seeds",
    "johnny": "Johnny's Selected Seeds",
    "marysheirloomseeds": "Mary's Heirloom Seeds",
    "marys": "Mary's Heirloom Seeds",
    "territorial": "Territorial Seed Company",
    "territorialseed": "Territorial Seed Company",
    "edenbrothers": "Eden Brothers",
    "outsidepride": "Outsidepride",
    "parkseed": "Park Seed",
    "park": "Park Seed",
    "burpee": "Burpee",
    "botanicalinterests": "Botanical Interests",
    "highmowing": "High Mowing Seeds",
    "highmowingseeds": "High Mowing Seeds",
    "floretflowers": "Floret Flowers",
    "floret": "Floret Flowers",
    "reneesgarden": "Renee's Garden",
    "renees": "Renee's Garden",
    "southernexposure": "Southern Exposure",
    "fedco": "Fedco Seeds",
    "fedcoseeds": "Fedco Seeds",
    "hudsonvalley": "Hudson Valley Seed",
    "hudsonvalleyseed": "Hudson Valley Seed",
    "victory": "Victory Seeds",
    "victoryseeds": "Victory Seeds",
    "swallowtail": "Swallowtail Garden Seeds",
    "swallowtailgarden": "Swallowtail Garden Seeds",
    "swallowtailgardenseeds": "Swallowtail Garden Seeds",
    "select": "Select Seeds",
    "selectseeds": "Select Seeds",
    "rare": "Rare Seeds",
    "rareseeds": "Rare Seeds",
    "opencircle": "Open Circle Seeds",
    "opencircleseeds": "Open Circle Seeds",
}


def canonical_key(name: Optional[str]) -> str:
    """Lowercase letters and digits only: "Benary's Giant" and "benary-s-giant" both give "benarysgiant"."""
    if not name:
        return ""
    return re.sub(r"[^a-z0-9]", "", name.lower())


def identity_key(plant_type: Optional[str], variety: Optional[str]) -> Optional[str]:
    """Dedup key for a plant+variety pair, or None when either side is a category label."""
    plant = (plant_type or "").strip()
    stripped = strip_variety_suffixes((variety or "").strip())
    if is_generic_trap(plant) or is_generic_trap(stripped) or is_generic_trap(variety):
        return None
    type_key = canonical_key(plant)
    variety_key = canonical_key(stripped)
    if type_key and variety_key:
        return f"{type_key}_{variety_key}"
    return type_key or variety_key or None


def normalize_vendor_key(vendor: Optional[str]) -> str:
    """Stable match key: "Territorial Seed", "Territorial Seed Company" and "TerritorialSeed" agree."""
    if not vendor or not isinstance(vendor, str):
        return ""
    text = re.sub(r"[^a-z0-9\s]", " ", vendor.strip().lower())
    text = re.sub(r"\s+", " ", text).strip()
    if not text:
        return ""

    changed = True
    while changed:
        changed = False
        for suffix in _VENDOR_KEY_SUFFIXES:
            pattern = re.compile(rf"\s+{re.escape(suffix)}\s*$")
            if pattern.search(text):
                text = pattern.sub("", text).strip()
                changed = True
                break
    text = re.sub(r"([a-z0-9])seeds?$", r"\1", text).strip()
    return canonical_key(text) or canonical_key(vendor)


def canonical_vendor_display(vendor: Optional[str]) -> str:
    text = (vendor or "").strip()
    if not text:
        return ""
    return CANONICAL_VENDORS.get(normalize_vendor_key(text), text)


def vendors_match(left: Optional[str], right: Optional[str]) -> bool:
    left_key = normalize_vendor_key(left)
    return bool(left_key) and left_key == normalize_vendor_key(right)

