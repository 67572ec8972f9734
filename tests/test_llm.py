import pytest

from seedscout.llm import (
    HERO_QUERY_SUFFIX,
    LLMClient,
    build_hero_prompt,
    build_rescue_prompt,
    decode_ai_record,
    decode_hero_image_url,
    parse_json_object,
)
from seedscout.utils import IMPORTED_SEED, Quality


@pytest.mark.parametrize(
    "text, expected",
    [
        ('{"variety": "Roma"}', {"variety": "Roma"}),
        ('```json\n{"variety": "Roma"}\n```', {"variety": "Roma"}),
        ('Here you go: {"variety": "Roma {x}"} hope that helps', {"variety": "Roma {x}"}),
        ('note {not json} then {"a": 2}', {"a": 2}),
        ('{"outer": {"inner": "}"}}', {"outer": {"inner": "}"}}),
    ],
)
def test_parse_json_object_is_lenient(text, expected):
    assert parse_json_object(text) == expected


@pytest.mark.parametrize("text", [None, "", "   ", "[1, 2]", "no json at all"])
def test_parse_json_object_gives_up_quietly(text):
    assert parse_json_object(text) is None


def test_decode_ai_record_accepts_alternate_keys():
    payload = decode_ai_record(
        '{"type": "Tomato", "variety": "Roma", "sun": "Full Sun", "plant_spacing": "18 in",'
        ' "stock_photo_url": "https://img.example/roma.jpg", "days_to_maturity": 75,'
        ' "tags": ["Heirloom", 3, ""], "unexpected": true}'
    )

    assert payload.plant_type == "Tomato"
    assert payload.sun_requirement == "Full Sun"
    assert payload.spacing == "18 in"
    assert payload.hero_image_url == "https://img.example/roma.jpg"
    assert payload.days_to_maturity == "75"
    assert payload.tags == ["Heirloom"]

    record = payload.to_record("https://vendor.example/products/roma", quality=Quality.FULL)
    assert record.specs.harvest_days == 75
    assert record.quality is Quality.FULL


def test_missing_keys_become_empty():
    payload = decode_ai_record('{"variety": "Roma", "vendor": "", "tags": "Heirloom"}')
    record = payload.to_record("https://vendor.example/products/roma")

    assert payload.vendor is None
    assert payload.tags == []
    assert record.plant_type == IMPORTED_SEED
    assert record.vendor == ""
    assert record.hero_image_url is None


def test_non_absolute_image_urls_are_dropped():
    payload = decode_ai_record('{"plant_type": "Okra", "hero_image_url": "/relative.jpg"}')
    assert payload.to_record("https://vendor.example/x").hero_image_url is None


def test_empty_payload_has_no_identity():
    assert not decode_ai_record('{"sowing_depth": "1 in"}').has_identity
    assert decode_ai_record("garbage") is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ('{"hero_image_url": "https://img.example/a.jpg"}', "https://img.example/a.jpg"),
        ('{"image_url": "https://img.example/b.jpg"}', "https://img.example/b.jpg"),
        ('{"hero_image_url": "", "url": "https://img.example/c.jpg"}', "https://img.example/c.jpg"),
        ('{"hero_image_url": "not a url"}', None),
        ("", None),
    ],
)
def test_decode_hero_image_url(text, expected):
    assert decode_hero_image_url(text) == expected


def test_prompts_carry_hints_and_query():
    rescue = build_rescue_prompt("Okra Red Burgundy", "Rare Seeds")
    assert "Okra Red Burgundy" in rescue and "Rare Seeds" in rescue
    assert build_rescue_prompt("", "").endswith("Vendor (from domain): unknown")
    assert build_hero_prompt("Roma Tomato").endswith(f"Roma Tomato {HERO_QUERY_SUFFIX}")


async def test_disabled_client_returns_empty_text():
    client = LLMClient(api_key=None, model=None)

    assert not client.enabled
    assert await client.generate("anything", url="https://vendor.example/x", search_enabled=True) == ""
