from seedscout.urls import (
    hostname,
    is_generic_segment,
    parse_prefill_from_url,
    plant_from_product_slug,
    plant_variety_from_slug,
    tags_from_text,
    variety_slug_from_url,
    vendor_from_url,
)


def test_hostname_drops_www_and_lowercases():
    assert hostname("https://www.RareSeeds.com/store/x") == "rareseeds.com"
    assert hostname("not a url") == ""


def test_vendor_from_known_and_unknown_hosts():
    assert vendor_from_url("https://www.rareseeds.com/store/vegetables/okra") == "Rare Seeds"
    assert vendor_from_url("https://vendor.example/products/x") == "Vendor"
    assert vendor_from_url("") == ""


def test_variety_slug_prefers_product_segment():
    assert variety_slug_from_url("https://vendor.example/products/clemson-spineless-okra?variant=1") == "Clemson Spineless Okra"
    assert variety_slug_from_url("https://shop.example/tomatoes/cherokee-purple.html") == "Cherokee Purple"


def test_plant_from_product_slug_takes_first_token():
    assert plant_from_product_slug("https://www.outsidepride.com/seed/red/celosia-red-velvet.html") == "Celosia"


def test_slug_splits_into_plant_and_variety():
    assert plant_variety_from_slug("https://www.reneesgarden.com/products/arugula-runway") == ("Arugula", "Runway")
    assert plant_variety_from_slug("https://vendor.example/products/basil_sweet_genovese-2") == ("Basil", "Sweet Genovese")
    assert plant_variety_from_slug("https://vendor.example/products/arugula") == ("", "")


def test_generic_segments():
    assert is_generic_segment("Silver")
    assert is_generic_segment("products")
    assert not is_generic_segment("Celosia")


def test_prefill_splits_name_and_variety():
    prefill = parse_prefill_from_url("https://www.edenbrothers.com/products/zinnia-state-fair-mix?ref=abc")

    assert prefill is not None
    assert prefill.vendor == "Eden Brothers"
    assert prefill.name == "Zinnia"
    assert prefill.variety == "State Fair Mix"


def test_prefill_reads_days_hint_and_query_overrides():
    prefill = parse_prefill_from_url("https://vendor.example/products/okra-clemson-56-day")
    assert prefill.harvest_days == "56"

    prefill = parse_prefill_from_url("https://vendor.example/p?name=tomato&variety=roma&vendor=Tiny%20Farm")
    assert prefill.name == "Tomato"
    assert prefill.variety == "Roma"
    assert prefill.vendor == "Tiny Farm"


def test_prefill_rejects_empty_input():
    assert parse_prefill_from_url("") is None
    assert parse_prefill_from_url("   ") is None


def test_functional_tags_from_slug_text():
    assert tags_from_text("drought-tolerant pollinator mix") == ["Pollinator", "Drought Tolerant"]
    assert tags_from_text("") == []
