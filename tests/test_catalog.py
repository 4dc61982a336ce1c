import pytest

from services.catalog import TIER_LIMITS, UNLIMITED, TierCatalog


def test_every_configured_price_resolves_to_its_tier(catalog):
    assert catalog.resolve_tier("price_starter") == "starter"
    assert catalog.resolve_tier("price_pro") == "professional"
    assert catalog.resolve_tier("price_agency") == "agency"


@pytest.mark.parametrize("price_id", [None, "", "price_unknown"])
def test_unknown_price_falls_back_to_default_tier(catalog, price_id, caplog):
    assert catalog.resolve_tier(price_id) == "starter"
    assert catalog.tier_for_price(price_id) is None


def test_every_tier_has_limits():
    for tier in ("freemium", "starter", "professional", "agency", "trial"):
        assert tier in TIER_LIMITS

    agency = TIER_LIMITS["agency"]
    assert agency.max_clients == UNLIMITED
    assert agency.max_posts_per_month == UNLIMITED
    assert agency.max_ai_credits_per_month == 2000


def test_limits_for_unknown_tier_uses_default(catalog):
    assert catalog.limits_for("platinum") == TIER_LIMITS["starter"]


def test_conflicting_price_mapping_is_rejected():
    with pytest.raises(ValueError):
        TierCatalog([("price_x", "starter"), ("price_x", "agency")])


def test_price_mapping_to_unknown_tier_is_rejected():
    with pytest.raises(ValueError):
        TierCatalog({"price_x": "platinum"})


def test_credit_packages_by_id():
    catalog = TierCatalog({})

    assert catalog.credit_package("small").credits == 50
    assert catalog.credit_package("large").credits == 500
    assert catalog.credit_package("huge") is None
    assert catalog.credit_package(None) is None


def test_price_map_is_read_only(catalog):
    with pytest.raises(TypeError):
        catalog.price_map["price_new"] = "agency"
