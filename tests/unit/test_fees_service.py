import types

from marketplace.checkout.cart import build_cart
from marketplace.fees import service as svc

def _lookups(premiums=None, areas=None, travel=None, fail=()):
    premiums = premiums or {}
    areas = areas or {}
    travel = travel or {}

    def get_vendor_premium(vendor_id):
        if "premium" in fail:
            raise RuntimeError("db down")
        return premiums.get(vendor_id)

    def get_venue_service_area(venue_id):
        if "area" in fail:
            raise RuntimeError("db down")
        return areas.get(venue_id)

    def get_travel_fee(vendor_id, area_id):
        return travel.get((vendor_id, area_id))

    return types.SimpleNamespace(
        get_vendor_premium=get_vendor_premium,
        get_venue_service_area=get_venue_service_area,
        get_travel_fee=get_travel_fee,
    )

def test_vendor_without_premium_record_gets_zero(cart_items):
    lines = build_cart(cart_items)
    lookups = _lookups(
        premiums={"vendor-dj": 30000},
        areas={"venue-1": "area-north"},
        travel={("vendor-photo", "area-north"): 8000, ("vendor-dj", "area-north"): 4000},
    )
    corrected = svc.resolve_fees(lines, lookups)

    photo, dj = corrected
    assert photo.package.premium_amount == 0
    assert photo.package.travel_fee == 8000
    assert dj.package.premium_amount == 30000
    assert dj.package.travel_fee == 4000

def test_input_cart_is_not_mutated(cart_items):
    lines = build_cart(cart_items)
    lookups = _lookups(premiums={"vendor-photo": 1000})
    corrected = svc.resolve_fees(lines, lookups)
    assert lines[0].package.premium_amount == 0
    assert corrected[0].package.premium_amount == 1000
    assert corrected[0] is not lines[0]

def test_lookup_failure_falls_back_to_zero_per_component(cart_items):
    lines = build_cart(cart_items)
    lookups = _lookups(
        areas={"venue-1": "area-north"},
        travel={("vendor-photo", "area-north"): 8000},
        fail=("premium",),
    )
    corrected = svc.resolve_fees(lines, lookups)
    assert corrected[0].package.premium_amount == 0
    assert corrected[0].package.travel_fee == 8000

def test_service_area_failure_only_zeroes_travel(cart_items):
    lines = build_cart(cart_items)
    lookups = _lookups(premiums={"vendor-photo": 500}, fail=("area",))
    corrected = svc.resolve_fees(lines, lookups)
    assert corrected[0].package.premium_amount == 500
    assert corrected[0].package.travel_fee == 0

def test_item_without_venue_is_skipped(cart_items):
    cart_items[1]["venue"] = None
    lines = build_cart(cart_items)
    lookups = _lookups(premiums={"vendor-photo": 500, "vendor-dj": 900})
    corrected = svc.resolve_fees(lines, lookups)
    assert corrected[0].package.premium_amount == 500
    assert corrected[1] is lines[1]
    assert corrected[1].package.premium_amount == 0

def test_negative_values_are_clamped(cart_items):
    lines = build_cart(cart_items)
    corrected = svc.resolve_fees(lines, _lookups(premiums={"vendor-photo": -100}))
    assert corrected[0].package.premium_amount == 0

def test_default_lookups_use_repository(monkeypatch, cart_items):
    monkeypatch.setattr("marketplace.fees.repository.get_vendor_premium", lambda vendor_id: 2500)
    corrected = svc.resolve_fees(build_cart(cart_items))
    assert [l.package.premium_amount for l in corrected] == [2500, 2500]
