import json

import pytest

from marketplace.checkout.cart import build_cart
from marketplace.checkout.models import AppliedAdjustment, CustomerDetails
from marketplace.checkout.pricing import compute_pricing
from marketplace.errors import CheckoutValidationError
from marketplace.payments import metadata as meta
from marketplace.payments import service as payments_service

FEE = 15000

@pytest.fixture
def intent_metadata(cart_items):
    lines = build_cart(cart_items)
    discount = AppliedAdjustment(code="save10", kind="percentage", magnitude=37000, percent=10)
    pricing = compute_pricing(lines, discount_amount=discount.magnitude, per_item_fee_cents=FEE)
    return meta.make_intent_metadata(
        user_id="u1",
        customer=CustomerDetails(partner1_name="Alex", partner2_name="Sam", email="couple@example.com", guest_count="120"),
        lines=lines,
        booking_ids=["b-photo", "b-dj"],
        pricing=pricing,
        per_item_fee_cents=FEE,
        discount=discount,
    )

def test_metadata_values_are_short_strings(intent_metadata):
    assert all(isinstance(v, str) and len(v) <= meta.MAX_VALUE_LENGTH for v in intent_metadata.values())
    assert intent_metadata["type"] == "wedding_booking_deposit"
    assert intent_metadata["customer_name"] == "Alex & Sam"
    assert intent_metadata["item_count"] == "2"
    assert intent_metadata["discount_code"] == "SAVE10"
    assert intent_metadata["discount_amount"] == "37000"
    assert intent_metadata["referral_code"] == ""
    assert intent_metadata["platform_fee"] == "15000"
    # (370000 - 37000) * 0.5
    assert intent_metadata["deposit_amount"] == "166500"

def test_metadata_items_keep_cart_order(intent_metadata):
    items = meta.extract_items(intent_metadata)
    assert [i["booking_id"] for i in items] == ["b-photo", "b-dj"]
    assert items[0]["vendor_id"] == "vendor-photo"
    assert items[0]["discount"] == 25000
    assert items[1]["discount"] == 12000
    assert items[1]["end_time"] == "23:00"

def test_booking_ids_must_match_lines(cart_items):
    lines = build_cart(cart_items)
    with pytest.raises(ValueError):
        meta.make_intent_metadata(
            user_id="u1", customer=CustomerDetails(), lines=lines, booking_ids=["only-one"],
            pricing=compute_pricing(lines, per_item_fee_cents=FEE), per_item_fee_cents=FEE,
        )

def test_too_many_items_is_rejected(cart_items):
    raw = [dict(cart_items[0], id=f"line-{i}") for i in range(meta.MAX_ITEMS + 1)]
    lines = build_cart(raw)
    with pytest.raises(CheckoutValidationError) as exc:
        meta.make_intent_metadata(
            user_id="u1", customer=CustomerDetails(), lines=lines,
            booking_ids=[f"b{i}" for i in range(len(lines))],
            pricing=compute_pricing(lines, per_item_fee_cents=FEE), per_item_fee_cents=FEE,
        )
    assert exc.value.code == "too_many_items"

def test_extract_items_skips_unreadable_entries():
    items = meta.extract_items({
        "item_1": json.dumps({"booking_id": "b2"}),
        "item_0": json.dumps({"booking_id": "b1"}),
        "item_2": "{not json",
        "item_x": json.dumps({"booking_id": "bx"}),
        "item_3": json.dumps({"no_id": True}),
        "user_id": "u1",
    })
    assert [i["booking_id"] for i in items] == ["b1", "b2"]

def test_global_item_count_is_not_read_as_a_line(intent_metadata, caplog):
    with caplog.at_level("WARNING", logger="marketplace.payments.metadata"):
        items = meta.extract_items(intent_metadata)
    assert len(items) == 2
    assert "illisible" not in caplog.text

def test_item_amounts_add_up_to_charged_totals(cart_items):
    cart_items[1]["package"]["base_price"] = 1000
    cart_items[0]["package"]["base_price"] = 100000
    lines = build_cart(cart_items)
    pricing = compute_pricing(lines, discount_amount=50000, per_item_fee_cents=FEE)
    metadata = meta.make_intent_metadata(
        user_id="u1", customer=CustomerDetails(), lines=lines, booking_ids=["b1", "b2"],
        pricing=pricing, per_item_fee_cents=FEE,
        discount=AppliedAdjustment(code="BIG", kind="fixed", magnitude=50000),
    )
    items = meta.extract_items(metadata)
    assert sum(i["deposit"] for i in items) == pricing.deposit_amount == 25500
    assert sum(i["final_payment"] for i in items) == pricing.remaining_balance == 25500
    assert metadata["deposit_amount"] == "25500"

def _event(metadata, event_type="payment_intent.succeeded"):
    return {"type": event_type, "data": {"object": {"id": "pi_1", "metadata": metadata}}}

def test_materialize_creates_one_booking_per_item(monkeypatch, intent_metadata):
    inserted = []
    monkeypatch.setattr("marketplace.payments.repository.existing_booking_ids", lambda ids: set())
    monkeypatch.setattr(
        "marketplace.payments.repository.insert_bookings_service",
        lambda rows: inserted.extend(rows) or len(rows),
    )
    res = payments_service.materialize_bookings(_event(intent_metadata))
    assert res == {"status": "ok", "created": 2, "skipped": 0}

    photo = inserted[0]
    assert photo["id"] == "b-photo"
    assert photo["couple_id"] == "u1"
    assert photo["status"] == "confirmed"
    assert photo["amount"] == 250000
    assert photo["initial_payment"] + photo["final_payment"] + photo["discount_amount"] == photo["amount"]
    assert photo["platform_fee"] == FEE
    assert photo["stripe_payment_intent_id"] == "pi_1"

def test_materialize_is_idempotent(monkeypatch, intent_metadata):
    inserted = []
    monkeypatch.setattr("marketplace.payments.repository.existing_booking_ids", lambda ids: {"b-photo"})
    monkeypatch.setattr(
        "marketplace.payments.repository.insert_bookings_service",
        lambda rows: inserted.extend(rows) or len(rows),
    )
    res = payments_service.materialize_bookings(_event(intent_metadata))
    assert res["created"] == 1
    assert res["skipped"] == 1
    assert [r["id"] for r in inserted] == ["b-dj"]

@pytest.mark.parametrize(
    "event",
    [
        _event({}, event_type="payment_intent.payment_failed"),
        _event({"type": "something_else", "item_0": json.dumps({"booking_id": "b1"})}),
        _event({"type": "wedding_booking_deposit"}),
    ],
)
def test_materialize_ignores_unrelated_events(monkeypatch, event):
    def _boom(*a, **k):
        raise AssertionError("no write expected")
    monkeypatch.setattr("marketplace.payments.repository.insert_bookings_service", _boom)
    assert payments_service.materialize_bookings(event)["status"] == "ignored"
