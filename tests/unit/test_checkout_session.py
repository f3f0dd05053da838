import asyncio
import types
from datetime import date

import pytest
import stripe

from marketplace.checkout.cart import build_cart
from marketplace.checkout.models import AppliedAdjustment, CustomerDetails
from marketplace.checkout.session import CheckoutSession, CheckoutStore
from marketplace.errors import (
    BookingConfirmationError,
    CheckoutNotFoundError,
    CheckoutValidationError,
    PaymentFailedError,
    TransientLookupError,
)
from marketplace.payments.orchestrator import PaymentOrchestrator

TODAY = date(2030, 1, 1)
USER = {"id": "u1", "email": "couple@example.com"}

class FakeGateway:
    def __init__(self):
        self.created = []
        self.fail_confirm = False

    def create_intent(self, *, amount, metadata, receipt_email=None):
        self.created.append({"amount": amount, "metadata": metadata})
        return {"id": f"pi_{len(self.created)}", "client_secret": "secret", "status": "requires_payment_method"}

    def confirm_card_payment(self, *, intent_id, payment_method_id, billing_details):
        if self.fail_confirm:
            raise stripe.CardError("Your card was declined.", param=None, code="card_declined")
        return {"id": intent_id, "status": "succeeded"}

async def _no_sleep(seconds):
    return None

def _lookups(premium=0, travel=0):
    return types.SimpleNamespace(
        get_vendor_premium=lambda vendor_id: premium,
        get_venue_service_area=lambda venue_id: "area-1",
        get_travel_fee=lambda vendor_id, area_id: travel,
    )

@pytest.fixture
def gateway():
    return FakeGateway()

@pytest.fixture
def session(cart_items, gateway):
    return CheckoutSession(
        user=USER,
        access_token="tok",
        lines=build_cart(cart_items),
        orchestrator=PaymentOrchestrator(gateway=gateway),
        fee_lookups=_lookups(),
        per_item_fee_cents=15000,
    )

def _to_payment_step(session, customer_payload):
    asyncio.run(session.resolve_fees())
    session.submit_details(CustomerDetails(**customer_payload), today=TODAY)
    asyncio.run(session.begin_contracts())
    for service_type in session.gate.required:
        session.set_pending_signature(service_type, "Alex Martin")
        session.confirm_signature(service_type)
    session.complete_contracts()

def _rows_for(ids):
    return [
        {"id": i, "status": "confirmed", "amount": 100000, "initial_payment": 50000, "final_payment": 50000}
        for i in ids
    ]

def test_resolve_fees_bumps_generation(session):
    asyncio.run(session.resolve_fees())
    assert session.fees_resolved
    assert session.pricing_generation == 1
    assert session.pricing().subtotal == 370000

def test_stale_fee_result_is_discarded(cart_items):
    holder = {}
    def premium(vendor_id):
        # Une résolution plus récente démarre pendant celle-ci
        holder["session"]._fee_request += 1
        return 99999
    s = CheckoutSession(
        user=USER, access_token="tok", lines=build_cart(cart_items),
        orchestrator=PaymentOrchestrator(gateway=FakeGateway()),
        fee_lookups=types.SimpleNamespace(
            get_vendor_premium=premium,
            get_venue_service_area=lambda venue_id: None,
            get_travel_fee=lambda vendor_id, area_id: None,
        ),
    )
    holder["session"] = s
    assert asyncio.run(s.resolve_fees()) is False
    assert all(line.package.premium_amount == 0 for line in s.lines)
    assert s.fees_resolving is True
    with pytest.raises(CheckoutValidationError) as exc:
        s.pricing()
    assert exc.value.code == "fees_resolving"

def test_details_validation(session, customer_payload):
    with pytest.raises(CheckoutValidationError) as exc:
        session.submit_details(CustomerDetails(**dict(customer_payload, phone="", city=" ")), today=TODAY)
    assert exc.value.code == "missing_fields"
    assert exc.value.fields == ["phone", "city"]

    with pytest.raises(CheckoutValidationError) as exc:
        session.submit_details(CustomerDetails(**dict(customer_payload, state="ZZ")), today=TODAY)
    assert exc.value.code == "invalid_state"

    session.submit_details(CustomerDetails(**dict(customer_payload, state="tx")), today=TODAY)
    assert session.customer.state == "TX"

def test_past_wedding_date_blocks_details(session, customer_payload):
    with pytest.raises(CheckoutValidationError) as exc:
        session.submit_details(CustomerDetails(**customer_payload), today=date(2100, 1, 1))
    assert exc.value.message == "Wedding date cannot be in the past"
    assert session.step == "details"

def test_contracts_step_requires_all_signatures(session, customer_payload):
    asyncio.run(session.resolve_fees())
    session.submit_details(CustomerDetails(**customer_payload), today=TODAY)
    asyncio.run(session.begin_contracts())
    assert session.step == "contracts"

    session.set_pending_signature("Photography", "Alex")
    session.confirm_signature("Photography")
    with pytest.raises(CheckoutValidationError) as exc:
        session.complete_contracts()
    assert exc.value.code == "contracts_unsigned"
    assert exc.value.fields == ["DJ Services"]

def test_incomplete_items_block_contracts_completion(cart_items, customer_payload):
    cart_items[1]["venue"] = None
    s = CheckoutSession(
        user=USER, access_token="tok", lines=build_cart(cart_items),
        orchestrator=PaymentOrchestrator(gateway=FakeGateway()), fee_lookups=_lookups(),
    )
    with pytest.raises(CheckoutValidationError) as exc:
        _to_payment_step(s, customer_payload)
    assert exc.value.code == "invalid_items"
    assert exc.value.fields == ["line-dj"]
    assert s.step == "contracts"

def test_signatures_cannot_change_at_payment_step(session, customer_payload):
    _to_payment_step(session, customer_payload)
    with pytest.raises(CheckoutValidationError) as exc:
        session.unset_signature("DJ Services")
    assert exc.value.code == "wrong_step"
    with pytest.raises(CheckoutValidationError):
        session.set_pending_signature("DJ Services", "Someone Else")
    assert session.gate.is_complete()

def test_contract_template_failure_keeps_details_step(monkeypatch, session, customer_payload):
    def _fail(types_):
        raise RuntimeError("db down")
    monkeypatch.setattr("marketplace.contracts.repository.fetch_templates_by_service_types", _fail)
    session.submit_details(CustomerDetails(**customer_payload), today=TODAY)
    with pytest.raises(TransientLookupError):
        asyncio.run(session.begin_contracts())
    assert session.step == "details"

def test_back_navigation(session, customer_payload):
    _to_payment_step(session, customer_payload)
    assert session.back() == "contracts"
    assert session.back() == "details"
    with pytest.raises(CheckoutValidationError):
        session.back()

def test_intent_requires_unblocked_checkout(session, customer_payload):
    _to_payment_step(session, customer_payload)
    session.gate.unset("DJ Services")
    with pytest.raises(CheckoutValidationError) as exc:
        asyncio.run(session.create_intent())
    assert "contracts_unsigned" in exc.value.fields

def test_intent_amount_matches_grand_total(session, gateway, customer_payload):
    _to_payment_step(session, customer_payload)
    res = asyncio.run(session.create_intent())
    assert res["accepted"] is True
    # 370000 * 0.5 + 2 * 15000
    assert gateway.created[0]["amount"] == 215000
    assert gateway.created[0]["metadata"]["item_count"] == "2"

def test_discount_change_invalidates_intent(monkeypatch, session, gateway, customer_payload):
    _to_payment_step(session, customer_payload)
    asyncio.run(session.create_intent())
    generation = session.pricing_generation

    adj = AppliedAdjustment(code="SAVE10", kind="percentage", magnitude=37000, percent=10)
    monkeypatch.setattr(
        "marketplace.discounts.service.validate_discount_code",
        lambda code, subtotal: ("valid", {"adjustment": adj}),
    )
    asyncio.run(session.apply_discount("save10"))
    assert session.pricing_generation == generation + 1
    assert session.orchestrator.intent is None

    asyncio.run(session.create_intent())
    assert gateway.created[-1]["amount"] == 166500 + 30000

    session.remove_discount()
    assert session.pricing().grand_total == 215000

def test_discount_statuses_map_to_errors(monkeypatch, session):
    monkeypatch.setattr(
        "marketplace.discounts.service.validate_discount_code",
        lambda code, subtotal: ("expired", {"message": "This discount code has expired", "reason": "expired"}),
    )
    with pytest.raises(CheckoutValidationError) as exc:
        asyncio.run(session.apply_discount("OLD"))
    assert exc.value.code == "discount_expired"
    assert session.discount is None

    monkeypatch.setattr(
        "marketplace.discounts.service.validate_discount_code",
        lambda code, subtotal: ("error", {"message": "Error validating discount code", "reason": "error"}),
    )
    with pytest.raises(TransientLookupError):
        asyncio.run(session.apply_discount("SAVE10"))
    assert session.pricing_generation == 0

def test_code_result_dropped_once_payment_started(monkeypatch, session):
    def _validate(code, subtotal):
        # Le paiement aboutit pendant la validation du code
        session.orchestrator.state = "succeeded"
        return "valid", {"adjustment": AppliedAdjustment(code="SAVE10", kind="fixed", magnitude=37000)}
    monkeypatch.setattr("marketplace.discounts.service.validate_discount_code", _validate)
    with pytest.raises(CheckoutValidationError) as exc:
        asyncio.run(session.apply_discount("save10"))
    assert exc.value.code == "checkout_locked"
    assert session.discount is None
    assert session.pricing_generation == 0
    assert session.pricing().grand_total == 215000

def test_code_removed_while_validating_stays_removed(monkeypatch, session):
    def _validate(code, subtotal):
        session.remove_discount()
        return "valid", {"adjustment": AppliedAdjustment(code="SAVE10", kind="fixed", magnitude=37000)}
    monkeypatch.setattr("marketplace.discounts.service.validate_discount_code", _validate)
    assert asyncio.run(session.apply_discount("save10")) is None
    assert session.discount is None
    assert session.pricing().total_discount == 0

def test_pay_happy_path(session, customer_payload):
    _to_payment_step(session, customer_payload)
    asyncio.run(session.create_intent())
    session.update_card_status(ready=True, complete=True)

    snap = asyncio.run(session.pay(payment_method_id="pm_1", terms_accepted=True, fetch=_rows_for, sleep=_no_sleep))
    assert snap["step"] == "confirmed"
    assert len(snap["bookings"]) == 2
    assert snap["remaining_balance_due"] == 100000
    assert snap["lines"] == []

def test_card_decline_stays_on_payment_step(session, gateway, customer_payload):
    _to_payment_step(session, customer_payload)
    asyncio.run(session.create_intent())
    session.update_card_status(ready=True, complete=True)
    gateway.fail_confirm = True
    with pytest.raises(PaymentFailedError):
        asyncio.run(session.pay(payment_method_id="pm_1", terms_accepted=True, fetch=_rows_for, sleep=_no_sleep))
    assert session.step == "payment"
    assert len(session.lines) == 2

def test_missing_bookings_after_payment(session, customer_payload):
    _to_payment_step(session, customer_payload)
    asyncio.run(session.create_intent())
    session.update_card_status(ready=True, complete=True)
    with pytest.raises(BookingConfirmationError):
        asyncio.run(session.pay(
            payment_method_id="pm_1", terms_accepted=True,
            fetch=lambda ids: [], sleep=_no_sleep, max_attempts=2,
        ))
    assert session.step == "payment"
    assert session.orchestrator.state == "succeeded"
    with pytest.raises(CheckoutValidationError) as exc:
        session.remove_discount()
    assert exc.value.code == "checkout_locked"

def test_pay_rechecks_contract_signatures(session, customer_payload):
    _to_payment_step(session, customer_payload)
    asyncio.run(session.create_intent())
    session.update_card_status(ready=True, complete=True)
    session.gate.unset("DJ Services")
    with pytest.raises(CheckoutValidationError) as exc:
        asyncio.run(session.pay(payment_method_id="pm_1", terms_accepted=True, fetch=_rows_for, sleep=_no_sleep))
    assert exc.value.code == "contracts_unsigned"
    assert exc.value.fields == ["DJ Services"]
    assert session.step == "payment"
    assert session.orchestrator.state == "card_collecting"

def test_store_is_scoped_to_owner(session):
    store = CheckoutStore()
    store.add(session)
    assert store.get(session.id, "u1") is session
    with pytest.raises(CheckoutNotFoundError):
        store.get(session.id, "someone-else")
    store.discard(session.id)
    with pytest.raises(CheckoutNotFoundError):
        store.get(session.id, "u1")

def _new_session(cart_items):
    return CheckoutSession(
        user=USER, access_token="tok", lines=build_cart(cart_items),
        orchestrator=PaymentOrchestrator(gateway=FakeGateway()), fee_lookups=_lookups(),
    )

def test_store_forgets_idle_sessions(cart_items):
    clock = {"now": 0.0}
    store = CheckoutStore(ttl_seconds=60, max_sessions=10, clock=lambda: clock["now"])
    s = store.add(_new_session(cart_items))
    clock["now"] = 50
    assert store.get(s.id, "u1") is s
    # Chaque lecture repousse l'expiration
    clock["now"] = 100
    assert store.get(s.id, "u1") is s
    clock["now"] = 161
    with pytest.raises(CheckoutNotFoundError):
        store.get(s.id, "u1")
    assert len(store) == 0

def test_store_drops_least_recently_used_over_capacity(cart_items):
    clock = {"now": 0.0}
    store = CheckoutStore(ttl_seconds=3600, max_sessions=2, clock=lambda: clock["now"])
    a = store.add(_new_session(cart_items))
    clock["now"] = 1
    b = store.add(_new_session(cart_items))
    clock["now"] = 2
    store.get(a.id, "u1")
    clock["now"] = 3
    c = store.add(_new_session(cart_items))
    assert len(store) == 2
    with pytest.raises(CheckoutNotFoundError):
        store.get(b.id, "u1")
    assert store.get(a.id, "u1") is a
    assert store.get(c.id, "u1") is c

@pytest.mark.parametrize("items,code", [([], "empty_cart")])
def test_cart_errors(items, code):
    with pytest.raises(CheckoutValidationError) as exc:
        build_cart(items)
    assert exc.value.code == code

def test_duplicate_cart_item(cart_items):
    with pytest.raises(CheckoutValidationError) as exc:
        build_cart([cart_items[0], cart_items[0]])
    assert exc.value.code == "duplicate_item"
