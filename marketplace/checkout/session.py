"""
Session de checkout: relie résolution des frais, remises, contrats et paiement
pour une tentative de paiement d'un couple.

Étapes: details (1) -> contracts (2) -> payment (3) -> confirmed
- pricing_generation augmente à chaque changement qui modifie le total
  (remise, parrainage, frais corrigés) et invalide le PaymentIntent courant.
- Les appels bloquants (Supabase, Stripe) passent par run_in_threadpool.
"""
from datetime import date
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4
import logging
import time

from starlette.concurrency import run_in_threadpool

from marketplace.config import (
    BOOKING_POLL_INTERVAL_MS,
    BOOKING_POLL_MAX_ATTEMPTS,
    CHECKOUT_MAX_SESSIONS,
    CHECKOUT_SESSION_TTL_SECONDS,
    SERVICE_FEE_PER_ITEM_CENTS,
)
from marketplace.errors import CheckoutNotFoundError, CheckoutValidationError, TransientLookupError
from marketplace.fees import service as fees_service
from marketplace.fees import repository as fees_repository
from marketplace.discounts import service as discounts_service
from marketplace.contracts import service as contracts_service
from marketplace.payments import poller
from marketplace.payments import repository as payments_repository
from marketplace.payments import metadata as payments_metadata
from marketplace.payments.orchestrator import PaymentOrchestrator
from .models import US_STATES, AppliedAdjustment, BookingRecord, CartLineItem, CustomerDetails, PricingBreakdown
from . import pricing as pricing_engine
from .cart import service_types

logger = logging.getLogger(__name__)

STEP_DETAILS = "details"
STEP_CONTRACTS = "contracts"
STEP_PAYMENT = "payment"
STEP_CONFIRMED = "confirmed"

STEP_NUMBERS = {STEP_DETAILS: 1, STEP_CONTRACTS: 2, STEP_PAYMENT: 3, STEP_CONFIRMED: 4}

def _parse_event_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None

class CheckoutSession:
    def __init__(
        self,
        *,
        user: Dict[str, Any],
        access_token: str,
        lines: List[CartLineItem],
        checkout_id: Optional[str] = None,
        orchestrator: Optional[PaymentOrchestrator] = None,
        fee_lookups=fees_repository,
        per_item_fee_cents: int = SERVICE_FEE_PER_ITEM_CENTS,
    ):
        self.id = checkout_id or str(uuid4())
        self.user_id = str(user.get("id") or "")
        self.user_email = user.get("email") or ""
        self.access_token = access_token
        self.lines: List[CartLineItem] = list(lines)
        self.per_item_fee_cents = per_item_fee_cents
        self.fee_lookups = fee_lookups

        self.step = STEP_DETAILS
        self.pricing_generation = 0
        self.fees_resolving = False
        self.fees_resolved = False
        self._fee_request = 0
        self._code_requests = {"discount": 0, "referral": 0}

        self.discount: Optional[AppliedAdjustment] = None
        self.referral: Optional[AppliedAdjustment] = None
        self.customer = CustomerDetails(email=self.user_email)
        self.gate = contracts_service.ContractGate()
        self.orchestrator = orchestrator or PaymentOrchestrator()

        self.bookings: List[BookingRecord] = []
        self.remaining_balance_due = 0

    # --- Prix -------------------------------------------------------------

    def _bump_generation(self, reason: str) -> None:
        self.pricing_generation += 1
        self.orchestrator.invalidate()
        logger.info("checkout.session %s generation=%d reason=%s", self.id, self.pricing_generation, reason)

    def pricing(self) -> PricingBreakdown:
        """Totaux recalculés à chaque lecture (refusé pendant la résolution des frais)."""
        if self.fees_resolving:
            raise CheckoutValidationError("Fees are still being calculated", code="fees_resolving")
        return pricing_engine.compute_pricing(
            self.lines,
            self.discount.magnitude if self.discount else 0,
            self.referral.magnitude if self.referral else 0,
            per_item_fee_cents=self.per_item_fee_cents,
        )

    async def resolve_fees(self) -> bool:
        """
        Corrige premium et frais de déplacement des lignes.
        Un résultat arrivé après une résolution plus récente est ignoré.
        """
        self._fee_request += 1
        request_id = self._fee_request
        self.fees_resolving = True
        source = list(self.lines)
        try:
            corrected = await run_in_threadpool(fees_service.resolve_fees, source, self.fee_lookups)
        finally:
            if request_id == self._fee_request:
                self.fees_resolving = False
        if request_id != self._fee_request:
            logger.info("checkout.session %s stale fee resolution discarded request=%d", self.id, request_id)
            return False
        self.lines = corrected
        self.fees_resolved = True
        self._bump_generation("fees")
        if self.gate.started:
            self.gate.refresh(self.lines, self.customer)
        return True

    def _ensure_mutable(self) -> None:
        if self.step == STEP_CONFIRMED or self.orchestrator.state in ("confirming", "succeeded"):
            raise CheckoutValidationError("Checkout is already paid", code="checkout_locked")

    # --- Remises ----------------------------------------------------------

    def _apply_status(self, status: str, payload: Dict[str, Any]) -> AppliedAdjustment:
        if status == "valid":
            return payload["adjustment"]
        if status == "error":
            raise TransientLookupError(payload.get("message") or discounts_service.ERROR_MESSAGE, code="discount_lookup_failed")
        raise CheckoutValidationError(payload.get("message") or discounts_service.INVALID_MESSAGE, code=f"discount_{status}")

    async def _validate_code(self, kind: str, validate, *args) -> Optional[AppliedAdjustment]:
        """
        Valide un code hors boucle puis l'applique.
        Le résultat est ignoré si une requête plus récente (ou un retrait) est intervenue
        pendant l'attente; il est refusé si le paiement a démarré entre-temps.
        """
        self._ensure_mutable()
        self._code_requests[kind] += 1
        request_id = self._code_requests[kind]
        status, payload = await run_in_threadpool(validate, *args)
        self._ensure_mutable()
        if request_id != self._code_requests[kind]:
            logger.info("checkout.session %s stale %s result discarded request=%d", self.id, kind, request_id)
            return None
        adjustment = self._apply_status(status, payload)
        setattr(self, kind, adjustment)
        self._bump_generation(kind)
        return adjustment

    async def apply_discount(self, code: str) -> Optional[AppliedAdjustment]:
        subtotal = self.pricing().subtotal
        return await self._validate_code("discount", discounts_service.validate_discount_code, code, subtotal)

    def remove_discount(self) -> None:
        self._ensure_mutable()
        self._code_requests["discount"] += 1
        if self.discount is not None:
            self.discount = None
            self._bump_generation("discount_removed")

    async def apply_referral(self, code: str) -> Optional[AppliedAdjustment]:
        return await self._validate_code("referral", discounts_service.validate_referral_code, code)

    def remove_referral(self) -> None:
        self._ensure_mutable()
        self._code_requests["referral"] += 1
        if self.referral is not None:
            self.referral = None
            self._bump_generation("referral_removed")

    # --- Étapes -----------------------------------------------------------

    def _require_step(self, *steps: str) -> None:
        if self.step not in steps:
            raise CheckoutValidationError(f"Not allowed at step {self.step}", code="wrong_step")

    def _check_event_dates(self, today: date) -> None:
        missing = [line.id for line in self.lines if not line.event_date]
        if missing:
            raise CheckoutValidationError("Please set the event date for every service", code="missing_event_date", fields=missing)
        for line in self.lines:
            parsed = _parse_event_date(line.event_date)
            if parsed is None:
                raise CheckoutValidationError(f"Invalid event date {line.event_date}", code="invalid_event_date", fields=[line.id])
            if parsed < today:
                raise CheckoutValidationError("Wedding date cannot be in the past", code="past_event_date", fields=[line.id])

    def submit_details(self, customer: CustomerDetails, today: Optional[date] = None) -> None:
        """Valide et enregistre les coordonnées; l'entrée dans l'étape contrats passe par begin_contracts()."""
        self._require_step(STEP_DETAILS)
        if self.fees_resolving:
            raise CheckoutValidationError("Fees are still being calculated", code="fees_resolving")
        missing = customer.missing_fields()
        if missing:
            raise CheckoutValidationError("Please fill in all required fields", code="missing_fields", fields=missing)
        state = customer.state.strip().upper()
        if state not in US_STATES:
            raise CheckoutValidationError("Please select a valid US state", code="invalid_state", fields=["state"])
        self._check_event_dates(today or date.today())
        self.customer = customer.model_copy(update={"state": state})
        if self.gate.started:
            self.gate.refresh(self.lines, self.customer)

    async def begin_contracts(self) -> None:
        self._require_step(STEP_DETAILS, STEP_CONTRACTS)
        if self.customer.missing_fields():
            raise CheckoutValidationError("Please fill in all required fields", code="missing_fields", fields=self.customer.missing_fields())
        templates = await run_in_threadpool(contracts_service.load_templates, service_types(self.lines))
        self.gate.begin(self.lines, self.customer, templates)
        self.step = STEP_CONTRACTS

    def _require_contracts_signed(self) -> None:
        if not self.gate.is_complete():
            raise CheckoutValidationError(
                "Please sign all contracts before proceeding", code="contracts_unsigned", fields=self.gate.missing()
            )

    def set_pending_signature(self, service_type: str, text: str) -> None:
        self._require_step(STEP_DETAILS, STEP_CONTRACTS)
        self.gate.set_pending(service_type, text)

    def confirm_signature(self, service_type: str):
        self._require_step(STEP_DETAILS, STEP_CONTRACTS)
        return self.gate.confirm(service_type)

    def unset_signature(self, service_type: str) -> None:
        """Retirer une signature n'est possible qu'avant l'étape paiement."""
        self._require_step(STEP_DETAILS, STEP_CONTRACTS)
        self.gate.unset(service_type)

    def complete_contracts(self) -> None:
        self._require_step(STEP_CONTRACTS)
        self._require_contracts_signed()
        invalid = pricing_engine.validate_lines(self.lines)
        if invalid:
            raise CheckoutValidationError(
                "Some services are missing a vendor, venue or price", code="invalid_items",
                fields=[item["id"] for item in invalid],
            )
        self.step = STEP_PAYMENT

    def back(self) -> str:
        if self.step == STEP_PAYMENT:
            if self.orchestrator.busy:
                raise CheckoutValidationError("Payment is being processed", code="payment_in_progress")
            self.step = STEP_CONTRACTS
        elif self.step == STEP_CONTRACTS:
            self.step = STEP_DETAILS
        else:
            raise CheckoutValidationError(f"Cannot go back from step {self.step}", code="wrong_step")
        return self.step

    # --- Paiement ---------------------------------------------------------

    def payment_blockers(self) -> List[str]:
        """Raisons empêchant la création de l'intent (liste vide = OK)."""
        blockers: List[str] = []
        if not self.user_id or not self.access_token:
            blockers.append("not_authenticated")
        if self.fees_resolving or not self.fees_resolved:
            blockers.append("fees_unresolved")
        if not self.gate.is_complete():
            blockers.append("contracts_unsigned")
        if self.customer.missing_fields():
            blockers.append("missing_fields")
        if any(not line.event_date or not line.event_start_time for line in self.lines):
            blockers.append("missing_event_time")
        if pricing_engine.validate_lines(self.lines):
            blockers.append("invalid_items")
        return blockers

    async def create_intent(self) -> Dict[str, Any]:
        self._require_step(STEP_PAYMENT)
        blockers = self.payment_blockers()
        if blockers:
            raise CheckoutValidationError("Checkout is not ready for payment", code="not_ready", fields=blockers)

        breakdown = self.pricing()
        generation = self.pricing_generation
        booking_ids = [str(uuid4()) for _ in self.lines]
        metadata = payments_metadata.make_intent_metadata(
            user_id=self.user_id,
            customer=self.customer,
            lines=self.lines,
            booking_ids=booking_ids,
            pricing=breakdown,
            per_item_fee_cents=self.per_item_fee_cents,
            discount=self.discount,
            referral=self.referral,
        )
        intent = await run_in_threadpool(
            lambda: self.orchestrator.create_intent(
                amount=breakdown.grand_total,
                metadata=metadata,
                generation=generation,
                booking_ids=booking_ids,
                receipt_email=self.customer.email or None,
            )
        )
        accepted = self.orchestrator.accept(intent, self.pricing_generation)
        return {"accepted": accepted, "payment": self.orchestrator.snapshot()}

    def update_card_status(self, *, ready: Optional[bool] = None, complete: Optional[bool] = None) -> Dict[str, Any]:
        self._require_step(STEP_PAYMENT)
        self.orchestrator.update_card_status(ready=ready, complete=complete)
        return self.orchestrator.snapshot()

    def _fetch_bookings(self) -> Callable:
        async def _fetch(ids):
            return await run_in_threadpool(payments_repository.fetch_bookings_by_ids, ids, self.access_token)
        return _fetch

    async def pay(
        self,
        *,
        payment_method_id: str,
        terms_accepted: bool,
        fetch: Optional[Callable] = None,
        sleep: Optional[Callable] = None,
        max_attempts: int = BOOKING_POLL_MAX_ATTEMPTS,
        interval_ms: int = BOOKING_POLL_INTERVAL_MS,
    ) -> Dict[str, Any]:
        """
        Confirme le paiement puis attend les réservations créées par le webhook.
        - Échec de paiement: PaymentFailedError, on reste à l'étape paiement.
        - Paiement OK mais réservations introuvables: BookingConfirmationError.
        """
        self._require_step(STEP_PAYMENT)
        # Les signatures ont pu être retirées depuis l'étape contrats
        self._require_contracts_signed()
        await run_in_threadpool(
            lambda: self.orchestrator.confirm(
                payment_method_id=payment_method_id,
                billing_details=self.customer.billing_details(),
                terms_accepted=terms_accepted,
            )
        )
        signatures = list(self.gate.signed.values())
        await run_in_threadpool(
            lambda: self.orchestrator.persist_contracts(signatures, user_id=self.user_id, user_token=self.access_token)
        )

        booking_ids = self.orchestrator.intent.booking_ids if self.orchestrator.intent else []
        poll_kwargs: Dict[str, Any] = {"max_attempts": max_attempts, "interval_ms": interval_ms}
        if sleep is not None:
            poll_kwargs["sleep"] = sleep
        records = await poller.poll_for_bookings(booking_ids, fetch or self._fetch_bookings(), **poll_kwargs)
        self._finalize(records)
        return self.snapshot()

    def _finalize(self, records: List[BookingRecord]) -> None:
        self.bookings = list(records)
        self.remaining_balance_due = sum(r.final_payment for r in records)
        self.lines = []
        self.step = STEP_CONFIRMED
        logger.info(
            "checkout.session %s confirmed bookings=%d remaining_balance=%d",
            self.id, len(records), self.remaining_balance_due,
        )

    # --- Lecture ----------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "step": self.step,
            "step_number": STEP_NUMBERS[self.step],
            "lines": [line.model_dump() for line in self.lines],
            "fees_resolving": self.fees_resolving,
            "pricing": None if self.fees_resolving else self.pricing().model_dump(),
            "pricing_generation": self.pricing_generation,
            "discount": self.discount.model_dump() if self.discount else None,
            "referral": self.referral.model_dump() if self.referral else None,
            "customer": self.customer.model_dump(),
            "contracts": self.gate.snapshot(),
            "payment": self.orchestrator.snapshot(),
            "bookings": [b.model_dump() for b in self.bookings],
            "remaining_balance_due": self.remaining_balance_due,
        }

class CheckoutStore:
    """
    Stockage en mémoire des sessions, chacune rattachée à son propriétaire.
    - Une session inactive depuis ttl_seconds est oubliée.
    - Au-delà de max_sessions, les moins récemment utilisées sortent en premier.
    """

    def __init__(
        self,
        ttl_seconds: int = CHECKOUT_SESSION_TTL_SECONDS,
        max_sessions: int = CHECKOUT_MAX_SESSIONS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, CheckoutSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _evict(self) -> None:
        now = self._clock()
        expired = [cid for cid, seen in self._last_seen.items() if now - seen > self.ttl_seconds]
        for cid in expired:
            self.discard(cid)
        overflow = len(self._sessions) - self.max_sessions
        if overflow > 0:
            for cid in sorted(self._last_seen, key=self._last_seen.get)[:overflow]:
                self.discard(cid)
        if expired or overflow > 0:
            logger.info("checkout.store evicted expired=%d overflow=%d", len(expired), max(overflow, 0))

    def add(self, session: CheckoutSession) -> CheckoutSession:
        self._sessions[session.id] = session
        self._last_seen[session.id] = self._clock()
        self._evict()
        return session

    def get(self, checkout_id: str, user_id: str) -> CheckoutSession:
        self._evict()
        session = self._sessions.get(checkout_id)
        if session is None or session.user_id != str(user_id or ""):
            raise CheckoutNotFoundError()
        self._last_seen[checkout_id] = self._clock()
        return session

    def discard(self, checkout_id: str) -> None:
        self._sessions.pop(checkout_id, None)
        self._last_seen.pop(checkout_id, None)

    def clear(self) -> None:
        self._sessions.clear()
        self._last_seen.clear()

store = CheckoutStore()
