"""
Module 'payments' (feature-first): point d'entrée public.
Réunit client Stripe, metadata, repository BD, orchestration du paiement et polling des réservations.
"""

from .metadata import make_intent_metadata, extract_items, extract_metadata
from .stripe_client import require_stripe, create_intent, confirm_card_payment, parse_event
from .repository import fetch_bookings_by_ids, existing_booking_ids, insert_bookings_service
from .orchestrator import PaymentOrchestrator
from .poller import poll_for_bookings
from .service import materialize_bookings

__all__ = [
    # metadata
    "make_intent_metadata",
    "extract_items",
    "extract_metadata",
    # stripe
    "require_stripe",
    "create_intent",
    "confirm_card_payment",
    "parse_event",
    # repository
    "fetch_bookings_by_ids",
    "existing_booking_ids",
    "insert_bookings_service",
    # orchestration
    "PaymentOrchestrator",
    "poll_for_bookings",
    "materialize_bookings",
]
