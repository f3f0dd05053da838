"""
Accès aux données pour la feature 'payments' (table bookings).
"""
from typing import Any, Dict, List, Optional, Sequence, Set
import logging
import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

BOOKING_COLUMNS = "id, status, service_type, amount, initial_payment, final_payment, stripe_payment_intent_id"

# module marketplace.payments.repository
def fetch_bookings_by_ids(ids: Sequence[str], user_token: Optional[str] = None) -> List[dict]:
    """
    Lit les réservations attendues par leurs IDs.
    - Client utilisateur (RLS) si user_token fourni, sinon client anon.
    - Les erreurs remontent: le polling les traite comme une tentative vide.
    """
    if not ids:
        return []
    client = supabase_client.get_user_supabase(user_token) if user_token else supabase_client.get_supabase()
    res = (
        client
        .table("bookings")
        .select(BOOKING_COLUMNS)
        .in_("id", [str(i) for i in ids])
        .execute()
    )
    return res.data or []

def existing_booking_ids(ids: Sequence[str]) -> Set[str]:
    """IDs déjà présents (service-role), pour rendre le webhook idempotent."""
    if not ids:
        return set()
    res = (
        supabase_client.get_service_supabase()
        .table("bookings")
        .select("id")
        .in_("id", [str(i) for i in ids])
        .execute()
    )
    return {str(row.get("id")) for row in res.data or [] if row.get("id")}

def insert_bookings_service(rows: List[Dict[str, Any]]) -> int:
    """
    Insert via service-role (bypass RLS), utilisé côté webhook Stripe.
    Les erreurs remontent pour que Stripe rejoue l'événement.
    """
    if not rows:
        return 0
    try:
        (
            supabase_client.get_service_supabase()
            .table("bookings")
            .insert(rows)
            .execute()
        )
    except Exception:
        logger.exception("payments.repository.insert_bookings_service failed count=%d", len(rows))
        raise
    return len(rows)
