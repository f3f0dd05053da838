"""
Cas d'usage 'payments': matérialisation des réservations à partir du webhook Stripe.
Une réservation par ligne du panier, avec l'id pré-alloué au moment de la création de l'intent.
"""
from typing import Any, Dict, List
import logging

from . import repository
from . import metadata as meta

logger = logging.getLogger(__name__)

HANDLED_EVENT = "payment_intent.succeeded"

def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0

def build_booking_rows(intent: Dict[str, Any], metadata: Dict[str, Any], items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Convertit les lignes item_<n> en lignes 'bookings' (statut confirmed)."""
    platform_fee = _int(metadata.get("platform_fee"))
    rows: List[Dict[str, Any]] = []
    for item in items:
        rows.append({
            "id": item["booking_id"],
            "couple_id": metadata.get("user_id") or None,
            "vendor_id": item.get("vendor_id") or None,
            "package_id": item.get("package_id") or None,
            "venue_id": item.get("venue_id") or None,
            "service_type": item.get("service_type") or None,
            "status": "confirmed",
            "amount": _int(item.get("price")),
            "initial_payment": _int(item.get("deposit")),
            "discount_amount": _int(item.get("discount")),
            "final_payment": _int(item.get("final_payment")),
            "platform_fee": platform_fee,
            "event_date": item.get("event_date") or None,
            "event_time": item.get("event_time") or None,
            "end_time": item.get("end_time") or None,
            "stripe_payment_intent_id": intent.get("id"),
        })
    return rows

def materialize_bookings(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Traite un événement Stripe déjà validé.
    - payment_intent.succeeded: insère les réservations manquantes (idempotent sur l'id)
    - autres types: ignorés
    """
    event_type = (event or {}).get("type")
    if event_type != HANDLED_EVENT:
        return {"status": "ignored", "type": event_type}

    intent = ((event.get("data") or {}).get("object") or {})
    metadata, items = meta.extract_metadata(event)
    if metadata.get("type") != meta.METADATA_TYPE or not items:
        logger.warning("payments.service intent=%s sans lignes de réservation", intent.get("id"))
        return {"status": "ignored", "type": event_type}

    ids = [item["booking_id"] for item in items]
    existing = repository.existing_booking_ids(ids)
    rows = [row for row in build_booking_rows(intent, metadata, items) if row["id"] not in existing]
    created = repository.insert_bookings_service(rows)
    logger.info(
        "payments.service bookings materialized intent=%s created=%d skipped=%d",
        intent.get("id"), created, len(existing),
    )
    return {"status": "ok", "created": created, "skipped": len(existing)}
