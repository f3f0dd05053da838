"""
Sérialisation/désérialisation des métadonnées Stripe du PaymentIntent d'acompte.
Stripe limite les métadonnées (50 clés, 500 caractères par valeur): chaque ligne
du panier est stockée sous sa propre clé 'item_<n>' en JSON compact.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from marketplace.errors import CheckoutValidationError
from marketplace.checkout.models import AppliedAdjustment, CartLineItem, CustomerDetails, PricingBreakdown
from marketplace.checkout.pricing import split_line_amounts

logger = logging.getLogger(__name__)

METADATA_TYPE = "wedding_booking_deposit"
ITEM_PREFIX = "item_"
MAX_ITEMS = 35
MAX_VALUE_LENGTH = 500

def _short(value: Optional[str], limit: int = 60) -> str:
    return str(value or "")[:limit]

def _item_payload(line: CartLineItem, booking_id: str, amounts: Dict[str, int]) -> str:
    payload = {
        "booking_id": booking_id,
        "package_id": line.package.id,
        "service_type": _short(line.package.service_type, 40),
        "vendor_id": line.vendor.id,
        "venue_id": line.venue.id if line.venue else "",
        "price": amounts["price"],
        "deposit": amounts["deposit"],
        "discount": amounts["discount"],
        "final_payment": amounts["final_payment"],
        "event_date": _short(line.event_date, 20),
        "event_time": _short(line.event_start_time, 20),
        "end_time": _short(line.event_end_time, 20),
    }
    raw = json.dumps(payload, separators=(",", ":"))
    if len(raw) > MAX_VALUE_LENGTH:
        raise CheckoutValidationError(f"Cart item {line.id} cannot be attached to the payment", code="metadata_too_large")
    return raw

# module marketplace.payments.metadata
def make_intent_metadata(
    *,
    user_id: str,
    customer: CustomerDetails,
    lines: Sequence[CartLineItem],
    booking_ids: Sequence[str],
    pricing: PricingBreakdown,
    per_item_fee_cents: int,
    discount: Optional[AppliedAdjustment] = None,
    referral: Optional[AppliedAdjustment] = None,
) -> Dict[str, str]:
    """
    Construit les métadonnées du PaymentIntent (toutes les valeurs en str, exigence Stripe).
    - une clé item_<n> par ligne, avec l'id de réservation pré-alloué
    - remises, acompte, solde et identité du client
    """
    if len(lines) != len(booking_ids):
        raise ValueError("booking_ids must match cart lines")
    if len(lines) > MAX_ITEMS:
        raise CheckoutValidationError(f"Too many items in cart (max {MAX_ITEMS})", code="too_many_items")

    amounts = split_line_amounts(lines, pricing.total_discount)
    meta: Dict[str, str] = {
        "type": METADATA_TYPE,
        "user_id": user_id,
        "customer_name": _short(customer.couple_name or "Wedding Customer", 200),
        "customer_email": _short(customer.email, 200),
        "guest_count": _short(customer.guest_count, 20),
        "item_count": str(len(lines)),
        "discount_code": discount.code if discount else "",
        "discount_amount": str(discount.magnitude if discount else 0),
        "referral_code": referral.code if referral else "",
        "referral_discount": str(referral.magnitude if referral else 0),
        "deposit_amount": str(pricing.deposit_amount),
        "remaining_balance": str(pricing.remaining_balance),
        "platform_fee": str(per_item_fee_cents),
    }
    for idx, (line, booking_id) in enumerate(zip(lines, booking_ids)):
        meta[f"{ITEM_PREFIX}{idx}"] = _item_payload(line, booking_id, amounts[idx])
    return meta

def extract_items(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Relit les lignes item_<n> dans l'ordre.
    Tolérant aux erreurs: une ligne illisible est ignorée (et loggée).
    """
    indexed: List[Tuple[int, Dict[str, Any]]] = []
    for key, raw in (metadata or {}).items():
        suffix = key[len(ITEM_PREFIX):] if key.startswith(ITEM_PREFIX) else ""
        # item_count et autres clés globales ne sont pas des lignes
        if not suffix.isdigit():
            continue
        try:
            item = json.loads(raw)
        except (ValueError, TypeError):
            logger.warning("payments.metadata item illisible key=%s", key)
            continue
        if isinstance(item, dict) and item.get("booking_id"):
            indexed.append((int(suffix), item))
    return [item for _, item in sorted(indexed, key=lambda pair: pair[0])]

def extract_metadata(event: Dict[str, Any]) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """
    Extrait (metadata, items) depuis un event Stripe (webhook).
    - Attend event.data.object.metadata
    """
    data_obj = (event or {}).get("data", {}).get("object", {}) if isinstance(event, dict) else {}
    meta = data_obj.get("metadata") or {}
    return meta, extract_items(meta)
