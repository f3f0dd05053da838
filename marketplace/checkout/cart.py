"""
Normalisation du panier brut envoyé par le front (liste de dicts) en CartLineItem.
"""
from typing import Any, Dict, List
from uuid import uuid4

from marketplace.errors import CheckoutValidationError
from .models import CartLineItem, Package, Vendor, Venue

def _to_cents(value: Any) -> int:
    try:
        return max(0, int(round(float(value or 0))))
    except (TypeError, ValueError):
        return 0

def _text(value: Any) -> str:
    return str(value or "").strip()

def build_cart(items: List[Dict[str, Any]]) -> List[CartLineItem]:
    """
    Construit les lignes du panier à partir du JSON front.
    - package.base_price (ou package.price) en cents; premium/travel repartent de 0 (résolus ensuite).
    - Valeurs par défaut tolérantes (service_type 'unknown', vendeur 'Unknown Vendor').
    - Lève CheckoutValidationError si le panier est vide ou si un id est dupliqué.
    """
    if not items:
        raise CheckoutValidationError("Cart is empty", code="empty_cart")

    lines: List[CartLineItem] = []
    seen = set()
    for raw in items:
        pkg = raw.get("package") or {}
        vendor = raw.get("vendor") or {}
        venue = raw.get("venue") or None
        line_id = _text(raw.get("id")) or str(uuid4())
        if line_id in seen:
            raise CheckoutValidationError(f"Duplicate cart item {line_id}", code="duplicate_item")
        seen.add(line_id)
        lines.append(CartLineItem(
            id=line_id,
            package=Package(
                id=_text(pkg.get("id")),
                service_type=_text(pkg.get("service_type")) or "unknown",
                name=_text(pkg.get("name")) or "Unknown Package",
                base_price=_to_cents(pkg.get("base_price", pkg.get("price"))),
            ),
            vendor=Vendor(
                id=_text(vendor.get("id")),
                name=_text(vendor.get("name")) or "Unknown Vendor",
                stripe_account_id=vendor.get("stripe_account_id") or None,
            ),
            venue=Venue(id=_text(venue.get("id")), name=_text(venue.get("name"))) if venue else None,
            event_date=_text(raw.get("event_date")) or None,
            event_start_time=_text(raw.get("event_start_time") or raw.get("event_time")) or None,
            event_end_time=_text(raw.get("event_end_time") or raw.get("end_time")) or None,
        ))
    return lines

def service_types(lines: List[CartLineItem]) -> List[str]:
    """Types de service distincts, dans l'ordre d'apparition du panier."""
    out: List[str] = []
    for line in lines:
        if line.package.service_type not in out:
            out.append(line.package.service_type)
    return out
