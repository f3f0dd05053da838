"""
Résolution des frais d'une ligne de panier: premium prestataire + frais de déplacement.
- Transformation pure: le panier d'entrée n'est jamais modifié, on retourne des copies.
- Les lectures passent par un objet 'lookups' (par défaut le repository Supabase).
"""
from typing import List, Sequence
import logging

from marketplace.checkout.models import CartLineItem
from . import repository

logger = logging.getLogger(__name__)

def _safe_amount(fn, *args) -> int:
    # Un composant en échec vaut 0, sans bloquer les autres lignes
    try:
        value = fn(*args)
    except Exception:
        logger.exception("fees.service lookup %s failed args=%s", getattr(fn, "__name__", fn), args)
        return 0
    return max(0, int(value or 0))

def _travel_fee(lookups, vendor_id: str, venue_id: str) -> int:
    try:
        area_id = lookups.get_venue_service_area(venue_id)
    except Exception:
        logger.exception("fees.service service area lookup failed venue_id=%s", venue_id)
        return 0
    if not area_id:
        return 0
    return _safe_amount(lookups.get_travel_fee, vendor_id, area_id)

def resolve_line(line: CartLineItem, lookups=repository) -> CartLineItem:
    """Retourne une copie corrigée de la ligne (ou la ligne telle quelle si vendeur/lieu absents)."""
    vendor_id = line.vendor.id
    venue_id = line.venue.id if line.venue else ""
    if not vendor_id or not venue_id:
        return line

    premium = _safe_amount(lookups.get_vendor_premium, vendor_id)
    travel = _travel_fee(lookups, vendor_id, venue_id)
    pkg = line.package.model_copy(update={"premium_amount": premium, "travel_fee": travel})
    return line.model_copy(update={"package": pkg})

def resolve_fees(cart: Sequence[CartLineItem], lookups=repository) -> List[CartLineItem]:
    """Corrige toutes les lignes du panier; chaque ligne est résolue indépendamment."""
    corrected = [resolve_line(line, lookups) for line in cart]
    logger.info(
        "fees.service resolved lines=%d premiums=%d travel=%d",
        len(corrected),
        sum(line.package.premium_amount for line in corrected),
        sum(line.package.travel_fee for line in corrected),
    )
    return corrected
