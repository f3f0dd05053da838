"""
Accès aux données pour la résolution des frais (premium prestataire, frais de déplacement).
Tables: vendor_premiums, venues, vendor_service_areas.
- Retourne None si la ligne est absente ou en cas d'erreur (erreur loggée).
"""
from typing import Optional
import logging
import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

def _first_row(res) -> Optional[dict]:
    rows = getattr(res, "data", None) or []
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows or None

# module marketplace.fees.repository
def get_vendor_premium(vendor_id: str) -> Optional[int]:
    """Premium forfaitaire du prestataire (vendor_premiums.amount, en cents)."""
    if not vendor_id:
        return None
    try:
        res = (
            supabase_client.get_supabase()
            .table("vendor_premiums")
            .select("amount")
            .eq("vendor_id", vendor_id)
            .limit(1)
            .execute()
        )
        row = _first_row(res)
        return int(row.get("amount") or 0) if row else None
    except Exception:
        logger.exception("fees.repository.get_vendor_premium failed vendor_id=%s", vendor_id)
        return None

def get_venue_service_area(venue_id: str) -> Optional[str]:
    """Zone de service rattachée au lieu de réception (venues.service_area_id)."""
    if not venue_id:
        return None
    try:
        res = (
            supabase_client.get_supabase()
            .table("venues")
            .select("service_area_id")
            .eq("id", venue_id)
            .limit(1)
            .execute()
        )
        row = _first_row(res)
        if not row or not row.get("service_area_id"):
            return None
        return str(row["service_area_id"])
    except Exception:
        logger.exception("fees.repository.get_venue_service_area failed venue_id=%s", venue_id)
        return None

def get_travel_fee(vendor_id: str, service_area_id: str) -> Optional[int]:
    """Frais de déplacement du prestataire pour une zone (vendor_service_areas.travel_fee)."""
    if not vendor_id or not service_area_id:
        return None
    try:
        res = (
            supabase_client.get_supabase()
            .table("vendor_service_areas")
            .select("travel_fee")
            .eq("vendor_id", vendor_id)
            .eq("service_area_id", service_area_id)
            .limit(1)
            .execute()
        )
        row = _first_row(res)
        return int(row.get("travel_fee") or 0) if row else None
    except Exception:
        logger.exception("fees.repository.get_travel_fee failed vendor_id=%s service_area_id=%s", vendor_id, service_area_id)
        return None
