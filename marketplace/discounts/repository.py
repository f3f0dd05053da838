"""
Accès aux données pour les codes promo (coupons) et codes de parrainage (vendor_referral_codes).
- Aucune ligne (PGRST116) -> None
- Toute autre erreur est loggée puis relevée: l'appelant la traite comme transitoire.
"""
from typing import Any, Dict, Optional
import logging
from postgrest.exceptions import APIError
import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

NO_ROWS_CODE = "PGRST116"

def _is_no_rows(err: APIError) -> bool:
    return getattr(err, "code", None) == NO_ROWS_CODE

# module marketplace.discounts.repository
def get_coupon_by_code(code: str) -> Optional[Dict[str, Any]]:
    """Coupon actif (is_valid = true) correspondant au code normalisé."""
    try:
        res = (
            supabase_client.get_supabase()
            .table("coupons")
            .select("id, code, discount_percent, discount_amount, expiration_date, is_valid")
            .eq("code", code)
            .eq("is_valid", True)
            .single()
            .execute()
        )
        return res.data or None
    except APIError as e:
        if _is_no_rows(e):
            return None
        logger.exception("discounts.repository.get_coupon_by_code failed code=%s", code)
        raise

def get_referral_by_code(code: str) -> Optional[Dict[str, Any]]:
    """Code de parrainage actif, avec le nom du prestataire parrain (jointure vendors)."""
    try:
        res = (
            supabase_client.get_supabase()
            .table("vendor_referral_codes")
            .select("id, code, vendor_id, discount_amount, expiration_date, is_active, vendors(name)")
            .eq("code", code)
            .eq("is_active", True)
            .single()
            .execute()
        )
        return res.data or None
    except APIError as e:
        if _is_no_rows(e):
            return None
        logger.exception("discounts.repository.get_referral_by_code failed code=%s", code)
        raise
