from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
import logging

from marketplace.checkout.models import AppliedAdjustment
from marketplace.checkout.pricing import round_half_up
from . import repository

logger = logging.getLogger(__name__)

INVALID_MESSAGE = "Invalid or expired discount code"
EXPIRED_MESSAGE = "This discount code has expired"
ERROR_MESSAGE = "Error validating discount code"

def normalize_code(code: str) -> str:
    return (code or "").strip().upper()

def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning("discounts.service expiration_date illisible: %r", value)
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def is_expired(row: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    expires_at = _parse_datetime(row.get("expiration_date"))
    if expires_at is None:
        return False
    return expires_at < (now or datetime.now(timezone.utc))

def coupon_amount(row: Dict[str, Any], subtotal: int) -> Tuple[str, int, Optional[float]]:
    """
    Montant de remise d'un coupon:
    - discount_percent > 0 -> pourcentage du sous-total (arrondi au cent)
    - sinon discount_amount > 0 -> montant fixe
    - sinon 0
    """
    percent = float(row.get("discount_percent") or 0)
    if percent > 0:
        return ("percentage", round_half_up(max(0, subtotal) * percent / 100), percent)
    amount = int(row.get("discount_amount") or 0)
    if amount > 0:
        return ("fixed", amount, None)
    return ("fixed", 0, None)

def validate_discount_code(code: str, subtotal: int, now: Optional[datetime] = None) -> Tuple[str, Dict[str, Any]]:
    """
    Valide un code promo contre la table 'coupons'.
    Retourne l'un des statuts: 'valid', 'invalid', 'expired', 'error'.
    Pour 'valid', le payload contient 'adjustment' (AppliedAdjustment).
    """
    normalized = normalize_code(code)
    if not normalized:
        return ("invalid", {"message": INVALID_MESSAGE, "reason": "empty_code"})

    try:
        row = repository.get_coupon_by_code(normalized)
    except Exception:
        logger.exception("discounts.service.validate_discount_code lookup failed code=%s", normalized)
        return ("error", {"message": ERROR_MESSAGE, "reason": "lookup_failed"})

    if not row:
        return ("invalid", {"message": INVALID_MESSAGE, "reason": "not_found"})
    if is_expired(row, now):
        return ("expired", {"message": EXPIRED_MESSAGE, "reason": "expired"})

    kind, magnitude, percent = coupon_amount(row, subtotal)
    adjustment = AppliedAdjustment(code=normalized, kind=kind, magnitude=magnitude, percent=percent, source="discount")
    logger.info("discounts.service coupon applied code=%s kind=%s magnitude=%s", normalized, kind, magnitude)
    return ("valid", {"adjustment": adjustment})

def validate_referral_code(code: str, now: Optional[datetime] = None) -> Tuple[str, Dict[str, Any]]:
    """
    Valide un code de parrainage prestataire (remise fixe, indépendante du sous-total).
    Mêmes statuts que validate_discount_code.
    """
    normalized = normalize_code(code)
    if not normalized:
        return ("invalid", {"message": INVALID_MESSAGE, "reason": "empty_code"})

    try:
        row = repository.get_referral_by_code(normalized)
    except Exception:
        logger.exception("discounts.service.validate_referral_code lookup failed code=%s", normalized)
        return ("error", {"message": ERROR_MESSAGE, "reason": "lookup_failed"})

    if not row:
        return ("invalid", {"message": INVALID_MESSAGE, "reason": "not_found"})
    if is_expired(row, now):
        return ("expired", {"message": EXPIRED_MESSAGE, "reason": "expired"})

    vendor = row.get("vendors") or {}
    if isinstance(vendor, list):
        vendor = vendor[0] if vendor else {}
    adjustment = AppliedAdjustment(
        code=normalized,
        kind="fixed",
        magnitude=max(0, int(row.get("discount_amount") or 0)),
        source="referral",
        source_vendor_name=vendor.get("name") or None,
    )
    logger.info("discounts.service referral applied code=%s magnitude=%s", normalized, adjustment.magnitude)
    return ("valid", {"adjustment": adjustment})
