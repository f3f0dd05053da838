import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field
from starlette.concurrency import run_in_threadpool

from marketplace.config import SUMMARY_SERVICE_FEE_PER_ITEM_CENTS
from marketplace.utils.security import require_user, get_access_token
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.fees import service as fees_service
from marketplace.discounts import service as discounts_service
from .cart import build_cart
from .models import CustomerDetails
from .pricing import compute_pricing
from .session import CheckoutSession, store

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])

class CartRequest(BaseModel):
    items: List[Dict[str, Any]] = Field(min_length=1)

class SummaryRequest(CartRequest):
    discount_code: Optional[str] = None

class DetailsRequest(BaseModel):
    partner1_name: str
    partner2_name: str = ""
    email: EmailStr
    phone: str
    billing_address: str
    city: str
    state: str
    zip_code: str
    guest_count: Optional[str] = None
    special_requests: Optional[str] = None

class CodeRequest(BaseModel):
    code: str

class SignatureRequest(BaseModel):
    signature: str = ""

class CardStatusRequest(BaseModel):
    ready: Optional[bool] = None
    complete: Optional[bool] = None

class PayRequest(BaseModel):
    payment_method_id: str
    terms_accepted: bool = False

def _session(checkout_id: str, user: Dict[str, Any]) -> CheckoutSession:
    return store.get(checkout_id, user.get("id"))

# module marketplace.checkout.views
@router.post("")
async def start_checkout(req: CartRequest, request: Request, user: Dict[str, Any] = Depends(require_user)):
    """
    Démarre un checkout à partir du panier (JSON front).
    - Construit les lignes, résout premiums/frais de déplacement, enregistre la session.
    - Retour: snapshot complet (étape details).
    """
    lines = build_cart(req.items)
    session = CheckoutSession(user=user, access_token=get_access_token(request) or "", lines=lines)
    store.add(session)
    await session.resolve_fees()
    logger.info("checkout.views start id=%s user_id=%s lines=%d", session.id, session.user_id, len(lines))
    return session.snapshot()

@router.post("/summary", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
async def order_summary(req: SummaryRequest, user: Dict[str, Any] = Depends(require_user)):
    """
    Aperçu du récapitulatif de commande (frais de service réduits de l'aperçu panier).
    Un code promo optionnel est validé mais jamais mémorisé.
    """
    lines = await run_in_threadpool(fees_service.resolve_fees, build_cart(req.items))
    subtotal = sum(line.line_total for line in lines)
    discount = None
    status = None
    message = None
    if req.discount_code:
        status, payload = await run_in_threadpool(discounts_service.validate_discount_code, req.discount_code, subtotal)
        if status == "valid":
            discount = payload["adjustment"]
        else:
            message = payload.get("message")
    breakdown = compute_pricing(
        lines,
        discount.magnitude if discount else 0,
        per_item_fee_cents=SUMMARY_SERVICE_FEE_PER_ITEM_CENTS,
    )
    return {
        "lines": [line.model_dump() for line in lines],
        "pricing": breakdown.model_dump(),
        "discount": discount.model_dump() if discount else None,
        "discount_status": status,
        "discount_message": message,
    }

@router.get("/{checkout_id}")
def get_checkout(checkout_id: str, user: Dict[str, Any] = Depends(require_user)):
    return _session(checkout_id, user).snapshot()

@router.put("/{checkout_id}/details")
async def submit_details(checkout_id: str, req: DetailsRequest, user: Dict[str, Any] = Depends(require_user)):
    """Enregistre les coordonnées puis charge les contrats (étape 2)."""
    session = _session(checkout_id, user)
    session.submit_details(CustomerDetails(**req.model_dump()))
    await session.begin_contracts()
    return session.snapshot()

@router.post("/{checkout_id}/discount", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def apply_discount(checkout_id: str, req: CodeRequest, user: Dict[str, Any] = Depends(require_user)):
    session = _session(checkout_id, user)
    await session.apply_discount(req.code)
    return session.snapshot()

@router.delete("/{checkout_id}/discount")
def remove_discount(checkout_id: str, user: Dict[str, Any] = Depends(require_user)):
    session = _session(checkout_id, user)
    session.remove_discount()
    return session.snapshot()

@router.post("/{checkout_id}/referral", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def apply_referral(checkout_id: str, req: CodeRequest, user: Dict[str, Any] = Depends(require_user)):
    session = _session(checkout_id, user)
    await session.apply_referral(req.code)
    return session.snapshot()

@router.delete("/{checkout_id}/referral")
def remove_referral(checkout_id: str, user: Dict[str, Any] = Depends(require_user)):
    session = _session(checkout_id, user)
    session.remove_referral()
    return session.snapshot()

@router.post("/{checkout_id}/contracts/complete")
def complete_contracts(checkout_id: str, user: Dict[str, Any] = Depends(require_user)):
    session = _session(checkout_id, user)
    session.complete_contracts()
    return session.snapshot()

@router.put("/{checkout_id}/contracts/{service_type}")
def set_pending_signature(checkout_id: str, service_type: str, req: SignatureRequest, user: Dict[str, Any] = Depends(require_user)):
    """Saisie de la signature (non confirmée)."""
    session = _session(checkout_id, user)
    session.set_pending_signature(service_type, req.signature)
    return session.snapshot()

@router.post("/{checkout_id}/contracts/{service_type}/confirm")
def confirm_signature(checkout_id: str, service_type: str, user: Dict[str, Any] = Depends(require_user)):
    session = _session(checkout_id, user)
    session.confirm_signature(service_type)
    return session.snapshot()

@router.delete("/{checkout_id}/contracts/{service_type}")
def unset_signature(checkout_id: str, service_type: str, user: Dict[str, Any] = Depends(require_user)):
    session = _session(checkout_id, user)
    session.unset_signature(service_type)
    return session.snapshot()

@router.post("/{checkout_id}/back")
def go_back(checkout_id: str, user: Dict[str, Any] = Depends(require_user)):
    session = _session(checkout_id, user)
    session.back()
    return session.snapshot()

@router.post("/{checkout_id}/intent", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_intent(checkout_id: str, user: Dict[str, Any] = Depends(require_user)):
    """
    Crée le PaymentIntent d'acompte pour le total courant.
    - 'accepted' vaut false si le total a changé pendant la création (intent ignoré, à redemander).
    """
    session = _session(checkout_id, user)
    result = await session.create_intent()
    return {"accepted": result["accepted"], "checkout": session.snapshot()}

@router.post("/{checkout_id}/card")
def update_card_status(checkout_id: str, req: CardStatusRequest, user: Dict[str, Any] = Depends(require_user)):
    session = _session(checkout_id, user)
    session.update_card_status(ready=req.ready, complete=req.complete)
    return session.snapshot()

@router.post("/{checkout_id}/pay")
async def pay(checkout_id: str, req: PayRequest, user: Dict[str, Any] = Depends(require_user)):
    """
    Confirme le paiement par carte puis attend les réservations (webhook Stripe).
    - 402: paiement non abouti (on reste à l'étape paiement)
    - 500 booking_confirmation_failed: paiement reçu mais réservations introuvables
    - La session est retirée du store une fois confirmée (GET ensuite: 404)
    """
    session = _session(checkout_id, user)
    snapshot = await session.pay(payment_method_id=req.payment_method_id, terms_accepted=req.terms_accepted)
    # Checkout terminé: la session ne sert plus
    store.discard(checkout_id)
    return snapshot
