"""
Adaptateur Stripe: centralise les appels et la configuration Stripe (PaymentIntent + webhooks).
Les objets Stripe sont convertis en dicts simples avant de sortir du module.
"""
import json
from typing import Any, Dict, Optional

import stripe
from fastapi import Request

from marketplace.config import PAYMENT_CURRENCY, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET

# module marketplace.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY si disponible.
    - En absence de clé, les appels Stripe échoueront côté SDK (ex: No API key provided).
    """
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
    return stripe

def _intent_to_dict(intent) -> Dict[str, Any]:
    last_error = getattr(intent, "last_payment_error", None)
    return {
        "id": getattr(intent, "id", None),
        "client_secret": getattr(intent, "client_secret", None),
        "status": getattr(intent, "status", None),
        "amount": getattr(intent, "amount", None),
        "last_payment_error": getattr(last_error, "message", None) if last_error else None,
    }

def create_intent(
    *,
    amount: int,
    metadata: Dict[str, str],
    currency: str = PAYMENT_CURRENCY,
    receipt_email: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Crée un PaymentIntent (paiement par carte, confirmation côté serveur).
    Retour: {"id", "client_secret", "status", "amount", ...}
    """
    require_stripe()
    params: Dict[str, Any] = {
        "amount": int(amount),
        "currency": currency,
        "metadata": metadata,
        "payment_method_types": ["card"],
    }
    if receipt_email:
        params["receipt_email"] = receipt_email
    intent = stripe.PaymentIntent.create(**params)
    return _intent_to_dict(intent)

def confirm_card_payment(
    *,
    intent_id: str,
    payment_method_id: str,
    billing_details: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Rattache les coordonnées de facturation au moyen de paiement puis confirme l'intent.
    Les erreurs Stripe (carte refusée, etc.) remontent telles quelles (stripe.StripeError).
    """
    require_stripe()
    stripe.PaymentMethod.modify(payment_method_id, billing_details=billing_details)
    intent = stripe.PaymentIntent.confirm(intent_id, payment_method=payment_method_id)
    return _intent_to_dict(intent)

async def parse_event(request: Request) -> Dict[str, Any]:
    """
    Parse et valide un événement Stripe signé (webhook).
    - Lit le body brut + en-tête Stripe-Signature
    - Valide la signature via Webhook.construct_event (STRIPE_WEBHOOK_SECRET)
    Retour: le payload JSON de l'événement (dict) si la signature est valide.
    """
    require_stripe()
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature") or ""
    stripe.Webhook.construct_event(payload, sig_header, STRIPE_WEBHOOK_SECRET or "")
    return json.loads(payload)
