import logging

import stripe
from fastapi import APIRouter, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from marketplace.payments import stripe_client
from marketplace.payments import service as payments_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module marketplace.payments.views
@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request):
    """
    Webhook Stripe: consomme payment_intent.succeeded pour créer les réservations.
    - Signature: valide via stripe_client.parse_event (Stripe-Signature + STRIPE_WEBHOOK_SECRET)
    - Réponses: {"status": "ok", "created": <int>} ou {"status": "ignored"}
    - Erreurs: 400 si signature/payload invalide; 500 si l'insertion échoue (Stripe rejoue)
    """
    try:
        event = await stripe_client.parse_event(request)
    except (ValueError, stripe.SignatureVerificationError):
        logger.exception("Erreur webhook_stripe: signature ou payload invalide")
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook payload")

    result = await run_in_threadpool(payments_service.materialize_bookings, event)
    return JSONResponse(result)
