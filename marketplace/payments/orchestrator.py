"""
Orchestration du paiement d'acompte pour une tentative de checkout.

États: idle -> intent_requested -> card_collecting -> confirming -> succeeded
En cas d'échec de confirmation on revient à card_collecting avec le même intent.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

import stripe

from marketplace.errors import CheckoutValidationError, PaymentFailedError
from marketplace.checkout.models import ContractSignature, PaymentIntentState
from marketplace.contracts import service as contracts_service
from . import stripe_client

logger = logging.getLogger(__name__)

IDLE = "idle"
INTENT_REQUESTED = "intent_requested"
CARD_COLLECTING = "card_collecting"
CONFIRMING = "confirming"
SUCCEEDED = "succeeded"

def _gateway_message(err: Exception) -> str:
    return getattr(err, "user_message", None) or str(err) or PaymentFailedError().message

class PaymentOrchestrator:
    def __init__(self, gateway=stripe_client):
        self.gateway = gateway
        self.state = IDLE
        self.intent: Optional[PaymentIntentState] = None
        self.last_error: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.state in (INTENT_REQUESTED, CONFIRMING)

    def create_intent(
        self,
        *,
        amount: int,
        metadata: Dict[str, str],
        generation: int,
        booking_ids: Sequence[str],
        receipt_email: Optional[str] = None,
    ) -> PaymentIntentState:
        """
        Appel bloquant (à exécuter hors boucle): crée le PaymentIntent pour le total donné.
        Le résultat n'est retenu qu'après accept() si la génération de prix n'a pas bougé.
        """
        if self.state in (CONFIRMING, SUCCEEDED):
            raise CheckoutValidationError("Payment already in progress", code="payment_in_progress")
        self.state = INTENT_REQUESTED
        self.intent = None
        self.last_error = None
        try:
            res = self.gateway.create_intent(amount=amount, metadata=metadata, receipt_email=receipt_email)
        except stripe.StripeError as e:
            self.state = IDLE
            self.last_error = _gateway_message(e)
            logger.exception("payments.orchestrator create_intent failed amount=%s", amount)
            raise PaymentFailedError(self.last_error, code="intent_failed")
        except Exception:
            self.state = IDLE
            raise
        if not res.get("client_secret") or not res.get("id"):
            self.state = IDLE
            raise PaymentFailedError("Failed to initialize payment", code="intent_failed")
        return PaymentIntentState(
            client_secret=res["client_secret"],
            intent_id=res["id"],
            grand_total=int(amount),
            generation=generation,
            booking_ids=list(booking_ids),
        )

    def accept(self, intent: PaymentIntentState, current_generation: int) -> bool:
        """Retient l'intent, sauf s'il a été dimensionné pour une génération de prix périmée."""
        if intent.generation != current_generation:
            logger.info(
                "payments.orchestrator stale intent discarded intent=%s generation=%s current=%s",
                intent.intent_id, intent.generation, current_generation,
            )
            if self.state == INTENT_REQUESTED:
                self.state = IDLE
            return False
        self.intent = intent
        self.state = CARD_COLLECTING
        logger.info("payments.orchestrator intent ready intent=%s amount=%s", intent.intent_id, intent.grand_total)
        return True

    def invalidate(self) -> None:
        """Les entrées du prix ont changé: l'intent courant ne correspond plus au total."""
        if self.state in (CONFIRMING, SUCCEEDED):
            return
        if self.intent is not None:
            logger.info("payments.orchestrator intent invalidated intent=%s", self.intent.intent_id)
        self.intent = None
        self.state = IDLE

    def update_card_status(self, *, ready: Optional[bool] = None, complete: Optional[bool] = None) -> PaymentIntentState:
        if self.intent is None:
            raise CheckoutValidationError("Payment is not initialized", code="no_intent")
        update: Dict[str, Any] = {}
        if ready is not None:
            update["card_ready"] = bool(ready)
        if complete is not None:
            update["card_complete"] = bool(complete)
        self.intent = self.intent.model_copy(update=update)
        return self.intent

    def confirm(
        self,
        *,
        payment_method_id: str,
        billing_details: Dict[str, Any],
        terms_accepted: bool,
    ) -> Dict[str, Any]:
        """
        Appel bloquant: confirme le paiement par carte.
        Succès ssi le statut de l'intent est 'succeeded'; sinon PaymentFailedError.
        """
        intent = self.intent
        if intent is None or self.state != CARD_COLLECTING:
            raise CheckoutValidationError("Payment is not initialized", code="no_intent")
        if not intent.card_ready:
            raise CheckoutValidationError("Payment form is still loading", code="card_not_ready")
        if not intent.card_complete:
            raise CheckoutValidationError("Please complete your card details", code="card_incomplete")
        if not terms_accepted:
            raise CheckoutValidationError("Please accept the terms and conditions", code="terms_not_accepted")
        if not payment_method_id:
            raise CheckoutValidationError("Payment method is required", code="payment_method_missing")

        self.state = CONFIRMING
        try:
            res = self.gateway.confirm_card_payment(
                intent_id=intent.intent_id,
                payment_method_id=payment_method_id,
                billing_details=billing_details,
            )
        except stripe.StripeError as e:
            self.state = CARD_COLLECTING
            self.last_error = _gateway_message(e)
            logger.warning("payments.orchestrator confirm failed intent=%s error=%s", intent.intent_id, self.last_error)
            raise PaymentFailedError(self.last_error)
        except Exception:
            self.state = CARD_COLLECTING
            raise

        if res.get("status") != "succeeded":
            self.state = CARD_COLLECTING
            self.last_error = PaymentFailedError().message
            logger.warning("payments.orchestrator intent=%s status=%s", intent.intent_id, res.get("status"))
            raise PaymentFailedError()

        self.state = SUCCEEDED
        self.last_error = None
        logger.info("payments.orchestrator payment succeeded intent=%s", intent.intent_id)
        return res

    def persist_contracts(self, signatures: List[ContractSignature], *, user_id: str, user_token: str) -> bool:
        """Enregistre les contrats signés après succès; un échec est loggé, jamais remonté."""
        if self.state != SUCCEEDED:
            return False
        return contracts_service.persist_signed_contracts(
            signatures,
            user_id=user_id,
            user_token=user_token,
            payment_intent_id=self.intent.intent_id if self.intent else None,
        )

    def snapshot(self) -> Dict[str, Any]:
        intent = self.intent
        return {
            "state": self.state,
            "client_secret": intent.client_secret if intent else None,
            "intent_id": intent.intent_id if intent else None,
            "grand_total": intent.grand_total if intent else None,
            "card_ready": intent.card_ready if intent else False,
            "card_complete": intent.card_complete if intent else False,
            "error": self.last_error,
        }
