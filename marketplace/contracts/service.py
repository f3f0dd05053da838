"""
Contrats de prestation: rendu des modèles et porte de signature (ContractGate).

Cycle par type de service: non signé -> en attente (saisi, non confirmé) -> signé (figé).
Seul unset() permet de revenir à l'état non signé.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
import logging

from marketplace.errors import CheckoutValidationError, TransientLookupError
from marketplace.checkout.models import CartLineItem, ContractSignature, CustomerDetails
from marketplace.checkout.pricing import round_half_up
from marketplace.config import DEPOSIT_RATE, SERVICE_FEE_PER_ITEM_CENTS
from . import repository

logger = logging.getLogger(__name__)

def _money(cents: int, decimals: int = 2) -> str:
    return f"${cents / 100:,.{decimals}f}"

def render_contract(template: str, line: Optional[CartLineItem], customer: CustomerDetails) -> str:
    """Remplace les variables {{...}} du modèle par les données du panier et du client."""
    values = {
        "{{client_name}}": customer.couple_name,
        "{{vendor_name}}": (line.vendor.name if line else "") or "Vendor",
        "{{package_name}}": (line.package.name if line else "") or "Service",
        "{{event_date}}": (line.event_date if line else None) or "N/A",
        "{{event_time}}": f"{(line.event_start_time if line else None) or ''} to {(line.event_end_time if line else None) or ''}",
        "{{venue}}": (line.venue.name if line and line.venue else "") or "N/A",
        "{{price}}": _money(line.line_total if line else 0),
    }
    content = template
    for placeholder, value in values.items():
        content = content.replace(placeholder, value)
    return content

def default_contract(service_type: str, line: Optional[CartLineItem], customer: CustomerDetails) -> str:
    """Contrat générique utilisé quand aucun modèle n'existe pour le type de service."""
    price = line.line_total if line else 0
    deposit = round_half_up(price * DEPOSIT_RATE)
    label = service_type or "service"
    vendor_name = (line.vendor.name if line else "") or "the selected vendor"
    location = (line.venue.name if line and line.venue else "") or "[Event Location]"
    service = (line.package.name if line else "") or label
    return (
        f"{label.upper()} SERVICE AGREEMENT\n\n"
        f"This agreement is between {customer.couple_name or '[Client]'} (Client) and {vendor_name} "
        f"(Service Provider) for {label.lower()} services.\n\n"
        "EVENT DETAILS:\n"
        f"- Date: {(line.event_date if line else None) or '[Event Date]'}\n"
        f"- Location: {location}\n"
        f"- Service: {service}\n\n"
        "SERVICES PROVIDED:\n"
        f"- Professional {label.lower()} services\n\n"
        "PAYMENT TERMS:\n"
        f"- Total Amount: {_money(price, 0)}\n"
        f"- Deposit (50%): {_money(deposit, 0)}\n"
        f"- Balance Due: {_money(price - deposit, 0)}\n"
        f"- Service Fee: {_money(SERVICE_FEE_PER_ITEM_CENTS, 0)}\n\n"
        "TERMS AND CONDITIONS:\n"
        f"1. The Service Provider agrees to provide professional {label.lower()} services for the specified event.\n"
        "2. The Client agrees to pay the total amount as outlined in the payment schedule.\n"
        "3. Cancellation policy: 30 days notice required for partial refund of deposit.\n"
        "4. The Service Provider retains copyright to all work but grants usage rights to the Client.\n"
        "5. Weather contingency plans will be discussed prior to the event.\n"
        "6. Any changes to services must be agreed upon in writing by both parties.\n\n"
        "By signing below, both parties agree to the terms outlined in this contract."
    )

def _first_line_by_type(lines: Sequence[CartLineItem]) -> Dict[str, CartLineItem]:
    out: Dict[str, CartLineItem] = {}
    for line in lines:
        out.setdefault(line.package.service_type, line)
    return out

class ContractGate:
    """État de signature des contrats pour un checkout."""

    def __init__(self):
        self.required: List[str] = []
        self.templates: Dict[str, str] = {}
        self.contents: Dict[str, str] = {}
        self.pending: Dict[str, str] = {}
        self.signed: Dict[str, ContractSignature] = {}
        self.started = False

    def begin(self, lines: Sequence[CartLineItem], customer: CustomerDetails, templates: Dict[str, str]) -> None:
        """Fige la liste des types requis (ordre du panier) et rend les contenus."""
        by_type = _first_line_by_type(lines)
        self.required = list(by_type.keys())
        self.templates = {st: templates.get(st) or "" for st in self.required}
        # Un type qui ne fait plus partie du panier perd sa signature
        self.signed = {st: sig for st, sig in self.signed.items() if st in by_type}
        self.pending = {st: v for st, v in self.pending.items() if st in by_type}
        self.started = True
        self.refresh(lines, customer)
        logger.info("contracts.gate begin required=%s", self.required)

    def refresh(self, lines: Sequence[CartLineItem], customer: CustomerDetails) -> None:
        """Re-rend les contenus (nom du couple, date, lieu...). Les signatures existantes restent valides."""
        by_type = _first_line_by_type(lines)
        contents: Dict[str, str] = {}
        for st in self.required:
            line = by_type.get(st)
            template = self.templates.get(st)
            contents[st] = render_contract(template, line, customer) if template else default_contract(st, line, customer)
        self.contents = contents

    def _require_type(self, service_type: str) -> None:
        if not self.started:
            raise CheckoutValidationError("Contracts are not loaded yet", code="contracts_not_started")
        if service_type not in self.required:
            raise CheckoutValidationError(f"No contract for service type {service_type}", code="unknown_contract")

    def set_pending(self, service_type: str, text: str) -> None:
        self._require_type(service_type)
        if service_type in self.signed:
            raise CheckoutValidationError("Contract already signed", code="contract_already_signed")
        self.pending[service_type] = text or ""

    def confirm(self, service_type: str, now: Optional[datetime] = None) -> ContractSignature:
        self._require_type(service_type)
        if service_type in self.signed:
            return self.signed[service_type]
        name = (self.pending.get(service_type) or "").strip()
        if not name:
            raise CheckoutValidationError("Please type your full legal name to sign", code="empty_signature")
        signature = ContractSignature(
            service_type=service_type,
            signed_name=name,
            template_content=self.contents.get(service_type, ""),
            signed_at=now or datetime.now(timezone.utc),
        )
        self.signed[service_type] = signature
        self.pending.pop(service_type, None)
        logger.info("contracts.gate signed service_type=%s", service_type)
        return signature

    def unset(self, service_type: str) -> None:
        self._require_type(service_type)
        self.signed.pop(service_type, None)
        self.pending.pop(service_type, None)

    def missing(self) -> List[str]:
        return [st for st in self.required if st not in self.signed]

    def is_complete(self) -> bool:
        return self.started and bool(self.required) and not self.missing()

    def stale(self) -> List[str]:
        """Types signés dont le contenu rendu a changé depuis la signature."""
        return [
            st for st, sig in self.signed.items()
            if self.contents.get(st) is not None and self.contents[st] != sig.template_content
        ]

    def snapshot(self) -> List[dict]:
        stale = set(self.stale())
        out = []
        for st in self.required:
            sig = self.signed.get(st)
            out.append({
                "service_type": st,
                "content": self.contents.get(st, ""),
                "status": "signed" if sig else ("pending" if st in self.pending else "unsigned"),
                "pending_value": self.pending.get(st),
                "signed_name": sig.signed_name if sig else None,
                "signed_at": sig.signed_at.isoformat() if sig else None,
                "stale": st in stale,
            })
        return out

def load_templates(service_types: Sequence[str]) -> Dict[str, str]:
    """Lecture des modèles; une erreur de lecture empêche d'entrer dans l'étape contrats."""
    try:
        return repository.fetch_templates_by_service_types(service_types)
    except Exception:
        raise TransientLookupError("Failed to load contracts. Please try again.", code="contracts_unavailable")

def persist_signed_contracts(
    signatures: Sequence[ContractSignature],
    *,
    user_id: str,
    user_token: str,
    payment_intent_id: Optional[str] = None,
) -> bool:
    """
    Enregistre les contrats signés après paiement réussi (best-effort).
    Un échec est loggé et n'est jamais remonté.
    """
    rows = [
        {
            "couple_id": user_id,
            "service_type": sig.service_type,
            "content": sig.template_content,
            "signature": sig.signed_name,
            "signed_at": sig.signed_at.isoformat(),
            "status": "signed",
            "stripe_payment_intent_id": payment_intent_id,
        }
        for sig in signatures
    ]
    try:
        ok = repository.insert_contracts(rows, user_token)
    except Exception:
        logger.exception("contracts.service.persist_signed_contracts failed user_id=%s", user_id)
        return False
    if not ok:
        logger.warning("contracts.service.persist_signed_contracts not saved user_id=%s count=%d", user_id, len(rows))
    return ok
