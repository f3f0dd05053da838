"""
Calcul des totaux du checkout: logique pure (pas de Stripe, pas de DB).
Recalculé à chaque lecture à partir du panier corrigé et des remises en vigueur.
"""
import math
from typing import Dict, Iterable, List, Sequence

from marketplace.config import DEPOSIT_RATE
from .models import CartLineItem, PricingBreakdown

# module marketplace.checkout.pricing
def round_half_up(value: float) -> int:
    """Arrondi au cent le plus proche, .5 vers le haut (montants positifs)."""
    return int(math.floor(value + 0.5))

def compute_pricing(
    lines: Sequence[CartLineItem],
    discount_amount: int = 0,
    referral_discount: int = 0,
    *,
    per_item_fee_cents: int,
) -> PricingBreakdown:
    """
    Agrège les lignes corrigées (prix de base + premium + frais de déplacement) en totaux.
    - Remise coupon et remise parrainage s'additionnent; le total remisé est planché à 0.
    - Acompte: 50% du total remisé; frais de service: forfait par ligne fourni par l'appelant.
    - Panier vide: tout à zéro.
    """
    count = len(lines)
    subtotal = sum(line.line_total for line in lines)
    total_discount = int(discount_amount or 0) + int(referral_discount or 0)
    discounted_total = max(0, subtotal - total_discount)
    deposit_amount = round_half_up(discounted_total * DEPOSIT_RATE)
    service_fee_total = count * per_item_fee_cents
    return PricingBreakdown(
        line_item_count=count,
        subtotal=subtotal,
        total_discount=total_discount,
        discounted_total=discounted_total,
        deposit_amount=deposit_amount,
        service_fee_total=service_fee_total,
        grand_total=deposit_amount + service_fee_total,
        remaining_balance=discounted_total - deposit_amount,
    )

def validate_lines(lines: Iterable[CartLineItem]) -> List[Dict[str, str]]:
    """
    Retourne les lignes invalides [{id, reason}] (vendor.id, venue.id ou prix de base positif manquant).
    Une liste non vide bloque le passage au paiement.
    """
    problems: List[Dict[str, str]] = []
    for line in lines:
        if not line.vendor.id:
            problems.append({"id": line.id, "reason": "missing_vendor"})
        elif not line.venue or not line.venue.id:
            problems.append({"id": line.id, "reason": "missing_venue"})
        elif line.package.base_price <= 0:
            problems.append({"id": line.id, "reason": "invalid_price"})
    return problems

def _largest_remainder(total: int, weights: Sequence[int]) -> List[int]:
    """Répartit `total` proportionnellement aux poids; la somme des parts vaut exactement `total`."""
    weight_sum = sum(weights)
    if total <= 0 or weight_sum <= 0:
        return [0] * len(weights)
    parts = [total * w // weight_sum for w in weights]
    remainders = [total * w % weight_sum for w in weights]
    leftover = total - sum(parts)
    # À reste égal, l'ordre du panier départage
    for idx in sorted(range(len(weights)), key=lambda i: -remainders[i])[:leftover]:
        parts[idx] += 1
    return parts

def split_line_amounts(lines: Sequence[CartLineItem], total_discount: int = 0) -> List[Dict[str, int]]:
    """
    Ventile les montants par ligne pour la création des réservations:
    - discount: remise répartie au prorata du total ligne (jamais au-delà de celui-ci)
    - deposit: acompte global de compute_pricing réparti au prorata du montant net
    - final_payment: solde restant dû au prestataire
    Les sommes par ligne redonnent total_discount (plafonné au sous-total),
    deposit_amount et remaining_balance.
    """
    if not lines:
        return []
    prices = [line.line_total for line in lines]
    subtotal = sum(prices)
    discounts = _largest_remainder(min(max(0, int(total_discount or 0)), subtotal), prices)
    nets = [price - share for price, share in zip(prices, discounts)]
    deposits = _largest_remainder(round_half_up(sum(nets) * DEPOSIT_RATE), nets)
    return [
        {
            "price": price,
            "discount": share,
            "deposit": deposit,
            "final_payment": net - deposit,
        }
        for price, share, net, deposit in zip(prices, discounts, nets, deposits)
    ]
