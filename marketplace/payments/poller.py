"""
Attente des réservations après paiement réussi.
Les lignes 'bookings' sont créées de façon asynchrone par le webhook Stripe:
on interroge à intervalle fixe, un nombre borné de fois.
"""
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Sequence, Union

from marketplace.config import BOOKING_POLL_INTERVAL_MS, BOOKING_POLL_MAX_ATTEMPTS
from marketplace.errors import BookingConfirmationError
from marketplace.checkout.models import BookingRecord

logger = logging.getLogger(__name__)

FetchFn = Callable[[Sequence[str]], Union[List[dict], Awaitable[List[dict]]]]

# module marketplace.payments.poller
async def poll_for_bookings(
    booking_ids: Sequence[str],
    fetch: FetchFn,
    max_attempts: int = BOOKING_POLL_MAX_ATTEMPTS,
    interval_ms: int = BOOKING_POLL_INTERVAL_MS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> List[BookingRecord]:
    """
    Retourne les réservations dès qu'au moins une ligne est visible.
    - 0 ligne ou erreur de lecture: attente interval_ms puis nouvelle tentative
    - pas d'attente après la dernière tentative
    - tentatives épuisées: BookingConfirmationError (le paiement, lui, a réussi)
    """
    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            rows = fetch(booking_ids)
            if inspect.isawaitable(rows):
                rows = await rows
        except Exception:
            logger.exception("payments.poller fetch failed attempt=%d/%d", attempt, attempts)
            rows = []

        if rows:
            logger.info("payments.poller bookings found attempt=%d count=%d", attempt, len(rows))
            return [BookingRecord.model_validate(row) for row in rows]

        logger.info("payments.poller no bookings yet attempt=%d/%d", attempt, attempts)
        if attempt < attempts:
            await sleep(interval_ms / 1000)

    raise BookingConfirmationError()
