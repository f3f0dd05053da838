"""
Erreurs métier du checkout.
Chaque erreur porte un message affichable et un code stable; le handler
enregistré par la factory (app_setup.exceptions) les convertit en JSON.
"""

class CheckoutError(Exception):
    status_code = 400

    def __init__(self, message: str, code: str = "checkout_error"):
        super().__init__(message)
        self.message = message
        self.code = code

class CheckoutValidationError(CheckoutError):
    """Erreur corrigeable par l'utilisateur (champ manquant, contrat non signé, carte incomplète...)."""
    status_code = 400

    def __init__(self, message: str, code: str = "invalid", fields=None):
        super().__init__(message, code)
        self.fields = list(fields or [])

class TransientLookupError(CheckoutError):
    """Lecture Supabase en échec sans valeur par défaut sûre: l'utilisateur peut réessayer."""
    status_code = 503

    def __init__(self, message: str, code: str = "lookup_failed"):
        super().__init__(message, code)

class PaymentFailedError(CheckoutError):
    status_code = 402

    def __init__(self, message: str = "Your payment was not completed. Please try again.", code: str = "payment_failed"):
        super().__init__(message, code)

class BookingConfirmationError(CheckoutError):
    """Paiement encaissé mais réservations non matérialisées dans le délai de polling."""
    status_code = 500

    def __init__(
        self,
        message: str = "Failed to confirm booking. Your payment was received; please contact support.",
        code: str = "booking_confirmation_failed",
    ):
        super().__init__(message, code)

class CheckoutNotFoundError(CheckoutError):
    status_code = 404

    def __init__(self, message: str = "Checkout introuvable", code: str = "checkout_not_found"):
        super().__init__(message, code)
