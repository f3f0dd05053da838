# marketplace.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du backend checkout.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe), sécurité cookies, CORS/hosts
- Expose les constantes de tarification (frais de service, acompte) et de polling des réservations
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

# Supabase: URLs et clés (public/anon/service)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Cookies / CORS
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Redirection post-inscription (email de confirmation Supabase)
SIGNUP_REDIRECT_URL = os.getenv("SIGNUP_REDIRECT_URL", "http://localhost:8000/checkout")

# Stripe: clés publiques/privées et secret webhook
STRIPE_PUBLIC_KEY = _clean_env(os.getenv("STRIPE_PUBLIC_KEY") or "")
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
PAYMENT_CURRENCY = "usd"

# Tarification (montants en cents)
# - frais de service par prestation au checkout ($150) et dans l'aperçu panier ($50)
SERVICE_FEE_PER_ITEM_CENTS = _int_env("SERVICE_FEE_PER_ITEM_CENTS", 150 * 100)
SUMMARY_SERVICE_FEE_PER_ITEM_CENTS = _int_env("SUMMARY_SERVICE_FEE_PER_ITEM_CENTS", 50 * 100)
DEPOSIT_RATE = 0.5

# Polling des réservations après paiement (matérialisées par le webhook Stripe)
BOOKING_POLL_MAX_ATTEMPTS = _int_env("BOOKING_POLL_MAX_ATTEMPTS", 3)
BOOKING_POLL_INTERVAL_MS = _int_env("BOOKING_POLL_INTERVAL_MS", 5000)

# Sessions de checkout en mémoire
CHECKOUT_SESSION_TTL_SECONDS = _int_env("CHECKOUT_SESSION_TTL_SECONDS", 2 * 60 * 60)
CHECKOUT_MAX_SESSIONS = _int_env("CHECKOUT_MAX_SESSIONS", 1000)

BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000")
