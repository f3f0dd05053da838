from typing import Optional, Dict, Any
from marketplace.config import SIGNUP_REDIRECT_URL
from .models import AuthResponse, determine_role, make_auth_response, handle_exception
from .repository import (
    auth_sign_in_password as sign_in_password,
    auth_sign_up_account as sign_up_account,
    get_user_from_access_token as _repo_get_user_from_token,
)

def login(email: str, password: str) -> AuthResponse:
    """Connexion:
    - Délègue à supabase.auth.sign_in_with_password via repository
    - Normalise la réponse en AuthResponse
    """
    try:
        res = sign_in_password((email or "").strip(), password)
        return make_auth_response(res, fallback_error="Invalid credentials or email not confirmed")
    except Exception as e:
        return handle_exception("sign_in", e)

def signup(email: str, password: str, partner1_name: Optional[str] = None, partner2_name: Optional[str] = None) -> AuthResponse:
    """Inscription d'un couple:
    - Injecte les noms des partenaires dans user_metadata
    - Retourne une session si Supabase en fournit une, sinon un succès invitant à confirmer l'email
    """
    try:
        options_data: Dict[str, Any] = {"role": "couple"}
        if partner1_name:
            options_data["partner1_name"] = partner1_name.strip()
        if partner2_name:
            options_data["partner2_name"] = partner2_name.strip()

        res = sign_up_account(
            email=(email or "").strip(),
            password=password,
            options_data=options_data,
            email_redirect_to=SIGNUP_REDIRECT_URL,
        )
        sess = getattr(res, "session", None)
        if sess and getattr(sess, "access_token", None):
            return make_auth_response(res)
        return AuthResponse(True, error="Sign-up successful, please check your email")
    except Exception as e:
        msg = str(e).lower()
        if any(k in msg for k in ["already", "registered", "exists", "23505"]):
            return AuthResponse(False, error="User already exists")
        return handle_exception("sign_up", e)

def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Normalise user issu de supabase.auth.get_user(access_token): {id, email, metadata, role, token}."""
    raw = _repo_get_user_from_token(access_token)
    metadata = raw.get("user_metadata") or {}
    return {
        "id": raw.get("id"),
        "email": raw.get("email"),
        "metadata": metadata,
        "role": determine_role(metadata),
        "token": access_token,
    }
