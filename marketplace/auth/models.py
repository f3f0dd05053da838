from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

def determine_role(metadata: Dict[str, Any] | None) -> str:
    role_lower = str((metadata or {}).get("role", "")).lower()
    if role_lower in ("vendor", "admin"):
        return role_lower
    return "couple"

class AuthResponse:
    def __init__(
        self,
        success: bool,
        user: Optional[Dict[str, Any]] = None,
        session: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        self.success = success
        self.user = user
        self.session = session
        self.error = error

    @property
    def access_token(self):
        return (self.session or {}).get("access_token")

def build_user_dict(user) -> Dict[str, Any]:
    metadata = getattr(user, "user_metadata", None) or {}
    return {
        "id": getattr(user, "id", None),
        "email": getattr(user, "email", None),
        "metadata": metadata,
        "role": determine_role(metadata),
    }

def make_auth_response(res, fallback_error: str = "Invalid credentials") -> AuthResponse:
    sess = getattr(res, "session", None)
    user = getattr(res, "user", None)
    if not sess or not getattr(sess, "access_token", None):
        return AuthResponse(False, error=fallback_error)
    return AuthResponse(True, user=build_user_dict(user), session={"access_token": sess.access_token})

def handle_exception(action: str, e: Exception) -> AuthResponse:
    logger.exception("Erreur %s", action)
    return AuthResponse(False, error=f"Error during {action}: {e}")
