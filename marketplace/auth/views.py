from fastapi import APIRouter, HTTPException, Depends, Request, Response
from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Dict, Any

from marketplace.utils.security import require_user, set_session_cookie, clear_session_cookie, get_access_token
from marketplace.utils.rate_limit import optional_rate_limit
from .service import login as svc_login, signup as svc_signup

api_router = APIRouter(prefix="/api/v1/auth", tags=["Auth API"])

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    partner1_name: Optional[str] = None
    partner2_name: Optional[str] = None

@api_router.post("/login", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
def api_login(req: LoginRequest, response: Response):
    """Connexion (API JSON).
    - Délègue la vérification des identifiants au service (svc_login).
    - Pose le cookie de session (sb_access) si un access_token est fourni.
    - Retourne {access_token, token_type, user}.
    """
    result = svc_login(req.email, req.password)
    if not result.success:
        raise HTTPException(status_code=401, detail=result.error or "Invalid credentials")
    if result.access_token:
        set_session_cookie(response, result.access_token)
    return {"access_token": result.access_token, "token_type": "bearer", "user": result.user}

@api_router.post("/signup", dependencies=[Depends(optional_rate_limit(times=3, seconds=60))])
def api_signup(req: SignupRequest, response: Response):
    """Inscription d'un couple; session immédiate ou message de confirmation d'email."""
    result = svc_signup(req.email, req.password, req.partner1_name, req.partner2_name)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error or "Sign-up failed")
    if result.access_token:
        set_session_cookie(response, result.access_token)
        return {"access_token": result.access_token, "token_type": "bearer", "user": result.user}
    return {"message": result.error or "Sign-up successful, please check your email"}

@api_router.get("/session")
def api_session(request: Request, user: Dict[str, Any] = Depends(require_user)):
    """Session courante: token utilisé et utilisateur normalisé."""
    return {
        "access_token": get_access_token(request),
        "user": {"id": user.get("id"), "email": user.get("email"), "role": user.get("role"), "metadata": user.get("metadata") or {}},
    }

@api_router.post("/logout")
def api_logout(response: Response):
    clear_session_cookie(response)
    return {"status": "ok"}
