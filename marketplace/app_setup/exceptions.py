"""
Gestionnaires d'exceptions enregistrés par la factory.
- CheckoutError (et sous-classes): JSON {detail, code[, fields]} avec le status de l'erreur.
- HTTPException: JSON {detail} (401/403 inclus, l'API n'a pas de pages HTML).
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from marketplace.errors import CheckoutError, CheckoutValidationError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        content = {"detail": exc.message, "code": exc.code}
        if isinstance(exc, CheckoutValidationError) and exc.fields:
            content["fields"] = exc.fields
        if exc.status_code >= 500:
            logger.error("checkout error path=%s code=%s", request.url.path, exc.code)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
