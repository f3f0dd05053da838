"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.
Un process manager (uvicorn, gunicorn -k uvicorn.workers.UvicornWorker) importe `marketplace.asgi:app`.
"""

from marketplace.app import app
