import os

# Pas de Redis pendant les tests (doit précéder l'import de l'app)
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from typing import Generator, Dict, Any
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from marketplace.app import app as fastapi_app
from marketplace.utils.security import require_user
from marketplace.checkout.session import store

TEST_USER: Dict[str, Any] = {
    "id": "test-user",
    "email": "couple@example.com",
    "role": "couple",
    "metadata": {"partner1_name": "Alex"},
    "token": "fake-token",
}

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    # Bearer explicite: le checkout garde le token pour les lectures RLS
    with TestClient(app, headers={"Authorization": "Bearer fake-token"}) as c:
        yield c

# Simuler un utilisateur authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app):
    app.dependency_overrides[require_user] = lambda: dict(TEST_USER)
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)

@pytest.fixture(autouse=True)
def _clear_checkout_store():
    store.clear()
    yield
    store.clear()

# Aucun accès réseau à Supabase pendant les tests
@pytest.fixture(scope="function", autouse=True)
def mock_db_dependency(monkeypatch):
    monkeypatch.setattr("marketplace.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("marketplace.infra.supabase_client.get_service_supabase", lambda: MagicMock())
    monkeypatch.setattr("marketplace.infra.supabase_client.get_user_supabase", lambda token: MagicMock())

    # Frais: aucun premium / frais de déplacement par défaut
    monkeypatch.setattr("marketplace.fees.repository.get_vendor_premium", lambda vendor_id: None)
    monkeypatch.setattr("marketplace.fees.repository.get_venue_service_area", lambda venue_id: None)
    monkeypatch.setattr("marketplace.fees.repository.get_travel_fee", lambda vendor_id, area_id: None)

    # Contrats: pas de modèle en base, persistance OK
    monkeypatch.setattr("marketplace.contracts.repository.fetch_templates_by_service_types", lambda types: {})
    monkeypatch.setattr("marketplace.contracts.repository.insert_contracts", lambda rows, token: True)

@pytest.fixture
def cart_items():
    """Panier front typique: photographe + DJ, même lieu."""
    return [
        {
            "id": "line-photo",
            "package": {"id": "pkg-photo", "service_type": "Photography", "name": "Full Day", "base_price": 250000},
            "vendor": {"id": "vendor-photo", "name": "Lens & Light"},
            "venue": {"id": "venue-1", "name": "Rose Garden"},
            "event_date": "2099-06-20",
            "event_start_time": "14:00",
            "event_end_time": "22:00",
        },
        {
            "id": "line-dj",
            "package": {"id": "pkg-dj", "service_type": "DJ Services", "name": "Party Pack", "base_price": 120000},
            "vendor": {"id": "vendor-dj", "name": "DJ Nova"},
            "venue": {"id": "venue-1", "name": "Rose Garden"},
            "event_date": "2099-06-20",
            "event_start_time": "18:00",
            "event_end_time": "23:00",
        },
    ]

@pytest.fixture
def customer_payload():
    return {
        "partner1_name": "Alex Martin",
        "partner2_name": "Sam Lee",
        "email": "couple@example.com",
        "phone": "555-0100",
        "billing_address": "1 Main Street",
        "city": "Austin",
        "state": "TX",
        "zip_code": "73301",
    }
