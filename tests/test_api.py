"""
HTTP surface: error mapping and authentication. These paths fail before any
database work, so no database is needed.
"""

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from kyc_service.core.config import settings
from kyc_service.main import app
from kyc_service.services.orchestrator import verification_orchestrator

TEST_SECRET_KEY = "test-jwt-secret"


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setattr(settings, "SECRET_KEY", TEST_SECRET_KEY)


def bearer(user_id="user-1", role=None):
    claims = {"sub": user_id}
    if role:
        claims["role"] = role
    token = jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


def test_health():
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_status_requires_authentication():
    client = TestClient(app)
    assert client.get("/kyc/status").status_code == 401


def test_invalid_token_rejected():
    client = TestClient(app)
    response = client.get("/kyc/status", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_missing_jwt_secret_fails_closed(monkeypatch):
    headers = bearer(role="admin")
    monkeypatch.setattr(settings, "SECRET_KEY", None)
    client = TestClient(app)

    response = client.get("/admin/kyc/pending", headers=headers)

    assert response.status_code == 500
    assert response.json()["code"] == "configuration_error"


def test_admin_routes_require_admin_role():
    client = TestClient(app)
    assert client.get("/admin/kyc/pending", headers=bearer()).status_code == 403


def test_webhook_with_bad_signature_is_forbidden(monkeypatch):
    onfido = verification_orchestrator.router.select_adapter("onfido")
    monkeypatch.setattr(onfido, "webhook_token", "expected-token")
    client = TestClient(app)

    response = client.post(
        "/kyc/webhooks/onfido",
        content=b'{"referenceId": "applicant-1", "status": "clear"}',
        headers={"X-Onfido-Webhook-Token": "forged", "Content-Type": "application/json"},
    )

    assert response.status_code == 403
    assert response.json() == {"ok": False, "error": "Access denied.", "code": "security_error"}


def test_webhook_with_malformed_payload():
    client = TestClient(app)
    response = client.post("/kyc/webhooks/onfido", content=b"{not json")
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_webhook_for_unknown_provider():
    client = TestClient(app)
    response = client.post("/kyc/webhooks/jumio", content=b"{}")
    assert response.status_code == 500
    assert response.json()["code"] == "configuration_error"
