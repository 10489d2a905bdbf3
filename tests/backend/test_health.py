from httpx import ASGITransport, AsyncClient
from fastapi import status

from src.casehub.config import settings
from src.casehub.main import app


async def test_root_health_check():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}


async def test_v1_health_check():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/v1/health")
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"] == "v1"
    assert body["storage"] == "memory"


async def test_client_key_required_when_auth_enabled(monkeypatch, attorney):
    monkeypatch.setattr(settings, "enable_api_auth", True)
    monkeypatch.setattr(settings, "api_keys", "portal-key, mobile-key")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        user = {"X-User-ID": str(attorney.user_id)}
        missing = await ac.get("/api/v1/profiles/me", headers=user)
        wrong = await ac.get("/api/v1/profiles/me", headers={**user, "X-API-Key": "nope"})
        ok = await ac.get("/api/v1/profiles/me", headers={**user, "X-API-Key": "mobile-key"})
    assert missing.status_code == status.HTTP_401_UNAUTHORIZED
    assert wrong.status_code == status.HTTP_401_UNAUTHORIZED
    assert ok.status_code == status.HTTP_200_OK
