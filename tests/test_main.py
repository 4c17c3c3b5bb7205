import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from identity.config import Settings
from identity.exceptions import ConfigError
from identity.main import create_app


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "missing", ["jwt_access_secret", "jwt_refresh_secret", "verify_token_secret"]
)
async def test_startup_fails_without_secrets(settings: Settings, missing: str) -> None:
    application = create_app(settings.model_copy(update={missing: ""}))
    with pytest.raises(ConfigError):
        async with application.router.lifespan_context(application):
            pass


@pytest.mark.asyncio
async def test_invalid_json_body_is_400(client: AsyncClient) -> None:
    resp = await client.post(
        "/login", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient) -> None:
    resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"

    resp = await client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
    assert resp.headers["X-Request-ID"] != "bad id with spaces"


@pytest.mark.asyncio
async def test_unhandled_error_becomes_500_envelope(app: FastAPI) -> None:
    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("kaboom")

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.get("/boom", headers={"X-Request-ID": "req-9"})

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    # Non-production settings expose the message to operators.
    assert body["error"]["message"] == "kaboom"
    assert body["request_id"] == "req-9"


@pytest.mark.asyncio
async def test_production_hides_error_text(settings: Settings) -> None:
    application = create_app(settings.model_copy(update={"env_name": "production"}))

    @application.get("/boom")
    async def boom() -> None:
        raise RuntimeError("secret detail")

    transport = ASGITransport(app=application, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.get("/boom")

    assert resp.status_code == 500
    assert resp.json()["error"]["message"] == "Internal server error"
