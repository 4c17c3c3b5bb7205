import re
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from identity.auth.codes import SecretHasher
from identity.auth.constants import EntryKind
from identity.auth.controller import drain_background_tasks
from identity.auth.models import EmailVerificationEntry, PasswordResetEntry
from identity.auth.oauth import GoogleOAuthAdapter
from identity.auth.tokens import TokenConfig, TokenService
from identity.config import Settings
from identity.database import dispose_db, get_engine, get_session_factory, init_db
from identity.email.send import DeliveryResult
from identity.exceptions import EmailDeliveryFailed
from identity.main import create_app
from identity.rate_limit import limiter
from shared.database.postgres import Base

GOOGLE_CLIENT_ID = "test-client-id.apps.googleusercontent.com"


# ── Settings / collaborators ──────────────────────────────────────────────────

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}",
        env_name="test",
        jwt_access_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        verify_token_secret="test-verify-secret",
        google_web_client_id=GOOGLE_CLIENT_ID,
        google_client_secret="test-client-secret",
        app_base_url="http://testserver",
    )


@pytest.fixture
def tokens(settings: Settings) -> TokenService:
    return TokenService(TokenConfig.from_settings(settings))


@pytest.fixture
def hasher(settings: Settings) -> SecretHasher:
    return SecretHasher(settings.verify_token_secret)


@dataclass
class SentEmail:
    to: str
    subject: str
    text: str
    html: str


@dataclass
class RecordingMailer:
    """Stands in for SMTP/Brevo; keeps every message in memory."""

    sent: list[SentEmail] = field(default_factory=list)
    fail: bool = False

    async def send(self, to: str, subject: str, text: str, html_body: str = "") -> DeliveryResult:
        if self.fail:
            raise EmailDeliveryFailed()
        self.sent.append(SentEmail(to=to, subject=subject, text=text, html=html_body))
        return DeliveryResult(ok=True, provider="recording")

    def to(self, email: str) -> list[SentEmail]:
        return [m for m in self.sent if m.to == email]

    def last_verification_token(self, email: str) -> str:
        for message in reversed(self.to(email)):
            match = re.search(r"(http\S+/verify-email\?\S+)", message.text)
            if match:
                return parse_qs(urlparse(match.group(1)).query)["token"][0]
        raise AssertionError(f"no verification email sent to {email}")

    def last_reset_code(self, email: str) -> str:
        for message in reversed(self.to(email)):
            match = re.search(r"reset code: (\d+)", message.text)
            if match:
                return match.group(1)
        raise AssertionError(f"no reset code sent to {email}")


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@dataclass
class FakeGoogle:
    """
    httpx.MockTransport handler for Google's token and tokeninfo endpoints.

    Tests adjust the canned responses; every request is recorded.
    """

    token_status: int = 200
    token_body: dict = field(default_factory=lambda: {"id_token": "google-id-token"})
    tokeninfo_status: int = 200
    tokeninfo_body: dict = field(
        default_factory=lambda: {
            "aud": GOOGLE_CLIENT_ID,
            "email": "Jane.Doe@Gmail.com",
            "name": "Jane Doe",
            "sub": "google-sub-1",
        }
    )
    requests: list[httpx.Request] = field(default_factory=list)
    reject_redirect_uri: bool = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/token":
            form = parse_qs(request.content.decode())
            if self.reject_redirect_uri and "redirect_uri" in form:
                return httpx.Response(400, json={"error": "redirect_uri_mismatch"})
            return httpx.Response(self.token_status, json=self.token_body)
        if request.url.path == "/tokeninfo":
            return httpx.Response(self.tokeninfo_status, json=self.tokeninfo_body)
        return httpx.Response(404, json={"error": "not_found"})

    def token_requests(self) -> list[dict]:
        return [
            {k: v[0] for k, v in parse_qs(r.content.decode()).items()}
            for r in self.requests
            if r.url.path == "/token"
        ]


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def oauth_adapter(settings: Settings, fake_google: FakeGoogle) -> GoogleOAuthAdapter:
    return GoogleOAuthAdapter.from_settings(
        settings, http_transport=httpx.MockTransport(fake_google)
    )


# ── Database (no HTTP) ────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = init_db(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await dispose_db()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Application ───────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def app(
    settings: Settings,
    mailer: RecordingMailer,
    oauth_adapter: GoogleOAuthAdapter,
) -> AsyncGenerator[FastAPI, None]:
    application = create_app(settings)
    application.state.mailer = mailer
    application.state.oauth_adapter = oauth_adapter
    limiter.enabled = False
    try:
        async with application.router.lifespan_context(application):
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            yield application
    finally:
        limiter.enabled = True
        limiter.reset()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
        await drain_background_tasks()


@pytest.fixture
def app_sessions(app: FastAPI) -> async_sessionmaker[AsyncSession]:
    """Sessions on the app's own database, for asserting persisted state."""
    return get_session_factory()


# ── Helpers ───────────────────────────────────────────────────────────────────

async def signup_and_verify(
    client: AsyncClient,
    mailer: RecordingMailer,
    *,
    name: str = "A",
    email: str = "a@x.com",
    password: str = "secret1",
) -> None:
    resp = await client.post(
        "/signup", json={"name": name, "email": email, "password": password}
    )
    assert resp.status_code == 201, resp.text
    token = mailer.last_verification_token(email.strip().lower())
    resp = await client.get("/verify-email", params={"email": email, "token": token})
    assert resp.status_code == 200, resp.text


async def login(client: AsyncClient, email: str = "a@x.com", password: str = "secret1") -> dict:
    resp = await client.post("/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


def bearer(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


_ENTRY_MODELS = {
    EntryKind.PASSWORD_RESET: PasswordResetEntry,
    EntryKind.EMAIL_VERIFICATION: EmailVerificationEntry,
}


async def count_entries(session: AsyncSession, kind: EntryKind, email: str) -> int:
    """Rows of ``kind`` for ``email``, consumed or not."""
    model = _ENTRY_MODELS[kind]
    return await session.scalar(
        select(func.count()).select_from(model).where(model.email == email.strip().lower())
    )
