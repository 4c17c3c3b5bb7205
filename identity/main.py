import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from identity.auth.codes import SecretHasher
from identity.auth.controller import drain_background_tasks
from identity.auth.oauth import GoogleOAuthAdapter
from identity.auth.router import router as auth_router
from identity.auth.tokens import TokenConfig, TokenService
from identity.config import Settings
from identity.database import dispose_db, init_db
from identity.email.send import Mailer
from identity.rate_limit import RATE_LIMIT_MESSAGE, limiter
from shared.middleware.error_handler import build_error_envelope_middleware
from shared.middleware.request_id import request_id_middleware

logger = logging.getLogger(__name__)


# ── OpenAPI metadata ──────────────────────────────────────────────────────────

_DESCRIPTION = """
## Identity Service

Authentication and credential lifecycle for the content app:

* **Accounts** — email + password signup with mandatory email verification,
  or Google sign-in (authorization code or ID token).
* **Sessions** — short-lived access tokens plus single-use refresh tokens;
  every refresh rotates the session and invalidates the previous token.
* **Password reset** — numeric code by email, verified then confirmed in two steps;
  confirming revokes every active session.

### Authentication
Protected endpoints require:
```
Authorization: Bearer <accessToken>
```

### Error shape
Errors return `{ "detail": "Human-readable message" }`; invalid request bodies
return `400` with the Pydantic error list under `detail`.

### Rate limits
`429 Too Many Requests` is returned when a rate limit is exceeded.
"""

_TAGS_METADATA = [
    {
        "name": "auth",
        "description": (
            "Signup, login, token refresh/logout, Google OAuth, password reset "
            "(send / verify / confirm code) and email verification."
        ),
    },
]


# ── Health schema ─────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    service: str


# ── Exception handlers ────────────────────────────────────────────────────────

async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    logger.warning("Rate limit hit on %s (%s)", request.url.path, exc.detail)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": RATE_LIMIT_MESSAGE},
    )


# ── App factory ───────────────────────────────────────────────────────────────

def get_settings() -> Settings:
    return Settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    # Missing secrets raise ConfigError here, so the process never starts half-configured.
    app.state.token_service = TokenService(TokenConfig.from_settings(settings))
    app.state.secret_hasher = SecretHasher(settings.verify_token_secret)
    if not hasattr(app.state, "oauth_adapter"):
        app.state.oauth_adapter = GoogleOAuthAdapter.from_settings(settings)
    if not hasattr(app.state, "mailer"):
        app.state.mailer = Mailer(settings)
    if not settings.google_web_client_id:
        logger.warning("GOOGLE_WEB_CLIENT_ID not set; /google will answer 500")

    init_db(settings.database_url)
    logger.info("Identity service started (env=%s)", settings.env_name)
    yield
    await drain_background_tasks()
    await dispose_db()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="Identity Service",
        version="1.0.0",
        description=_DESCRIPTION,
        openapi_tags=_TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Attach rate limiter state before middleware
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Middleware is applied in reverse-registration order (last added = outermost).
    # CORS must be outermost so ALL responses (including 429s) carry CORS headers.
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(
        build_error_envelope_middleware(expose_errors=not settings.is_production)
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.include_router(auth_router)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service="identity")

    return app


app = create_app()
