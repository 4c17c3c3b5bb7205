"""
Identity service — app-wide FastAPI dependencies.

Collaborators are built once in the lifespan (main.py) and parked on
``app.state``; routes reach them only through these providers, so tests can
swap any of them with ``app.dependency_overrides``.
"""
from fastapi import Request

from identity.auth.codes import SecretHasher
from identity.auth.oauth import GoogleOAuthAdapter
from identity.auth.tokens import TokenService
from identity.config import Settings
from identity.email.send import Mailer


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_hasher(request: Request) -> SecretHasher:
    return request.app.state.secret_hasher


def get_oauth_adapter(request: Request) -> GoogleOAuthAdapter:
    return request.app.state.oauth_adapter


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer
