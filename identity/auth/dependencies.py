"""
Identity service — auth-specific FastAPI dependencies.

``get_current_account_id`` is the access guard for protected routes: it reads
the Bearer token, verifies it and checks that the account still exists.
Missing, malformed, invalid and expired tokens, and tokens whose account is
gone, are all a 401 carrying a ``WWW-Authenticate: Bearer`` challenge.
"""
from __future__ import annotations

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from identity.auth import store
from identity.auth.tokens import TokenService
from identity.database import get_db
from identity.dependencies import get_token_service
from identity.exceptions import NotAuthenticated, TokenInvalid

http_bearer = HTTPBearer(auto_error=False)


async def get_current_account_id(
    credentials: HTTPAuthorizationCredentials | None = Security(http_bearer),
    tokens: TokenService = Depends(get_token_service),
    session: AsyncSession = Depends(get_db),
) -> str:
    if credentials is None or not credentials.credentials:
        raise NotAuthenticated()
    account_id = tokens.verify_access_token(credentials.credentials).account_id
    if await store.find_by_id(session, account_id) is None:
        raise TokenInvalid("User not found.")
    return account_id
