"""Session cookie -> identity resolution for every request."""
from typing import Any, Optional

import structlog
from fastapi import Depends, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from config import Settings
from errors import StorageError, Unauthorized
from models import Account
from sessions import SessionManager

logger = structlog.get_logger()


class AuthMiddleware(BaseHTTPMiddleware):
    """Attach ``request.state.account`` (Account or None) before routing.

    Read-only with respect to sessions: it never extends or issues them, and a
    stale or unknown cookie simply yields an anonymous request.
    """

    def __init__(self, app: Any, sessions: SessionManager, cookie_name: str) -> None:
        super().__init__(app)
        self.sessions = sessions
        self.cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        token = request.cookies.get(self.cookie_name) or None
        try:
            account = await self.sessions.resolve(token)
        except StorageError:
            logger.error('session_resolve_failed', path=request.url.path, exc_info=True)
            return JSONResponse(status_code=500, content={'detail': 'Internal server error'})
        request.state.account = account
        request.state.session_token = token
        structlog.contextvars.bind_contextvars(account=account.identifier if account else None)
        try:
            return await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars('account')


def current_account(request: Request) -> Optional[Account]:
    return getattr(request.state, 'account', None)


def require_account(account: Optional[Account] = Depends(current_account)) -> Account:
    if account is None:
        raise Unauthorized()
    return account


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_seconds,
        path='/',
        httponly=True,
        samesite='lax',
        secure=settings.session_cookie_secure,
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        path='/',
        httponly=True,
        samesite='lax',
        secure=settings.session_cookie_secure,
    )
