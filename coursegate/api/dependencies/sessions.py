from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegate.core.settings import Settings, settings
from coursegate.security.device import RequestMetadata
from coursegate.services.audit import AuditSink
from coursegate.services.identity import build_identity_provider
from coursegate.services.session_store import SessionStore
from coursegate.services.sessions import SessionManager, SessionPolicy
from coursegate.services.users import SqlUserDirectory


bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Invalid or expired token.") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def build_session_manager(
    session_factory: async_sessionmaker[AsyncSession],
    app_settings: Settings = settings,
) -> SessionManager:
    return SessionManager(
        store=SessionStore(session_factory),
        identity=build_identity_provider(app_settings, session_factory),
        users=SqlUserDirectory(session_factory),
        audit=AuditSink(session_factory),
        policy=SessionPolicy.from_settings(app_settings),
    )


def get_session_manager(request: Request) -> SessionManager:
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Session service is starting up.")
    return manager


def get_request_metadata(request: Request) -> RequestMetadata:
    return RequestMetadata(
        headers=dict(request.headers),
        client_host=request.client.host if request.client and request.client.host else None,
    )


async def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    if credentials is None:
        raise _unauthorized("Authorization token required.")
    if credentials.scheme.lower() != "bearer" or not credentials.credentials.strip():
        raise _unauthorized("Invalid authorization scheme.")
    return credentials.credentials
