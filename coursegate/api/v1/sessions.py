import datetime
import uuid

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse

from coursegate.api.dependencies.sessions import get_bearer_token, get_request_metadata, get_session_manager
from coursegate.core.errors import (
    AccountInactiveError,
    AccountNotConfirmedError,
    AccountNotFoundError,
    InvalidCredentialsError,
    InvalidTokenError,
    ProviderUnavailableError,
    RateLimitedError,
    RefreshFailedError,
    SessionExpiredError,
    SessionNotFoundError,
    SessionServiceError,
    StoreUnavailableError,
    TokenExpiredError,
    ValidationError,
)
from coursegate.core.problems import ERROR_TYPE_BASE, problem_response
from coursegate.schemas.sessions import (
    ActiveSessionsResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    LogoutResponse,
    RefreshRequest,
    RefreshResponse,
    RevokeAllRequest,
    RevokeAllResponse,
    RevokeSessionResponse,
    SessionDetailsResponse,
    SessionHistoryResponse,
    SessionResponse,
    UserSummaryResponse,
    ValidateResponse,
)
from coursegate.security.device import RequestMetadata
from coursegate.services.sessions import SessionManager, session_status


router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


# (status, title, error slug) per error class; first match in MRO order wins.
_ERROR_RESPONSES: dict[type[SessionServiceError], tuple[int, str, str]] = {
    InvalidCredentialsError: (401, "Unauthorized", "invalid-credentials"),
    InvalidTokenError: (401, "Unauthorized", "invalid-token"),
    TokenExpiredError: (401, "Unauthorized", "invalid-token"),
    SessionExpiredError: (401, "Unauthorized", "session-expired"),
    RefreshFailedError: (401, "Unauthorized", "refresh-failed"),
    AccountNotConfirmedError: (403, "Forbidden", "account-not-confirmed"),
    AccountInactiveError: (403, "Forbidden", "account-inactive"),
    AccountNotFoundError: (404, "Not Found", "account-not-found"),
    SessionNotFoundError: (404, "Not Found", "session-not-found"),
    RateLimitedError: (429, "Too Many Requests", "rate-limit-exceeded"),
    ValidationError: (400, "Bad Request", "validation-error"),
    ProviderUnavailableError: (503, "Service Unavailable", "provider-unavailable"),
    StoreUnavailableError: (503, "Service Unavailable", "store-unavailable"),
}


def _error_response(exc: SessionServiceError) -> JSONResponse:
    for cls in type(exc).__mro__:
        if cls in _ERROR_RESPONSES:
            status, title, slug = _ERROR_RESPONSES[cls]
            break
    else:
        status, title, slug = 500, "Internal Server Error", "session-service-error"
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return problem_response(
        status=status,
        title=title,
        detail=exc.message,
        type_=f"{ERROR_TYPE_BASE}{slug}",
        headers=headers,
    )


def _session_response(session, now: datetime.datetime) -> SessionResponse:
    return SessionResponse.from_session(session, session_status(session, now).value)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    metadata: RequestMetadata = Depends(get_request_metadata),
    manager: SessionManager = Depends(get_session_manager),
) -> LoginResponse:
    try:
        result = await manager.login(
            payload.identifier,
            payload.secret,
            remember_me=payload.remember_me,
            metadata=metadata,
        )
    except SessionServiceError as exc:
        return _error_response(exc)

    return LoginResponse(
        session_id=result.session_id,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        id_token=result.id_token,
        expires_in=result.expires_in,
        expires_at=result.expires_at,
        user=UserSummaryResponse.from_profile(result.user),
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    payload: LogoutRequest,
    metadata: RequestMetadata = Depends(get_request_metadata),
    manager: SessionManager = Depends(get_session_manager),
) -> LogoutResponse:
    try:
        found = await manager.logout(payload.session_id, payload.access_token, metadata=metadata)
    except SessionServiceError as exc:
        return _error_response(exc)
    return LogoutResponse(success=True, session_found=found)


@router.get("/validate", response_model=ValidateResponse)
async def validate(
    access_token: str = Depends(get_bearer_token),
    manager: SessionManager = Depends(get_session_manager),
) -> ValidateResponse:
    try:
        context = await manager.validate_token(access_token)
    except SessionServiceError as exc:
        return _error_response(exc)
    return ValidateResponse.from_context(context)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    payload: RefreshRequest,
    metadata: RequestMetadata = Depends(get_request_metadata),
    manager: SessionManager = Depends(get_session_manager),
) -> RefreshResponse:
    try:
        result = await manager.refresh_session(payload.refresh_token, payload.session_id, metadata=metadata)
    except SessionServiceError as exc:
        return _error_response(exc)
    return RefreshResponse(access_token=result.access_token, id_token=result.id_token, expires_in=result.expires_in)


@router.get("/users/{user_id}/active", response_model=ActiveSessionsResponse)
async def get_active_sessions(
    user_id: uuid.UUID,
    manager: SessionManager = Depends(get_session_manager),
) -> ActiveSessionsResponse:
    try:
        sessions = await manager.get_active_sessions(user_id)
    except SessionServiceError as exc:
        return _error_response(exc)
    now = _now()
    return ActiveSessionsResponse(
        user_id=user_id,
        active_sessions_count=len(sessions),
        sessions=[_session_response(session, now) for session in sessions],
    )


@router.get("/users/{user_id}/all", response_model=SessionHistoryResponse)
async def get_all_sessions(
    user_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=100),
    next_token: str | None = Query(default=None, max_length=512),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionHistoryResponse:
    try:
        page = await manager.get_all_sessions(user_id, limit=limit, page_token=next_token)
    except SessionServiceError as exc:
        return _error_response(exc)
    now = _now()
    return SessionHistoryResponse(
        user_id=user_id,
        sessions=[_session_response(session, now) for session in page.sessions],
        count=len(page.sessions),
        next_token=page.next_token,
    )


@router.delete("/users/{user_id}/all", response_model=RevokeAllResponse)
async def revoke_all_sessions(
    user_id: uuid.UUID,
    payload: RevokeAllRequest | None = Body(default=None),
    metadata: RequestMetadata = Depends(get_request_metadata),
    manager: SessionManager = Depends(get_session_manager),
) -> RevokeAllResponse:
    except_session_id = payload.except_session_id if payload is not None else None
    try:
        result = await manager.revoke_all_sessions(user_id, except_session_id, metadata=metadata)
    except SessionServiceError as exc:
        return _error_response(exc)
    return RevokeAllResponse(revoked_count=result.revoked_count, total_sessions=result.total_sessions)


@router.get("/{session_id}", response_model=SessionDetailsResponse)
async def get_session_details(
    session_id: uuid.UUID,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionDetailsResponse:
    try:
        details = await manager.get_session_details(session_id)
    except SessionServiceError as exc:
        return _error_response(exc)
    return SessionDetailsResponse(
        session=_session_response(details.session, _now()),
        user=UserSummaryResponse.from_profile(details.user) if details.user is not None else None,
    )


@router.delete("/{session_id}", response_model=RevokeSessionResponse)
async def revoke_session(
    session_id: uuid.UUID,
    metadata: RequestMetadata = Depends(get_request_metadata),
    manager: SessionManager = Depends(get_session_manager),
) -> RevokeSessionResponse:
    try:
        session = await manager.revoke_session(session_id, metadata=metadata)
    except SessionServiceError as exc:
        return _error_response(exc)
    return RevokeSessionResponse(success=True, session=_session_response(session, _now()))
