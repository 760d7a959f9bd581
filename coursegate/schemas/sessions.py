from __future__ import annotations

import datetime
import uuid
from typing import Any

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    identifier: str = Field(min_length=3, max_length=320)
    secret: str = Field(min_length=1, max_length=4096)
    remember_me: bool = False


class UserSummaryResponse(BaseModel):
    user_id: uuid.UUID
    email: str
    full_name: str
    role_id: str | None
    status: str

    @classmethod
    def from_profile(cls, profile: Any) -> "UserSummaryResponse":
        return cls(
            user_id=profile.user_id,
            email=profile.email,
            full_name=profile.full_name,
            role_id=profile.role_id,
            status=profile.status,
        )


class LoginResponse(BaseModel):
    session_id: uuid.UUID
    access_token: str
    refresh_token: str
    id_token: str
    expires_in: int
    expires_at: datetime.datetime
    user: UserSummaryResponse


class LogoutRequest(BaseModel):
    session_id: uuid.UUID
    access_token: str | None = Field(default=None, max_length=8192)


class LogoutResponse(BaseModel):
    success: bool = True
    session_found: bool


class SessionInfoResponse(BaseModel):
    device_info: str
    ip_address: str
    last_active_at: datetime.datetime
    expires_at: datetime.datetime
    created_at: datetime.datetime


class ValidateResponse(BaseModel):
    session_id: uuid.UUID
    user_id: uuid.UUID
    user: UserSummaryResponse | None
    session_info: SessionInfoResponse

    @classmethod
    def from_context(cls, context: Any) -> "ValidateResponse":
        return cls(
            session_id=context.session_id,
            user_id=context.user_id,
            user=UserSummaryResponse.from_profile(context.user) if context.user is not None else None,
            session_info=SessionInfoResponse(
                device_info=context.device_info,
                ip_address=context.ip_address,
                last_active_at=context.last_active_at,
                expires_at=context.expires_at,
                created_at=context.created_at,
            ),
        )


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=8192)
    session_id: uuid.UUID | None = None


class RefreshResponse(BaseModel):
    access_token: str
    id_token: str
    expires_in: int


class SessionResponse(BaseModel):
    # token_digest is deliberately absent from every response model.
    session_id: uuid.UUID
    user_id: uuid.UUID
    device_info: str
    ip_address: str
    is_active: bool
    status: str
    last_active_at: datetime.datetime
    expires_at: datetime.datetime
    created_at: datetime.datetime
    logged_out_at: datetime.datetime | None = None
    revoked_at: datetime.datetime | None = None
    deactivation_reason: str | None = None

    @classmethod
    def from_session(cls, session: Any, status: str) -> "SessionResponse":
        return cls(
            session_id=session.id,
            user_id=session.user_id,
            device_info=session.device_info,
            ip_address=session.ip_address,
            is_active=session.is_active,
            status=status,
            last_active_at=session.last_active_at,
            expires_at=session.expires_at,
            created_at=session.created_at,
            logged_out_at=session.logged_out_at,
            revoked_at=session.revoked_at,
            deactivation_reason=session.deactivation_reason,
        )


class ActiveSessionsResponse(BaseModel):
    user_id: uuid.UUID
    active_sessions_count: int
    sessions: list[SessionResponse]


class SessionHistoryResponse(BaseModel):
    user_id: uuid.UUID
    sessions: list[SessionResponse]
    count: int
    next_token: str | None = None


class SessionDetailsResponse(BaseModel):
    session: SessionResponse
    user: UserSummaryResponse | None


class RevokeSessionResponse(BaseModel):
    success: bool = True
    session: SessionResponse


class RevokeAllRequest(BaseModel):
    except_session_id: uuid.UUID | None = None


class RevokeAllResponse(BaseModel):
    revoked_count: int
    total_sessions: int
