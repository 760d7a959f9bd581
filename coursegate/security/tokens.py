from __future__ import annotations

import datetime
import hashlib
import secrets
import uuid
from dataclasses import dataclass

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from coursegate.core.settings import settings


ALGORITHM = "HS256"


class AccessTokenValidationError(Exception):
    pass


class AccessTokenExpiredError(AccessTokenValidationError):
    pass


@dataclass(frozen=True)
class AccessTokenPayload:
    sub: str
    email: str
    token_use: str
    jti: str
    iat: datetime.datetime
    exp: datetime.datetime
    iss: str


def digest_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_opaque_token() -> str:
    return secrets.token_urlsafe(48)


def issue_signed_token(
    *,
    subject: str,
    email: str,
    token_use: str = "access",
    now: datetime.datetime | None = None,
    expires_in: datetime.timedelta | None = None,
    signing_key: str | None = None,
    issuer: str | None = None,
) -> tuple[str, datetime.datetime]:
    issued_at = now or datetime.datetime.now(datetime.UTC)
    expiry = issued_at + (expires_in or datetime.timedelta(minutes=settings.local_idp_access_ttl_minutes))
    payload = {
        "sub": subject,
        "email": email,
        "token_use": token_use,
        # Two tokens minted in the same second must still differ.
        "jti": uuid.uuid4().hex,
        "iss": issuer or settings.local_idp_issuer,
        "iat": int(issued_at.timestamp()),
        "exp": int(expiry.timestamp()),
    }
    token = jwt.encode(payload, signing_key or settings.local_idp_signing_key, algorithm=ALGORITHM)
    return token, expiry


def validate_signed_token(
    token: str,
    *,
    token_use: str = "access",
    signing_key: str | None = None,
    issuer: str | None = None,
) -> AccessTokenPayload:
    try:
        payload = jwt.decode(
            token,
            signing_key or settings.local_idp_signing_key,
            algorithms=[ALGORITHM],
            issuer=issuer or settings.local_idp_issuer,
            options={"require": ["sub", "email", "token_use", "jti", "iat", "exp", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise AccessTokenExpiredError("access token expired") from exc
    except InvalidTokenError as exc:
        raise AccessTokenValidationError("invalid access token") from exc

    try:
        decoded = AccessTokenPayload(
            sub=str(payload["sub"]),
            email=str(payload["email"]),
            token_use=str(payload["token_use"]),
            jti=str(payload["jti"]),
            iat=datetime.datetime.fromtimestamp(int(payload["iat"]), tz=datetime.UTC),
            exp=datetime.datetime.fromtimestamp(int(payload["exp"]), tz=datetime.UTC),
            iss=str(payload["iss"]),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise AccessTokenValidationError("malformed access token payload") from exc

    if decoded.token_use != token_use:
        raise AccessTokenValidationError("unexpected token use")
    return decoded
