"""Amazon Cognito user-pool adapter.

Speaks the public ``AWSCognitoIdentityProviderService`` JSON API directly over
httpx. InitiateAuth, GetUser and GlobalSignOut are authorized by the client id
and the user's tokens, so no request signing is involved.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Any

import httpx
import structlog

from coursegate.core.errors import (
    AccountNotConfirmedError,
    AccountNotFoundError,
    AuthError,
    InvalidCredentialsError,
    InvalidTokenError,
    ProviderUnavailableError,
    RateLimitedError,
    RefreshFailedError,
    TokenExpiredError,
)
from coursegate.core.settings import Settings
from coursegate.services.identity import ProviderTokens, RefreshedTokens, TokenIntrospection


logger = structlog.get_logger(__name__)

TARGET_PREFIX = "AWSCognitoIdentityProviderService."
CONTENT_TYPE = "application/x-amz-json-1.1"

_RATE_LIMIT_ERRORS = {"TooManyRequestsException", "LimitExceededException", "TooManyFailedAttemptsException"}


class CognitoError(Exception):
    def __init__(self, error_type: str, message: str, status_code: int) -> None:
        super().__init__(f"{error_type}: {message}")
        self.error_type = error_type
        self.message = message
        self.status_code = status_code


def generate_secret_hash(username: str, client_id: str, client_secret: str) -> str:
    digest = hmac.new(
        client_secret.encode("utf-8"),
        (username + client_id).encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


class CognitoIdentityProvider:
    def __init__(
        self,
        *,
        client_id: str,
        endpoint: str,
        client_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        request_timeout: float = 10.0,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret or None
        self._endpoint = endpoint
        self._http_client = http_client
        self._request_timeout = request_timeout

    @classmethod
    def from_settings(cls, app_settings: Settings, http_client: httpx.AsyncClient | None = None) -> "CognitoIdentityProvider":
        if not app_settings.cognito_client_id:
            raise ValueError("cognito_client_id must be configured for the cognito identity provider")
        return cls(
            client_id=app_settings.cognito_client_id,
            client_secret=app_settings.cognito_client_secret,
            endpoint=app_settings.resolved_cognito_endpoint,
            http_client=http_client,
            request_timeout=app_settings.provider_timeout_seconds,
        )

    async def verify_credentials(self, identifier: str, secret: str) -> ProviderTokens:
        auth_parameters = {"USERNAME": identifier, "PASSWORD": secret}
        if self._client_secret:
            auth_parameters["SECRET_HASH"] = generate_secret_hash(identifier, self._client_id, self._client_secret)
        try:
            body = await self._call(
                "InitiateAuth",
                {
                    "AuthFlow": "USER_PASSWORD_AUTH",
                    "ClientId": self._client_id,
                    "AuthParameters": auth_parameters,
                },
            )
        except CognitoError as exc:
            raise _credential_error(exc) from exc

        result = body.get("AuthenticationResult")
        if not isinstance(result, dict):
            logger.warning("cognito_auth_challenge", challenge=body.get("ChallengeName"))
            raise AccountNotConfirmedError("Additional sign-in verification is required")
        try:
            return ProviderTokens(
                access_token=str(result["AccessToken"]),
                refresh_token=str(result["RefreshToken"]),
                id_token=str(result["IdToken"]),
                expires_in=int(result.get("ExpiresIn", 3600)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderUnavailableError("Identity provider returned an incomplete token set") from exc

    async def introspect_token(self, access_token: str) -> TokenIntrospection:
        try:
            body = await self._call("GetUser", {"AccessToken": access_token})
        except CognitoError as exc:
            raise _token_error(exc) from exc

        attributes = {
            str(item.get("Name")): item.get("Value")
            for item in body.get("UserAttributes", [])
            if isinstance(item, dict)
        }
        subject = attributes.get("sub")
        if not subject:
            raise InvalidTokenError()
        attributes.setdefault("username", body.get("Username"))
        return TokenIntrospection(subject_id=str(subject), attributes=attributes)

    async def refresh_token(self, refresh_token: str, *, username: str | None = None) -> RefreshedTokens:
        auth_parameters = {"REFRESH_TOKEN": refresh_token}
        if self._client_secret and username:
            auth_parameters["SECRET_HASH"] = generate_secret_hash(username, self._client_id, self._client_secret)
        try:
            body = await self._call(
                "InitiateAuth",
                {
                    "AuthFlow": "REFRESH_TOKEN_AUTH",
                    "ClientId": self._client_id,
                    "AuthParameters": auth_parameters,
                },
            )
        except CognitoError as exc:
            if exc.status_code >= 500:
                raise ProviderUnavailableError() from exc
            raise RefreshFailedError() from exc

        result = body.get("AuthenticationResult")
        if not isinstance(result, dict) or "AccessToken" not in result:
            raise RefreshFailedError()
        return RefreshedTokens(
            access_token=str(result["AccessToken"]),
            id_token=str(result.get("IdToken", "")),
            expires_in=int(result.get("ExpiresIn", 3600)),
        )

    async def global_sign_out(self, access_token: str) -> None:
        try:
            await self._call("GlobalSignOut", {"AccessToken": access_token})
        except CognitoError as exc:
            raise _token_error(exc) from exc

    async def _call(self, action: str, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Content-Type": CONTENT_TYPE,
            "X-Amz-Target": f"{TARGET_PREFIX}{action}",
        }
        try:
            if self._http_client is not None:
                response = await self._http_client.post(self._endpoint, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._request_timeout) as client:
                    response = await client.post(self._endpoint, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("cognito_transport_error", action=action, error=str(exc))
            raise ProviderUnavailableError() from exc

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_error:
            error_type = _error_type(response, body)
            logger.info("cognito_error", action=action, error_type=error_type, status_code=response.status_code)
            if response.status_code >= 500 and error_type not in _RATE_LIMIT_ERRORS:
                raise ProviderUnavailableError()
            raise CognitoError(error_type, str(body.get("message") or body.get("Message") or ""), response.status_code)
        return body


def _error_type(response: httpx.Response, body: dict[str, Any]) -> str:
    raw = response.headers.get("x-amzn-errortype") or str(body.get("__type", "")) or "UnknownError"
    # "aws.cognito#NotAuthorizedException:http://..." style values
    raw = raw.split(":")[0]
    return raw.split("#")[-1]


def _credential_error(exc: CognitoError) -> AuthError:
    if exc.error_type == "NotAuthorizedException":
        return InvalidCredentialsError()
    if exc.error_type == "UserNotConfirmedException":
        return AccountNotConfirmedError()
    if exc.error_type == "UserNotFoundException":
        return AccountNotFoundError("User not found")
    if exc.error_type in _RATE_LIMIT_ERRORS:
        return RateLimitedError()
    if exc.error_type == "PasswordResetRequiredException":
        return InvalidCredentialsError("Password reset required")
    return ProviderUnavailableError()


def _token_error(exc: CognitoError) -> AuthError:
    if exc.error_type in _RATE_LIMIT_ERRORS:
        return RateLimitedError()
    if exc.error_type == "NotAuthorizedException" and "expired" in exc.message.lower():
        return TokenExpiredError()
    if exc.error_type in {"NotAuthorizedException", "UserNotFoundException", "InvalidParameterException"}:
        return InvalidTokenError()
    return ProviderUnavailableError()
