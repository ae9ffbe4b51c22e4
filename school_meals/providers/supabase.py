"""Client for the hosted auth provider's REST API (GoTrue under ``/auth/v1``)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class AuthProviderError(Exception):
    """The provider answered, but with an error payload."""

    def __init__(self, message: str, status_code: int = 400, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


@dataclass
class AuthUser:
    id: str
    email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AuthUser":
        user_id = payload.get("id")
        if not user_id:
            raise AuthProviderError("Provider returned a user without an id", status_code=502)
        return cls(
            id=str(user_id),
            email=payload.get("email"),
            metadata=payload.get("user_metadata") or {},
        )


@dataclass
class AuthSession:
    user: AuthUser
    access_token: str
    expires_at: Optional[int] = None
    refresh_token: Optional[str] = None


def _error_message(response: httpx.Response) -> tuple[str, str | None]:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"Auth provider error ({response.status_code})", None
    if not isinstance(body, dict):
        return f"Auth provider error ({response.status_code})", None
    message = body.get("msg") or body.get("error_description") or body.get("message") or body.get("error")
    code = body.get("error_code") or body.get("code")
    return str(message or f"Auth provider error ({response.status_code})"), (str(code) if code else None)


class SupabaseAuthClient:
    """Async wrapper over the auth endpoints the API needs.

    Provider error responses raise :class:`AuthProviderError`; transport
    failures propagate as :class:`httpx.HTTPError`. Nothing is retried.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/auth/v1",
            headers={"apikey": api_key, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, *, token: str | None = None, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        response = await self._http.request(method, path, headers=headers, **kwargs)
        if response.status_code >= 400:
            message, code = _error_message(response)
            logger.info(
                "Auth provider rejected %s %s status=%s code=%s",
                method,
                path,
                response.status_code,
                code,
            )
            raise AuthProviderError(message, status_code=response.status_code, code=code)
        return response

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any] | None = None) -> AuthUser:
        response = await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": metadata or {}},
        )
        body = response.json()
        # With email confirmation on, the provider returns the bare user object;
        # with autoconfirm it returns a session wrapping it.
        payload = body.get("user") if isinstance(body.get("user"), dict) else body
        return AuthUser.from_payload(payload)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        body = response.json()
        return AuthSession(
            user=AuthUser.from_payload(body.get("user") or {}),
            access_token=body["access_token"],
            expires_at=body.get("expires_at"),
            refresh_token=body.get("refresh_token"),
        )

    async def get_user(self, access_token: str) -> AuthUser:
        response = await self._request("GET", "/user", token=access_token)
        return AuthUser.from_payload(response.json())

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", token=access_token)
