"""
Identity provider client - GoTrue-compatible REST API over httpx.

Password sign-in, sign-up, sign-out and admin user deletion are delegated to
the managed provider. Access tokens it issues are HS256 JWTs that we verify
locally with the shared JWT secret.

Usage:
    from clinicbook.identity import IdentityClient, get_identity_client

    @router.post("/login")
    async def login(identity: IdentityClient = Depends(get_identity_client)):
        session = await identity.sign_in_with_password(email, password)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import jwt

from .core.config import Settings, get_settings

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid login credentials"


class IdentityError(Exception):
    """Raised when the identity provider rejects a request or a token is invalid."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_invalid_credentials(self) -> bool:
        return self.message == INVALID_CREDENTIALS


@dataclass
class IdentityUser:
    id: str
    email: str
    user_metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> "IdentityUser":
        return cls(
            id=payload["id"],
            email=payload.get("email") or "",
            user_metadata=payload.get("user_metadata") or {},
        )


@dataclass
class IdentitySession:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    user: IdentityUser


def _error_message(response: httpx.Response) -> str:
    """GoTrue has used several error shapes over time; take the first that is present."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if not isinstance(body, dict):
        return f"HTTP {response.status_code}"
    for key in ("msg", "error_description", "message", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return f"HTTP {response.status_code}"


class IdentityClient:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.auth_url.rstrip("/") + "/auth/v1",
            timeout=self.settings.auth_timeout_seconds,
            transport=self._transport,
        )

    def _headers(self, bearer: Optional[str] = None, service_role: bool = False) -> dict[str, str]:
        key = self.settings.auth_service_role_key if service_role else self.settings.auth_anon_key
        return {
            "apikey": key,
            "Authorization": f"Bearer {bearer or key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        async with self._client() as client:
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                logger.error(f"Identity provider request {method} {path} failed: {e}")
                raise IdentityError("Identity provider unavailable", status_code=502) from e
        if response.is_error:
            message = _error_message(response)
            logger.warning(f"Identity provider {method} {path} -> {response.status_code}: {message}")
            raise IdentityError(message, status_code=response.status_code)
        return response

    async def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._headers(),
        )
        data = response.json()
        return IdentitySession(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in") or 3600),
            user=IdentityUser.from_payload(data["user"]),
        )

    async def sign_up(self, email: str, password: str, metadata: Optional[dict] = None) -> IdentityUser:
        response = await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": metadata or {}},
            headers=self._headers(),
        )
        data = response.json()
        # With email confirmation disabled the provider returns a session instead of a bare user
        return IdentityUser.from_payload(data.get("user") or data)

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", headers=self._headers(bearer=access_token))

    async def admin_delete_user(self, user_id: str) -> None:
        await self._request(
            "DELETE",
            f"/admin/users/{user_id}",
            headers=self._headers(service_role=True),
        )


def verify_access_token(token: str, settings: Optional[Settings] = None) -> dict:
    """
    Verify an access token issued by the identity provider.

    Returns:
        The decoded claims; ``sub`` is the user id.

    Raises:
        IdentityError: expired, malformed, or signed with another key.
    """
    settings = settings or get_settings()
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            audience=settings.auth_jwt_audience,
            options={"verify_exp": True, "require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise IdentityError("Token has expired", status_code=401) from e
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token verification failed: {e}")
        raise IdentityError("Invalid token", status_code=401) from e


def get_identity_client() -> IdentityClient:
    return IdentityClient()
