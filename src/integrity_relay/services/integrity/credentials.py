"""
Service credentials for calls to the decoding authority.

Credentials are obtained from an injected provider with an explicit
lifecycle: fetch, cache until expiry, refresh. Nothing is held in module
level state.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import httpx
import jwt

from .errors import CredentialUnavailable

logger = logging.getLogger(__name__)

PLAY_INTEGRITY_SCOPE = "https://www.googleapis.com/auth/playintegrity"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


class CredentialProvider(ABC):
    """Supplies short-lived bearer tokens for service-to-service calls."""

    @abstractmethod
    async def get_token(self) -> str:
        """
        Return a valid access token.

        Raises:
            CredentialUnavailable: if no token can be obtained
        """
        pass

    def invalidate(self) -> None:
        """Drop any cached token so the next call fetches a new one."""


class StaticCredentialProvider(CredentialProvider):
    """Fixed bearer token, for development and tests."""

    def __init__(self, token: str):
        if not token:
            raise ValueError("A static credential token is required")
        self._token = token

    async def get_token(self) -> str:
        return self._token


class ServiceAccountCredentialProvider(CredentialProvider):
    """
    OAuth2 service-account flow.

    Signs a JWT assertion with the service account's private key, exchanges
    it at the token endpoint and caches the access token until shortly
    before it expires.
    """

    ASSERTION_LIFETIME = 3600

    def __init__(self, service_account_info: Dict[str, Any],
                 http_client: httpx.AsyncClient,
                 scope: str = PLAY_INTEGRITY_SCOPE,
                 token_uri: Optional[str] = None,
                 refresh_skew: int = 60,
                 clock: Callable[[], float] = time.time):
        missing = [k for k in ("client_email", "private_key") if not service_account_info.get(k)]
        if missing:
            raise ValueError(f"Service account info missing: {', '.join(missing)}")

        self.client_email = service_account_info["client_email"]
        self._private_key = service_account_info["private_key"]
        self._key_id = service_account_info.get("private_key_id")
        self.token_uri = token_uri or service_account_info.get("token_uri") or "https://oauth2.googleapis.com/token"
        self.scope = scope
        self.refresh_skew = refresh_skew
        self._http = http_client
        self._clock = clock

        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @classmethod
    def from_file(cls, path: str, http_client: httpx.AsyncClient, **kwargs) -> "ServiceAccountCredentialProvider":
        """Load a service-account JSON key file."""
        with open(path, "r", encoding="utf-8") as f:
            info = json.load(f)
        return cls(info, http_client, **kwargs)

    def _has_valid_token(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at - self.refresh_skew

    def _build_assertion(self) -> str:
        now = int(self._clock())
        payload = {
            "iss": self.client_email,
            "scope": self.scope,
            "aud": self.token_uri,
            "iat": now,
            "exp": now + self.ASSERTION_LIFETIME,
        }
        headers = {"kid": self._key_id} if self._key_id else None
        return jwt.encode(payload, self._private_key, algorithm="RS256", headers=headers)

    async def get_token(self) -> str:
        if self._has_valid_token():
            return self._token

        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self._has_valid_token():
                return self._token
            await self._refresh()
            return self._token

    async def _refresh(self) -> None:
        try:
            assertion = self._build_assertion()
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise CredentialUnavailable(f"Could not sign service account assertion: {e}") from e

        try:
            response = await self._http.post(
                self.token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
        except httpx.RequestError as e:
            raise CredentialUnavailable(f"Token endpoint request failed: {type(e).__name__}") from e

        if response.status_code != 200:
            logger.error(f"Token endpoint error: {response.status_code}")
            raise CredentialUnavailable(f"Token endpoint returned {response.status_code}")

        try:
            body = response.json()
            token = body["access_token"]
            expires_in = int(body.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as e:
            raise CredentialUnavailable("Malformed token endpoint response") from e

        self._token = token
        self._expires_at = self._clock() + expires_in
        logger.info(f"Service credential refreshed for {self.client_email}, expires in {expires_in}s")

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0
