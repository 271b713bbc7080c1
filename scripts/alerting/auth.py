"""OAuth2 client-credentials bearer auth for the management API."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import requests
from requests.auth import AuthBase

from scripts.alerting.errors import AuthenticationError

logger = logging.getLogger("alerting.auth")

# Refresh this many seconds before the token actually expires
_EXPIRY_SKEW_SECONDS = 120


class ClientCredentialsAuth(AuthBase):
    """Attach a cached app-only access token to every request.

    Assign to ``session.auth`` so the fetcher never handles tokens itself.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        scope: str = "https://graph.microsoft.com/.default",
        authority: str = "https://login.microsoftonline.com",
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._token_url = f"{authority.rstrip('/')}/{tenant_id}/oauth2/v2.0/token"
        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope
        # Separate session so token requests never recurse into this auth
        self._session = session or requests.Session()
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        r.headers["Authorization"] = f"Bearer {self.token()}"
        return r

    def token(self) -> str:
        if self._token and self._clock() < self._expires_at - _EXPIRY_SKEW_SECONDS:
            return self._token

        try:
            resp = self._session.post(
                self._token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "scope": self._scope,
                },
                timeout=30,
            )
        except requests.RequestException as exc:
            raise AuthenticationError(f"Token request failed: {exc}") from exc

        if resp.status_code != 200:
            raise AuthenticationError(
                f"Token request rejected (HTTP {resp.status_code}): {resp.text[:200]}"
            )
        try:
            payload = resp.json()
            token = payload["access_token"]
        except (ValueError, KeyError) as exc:
            raise AuthenticationError("Token response has no access_token") from exc

        self._token = token
        self._expires_at = self._clock() + float(payload.get("expires_in", 3600))
        logger.info("Acquired access token")
        return token
