"""Single-slot bearer token cache and client-credentials exchange."""

from __future__ import annotations

import base64
import threading
import time
from typing import Callable

import requests

from config.settings import TOKEN_EXPIRY_MARGIN_SECONDS
from engine.errors import ProviderError


class TokenCache:
    """Holds one bearer token together with the moment it stops being usable.

    ``expires_at`` is ``issued_at + expires_in - margin`` so a token is never
    handed out when it could expire in the middle of a request.
    """

    def __init__(
        self,
        *,
        now: Callable[[], float] = time.time,
        margin_seconds: float = TOKEN_EXPIRY_MARGIN_SECONDS,
    ) -> None:
        self._now = now
        self._margin_seconds = float(margin_seconds)
        self._lock = threading.Lock()
        self.token: str | None = None
        self.expires_at: float = 0.0

    def get(self) -> str | None:
        with self._lock:
            if self.token and self._now() < self.expires_at:
                return self.token
            return None

    def store(self, token: str, expires_in: float) -> None:
        with self._lock:
            self.token = token
            self.expires_at = self._now() + float(expires_in) - self._margin_seconds

    def invalidate(self) -> None:
        with self._lock:
            self.token = None
            self.expires_at = 0.0


def exchange_client_credentials(
    token_url: str,
    client_id: str,
    client_secret: str,
    *,
    timeout_sec: float,
) -> tuple[str, int]:
    """Perform an OAuth client-credentials exchange and return ``(token, expires_in)``."""
    auth_payload = f"{client_id}:{client_secret}".encode("utf-8")
    auth_header = base64.b64encode(auth_payload).decode("ascii")
    try:
        response = requests.post(
            token_url,
            data={"grant_type": "client_credentials"},
            headers={"Authorization": f"Basic {auth_header}"},
            timeout=timeout_sec,
        )
    except requests.RequestException as exc:
        raise ProviderError(f"token request failed: {exc}") from exc
    if response.status_code != 200:
        raise ProviderError(f"token request failed ({response.status_code})")
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderError("token response is not JSON") from exc
    token = payload.get("access_token") if isinstance(payload, dict) else None
    if not token:
        raise ProviderError("token response missing access_token")
    try:
        expires_in = int(payload.get("expires_in") or 0)
    except (TypeError, ValueError):
        expires_in = 0
    return str(token), max(0, expires_in)
