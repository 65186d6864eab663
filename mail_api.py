# ─────────────────────────────────────────────────────────────────────────────
# Temp Mail Inbox - A Professional Temporary Email Client
# Copyright © 2024‑2025  zebbern  <https://github.com/zebbern>
# ─────────────────────────────────────────────────────────────────────────────
# HTTP client for the mail.gw / mail.tm temporary mail API (Hydra JSON).
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import logging
import random
import string
from typing import Any, Dict, List, Optional, Tuple

import requests

LOGGER = logging.getLogger(__name__)

API_BASES: Dict[str, str] = {
    "mail.gw": "https://api.mail.gw",
    "mail.tm": "https://api.mail.tm",
}

DEFAULT_PROVIDER = "mail.gw"
USER_AGENT = "TempMailInbox/2.0 (https://github.com/zebbern/temp-mail-watcher)"

##############################################################################
# Errors
##############################################################################

class ProviderError(Exception):
    """Base exception for provider errors."""
    pass

class NetworkError(ProviderError):
    """Network-related errors."""
    pass

class APIError(ProviderError):
    """API response errors."""

    def __init__(self, message: str, status: Optional[int] = None, details: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.details = details

class RateLimitError(APIError):
    """The API answered 429 Too Many Requests."""
    pass

def is_rate_limit(exc: BaseException) -> bool:
    """Classify a failure for the request governor."""
    return isinstance(exc, RateLimitError)

##############################################################################
# Utility helpers
##############################################################################

def _rand_string(n: int = 10) -> str:
    """Generate a random alphanumeric string of length n."""
    return "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(n))

def generate_credentials(domain: str) -> Tuple[str, str]:
    """Return a random ``(address, password)`` pair on ``domain``."""
    return f"{_rand_string()}@{domain}", _rand_string(12)

def make_requests_session() -> requests.Session:
    """Create a requests session with proper headers."""
    session = requests.Session()
    session.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "application/ld+json, application/json",
    })
    return session

##############################################################################
# Client
##############################################################################

class MailApiClient:
    """Calls to one mail.gw-compatible API, optionally authenticated."""

    def __init__(
        self,
        base_url: str = API_BASES[DEFAULT_PROVIDER],
        token: Optional[str] = None,
        timeout: int = 15,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or make_requests_session()

    @classmethod
    def for_provider(cls, provider: str, token: Optional[str] = None, timeout: int = 15) -> "MailApiClient":
        if provider not in API_BASES:
            raise ProviderError(f"Unknown provider: {provider}")
        return cls(API_BASES[provider], token=token, timeout=timeout)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            res = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Network error: {e}") from e

        if not res.ok:
            try:
                details = res.json()
            except ValueError:
                details = None
            message = f"{method} {path} failed: {res.status_code} {res.reason}"
            if res.status_code == 429:
                raise RateLimitError(message, status=429, details=details)
            raise APIError(message, status=res.status_code, details=details)

        if res.status_code == 204 or not res.content:
            return None
        try:
            return res.json()
        except ValueError as e:
            raise APIError(f"Invalid JSON from {path}: {e}", status=res.status_code) from e

    # Accounts

    def get_domains(self) -> List[str]:
        data = self._request("GET", "/domains", params={"page": 1})
        domains = [d["domain"] for d in data.get("hydra:member", []) if d.get("isActive", True)]
        if not domains:
            raise APIError("No domains available")
        return domains

    def create_account(self, address: str, password: str) -> Dict[str, Any]:
        return self._request("POST", "/accounts", json={"address": address, "password": password})

    def login(self, address: str, password: str) -> Dict[str, Any]:
        """Exchange credentials for a bearer token; the client keeps it."""
        data = self._request("POST", "/token", json={"address": address, "password": password})
        if not data or not data.get("token"):
            raise APIError("Failed to get token")
        self.token = data["token"]
        return data

    def get_me(self) -> Dict[str, Any]:
        return self._request("GET", "/me")

    def delete_account(self, account_id: str) -> None:
        self._request("DELETE", f"/accounts/{account_id}")

    # Messages

    def list_messages(self, page: int = 1) -> List[Dict[str, Any]]:
        """Return the inbox, newest first."""
        data = self._request("GET", "/messages", params={"page": page})
        messages = data.get("hydra:member", []) if data else []
        return sorted(messages, key=lambda m: m.get("createdAt") or "", reverse=True)

    def get_message(self, message_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/messages/{message_id}")

    def mark_as_read(self, message_id: str) -> None:
        self._request(
            "PATCH",
            f"/messages/{message_id}",
            json={"seen": True},
            headers={"Content-Type": "application/merge-patch+json"},
        )

    def delete_message(self, message_id: str) -> None:
        self._request("DELETE", f"/messages/{message_id}")
