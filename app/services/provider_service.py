"""
HTTP client for the unified mail-provider API.

Endpoints used:
- POST /email/sync            start (or re-check) the initial sync handshake
- GET  /email/sync/updated    pull one page of changed records
- POST /subscriptions         register a change-notification callback
"""

import logging
from typing import Any, Dict, Optional

import requests

from app.errors import AccountNotReadyError, AuthenticationError, MailSyncError, TransientRemoteError

logger = logging.getLogger(__name__)

# Provider error messages meaning "try again once the account is initialized"
NOT_READY_MARKERS = ("account is not initialized yet", "unavailable")


class ProviderClient:
    def __init__(self, access_token: str, base: str = "https://api.aurinko.io/v1", timeout: float = 30) -> None:
        self.access_token = access_token
        self.base = base.rstrip("/")
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    # ───────── HTTP helpers ─────────
    def _request(self, method: str, path: str, params: Dict[str, Any] = None, json: Dict[str, Any] = None) -> Dict[str, Any]:
        url = f"{self.base}{path}"
        try:
            r = requests.request(method, url, headers=self._headers(), params=params, json=json, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientRemoteError(f"{method} {path} failed: {e}") from e

        if r.ok:
            return r.json() if r.content else {}

        message = _error_message(r)
        if r.status_code in (401, 403):
            raise AuthenticationError(f"Provider rejected credentials ({r.status_code}): {message}")
        if any(marker in message.lower() for marker in NOT_READY_MARKERS):
            raise AccountNotReadyError(message)
        if r.status_code == 429 or r.status_code >= 500:
            raise TransientRemoteError(f"{method} {path} returned {r.status_code}: {message}")
        raise MailSyncError(f"{method} {path} returned {r.status_code}: {message}")

    # ───────── sync API ─────────
    def start_sync(self, days_within: int = 2, body_type: str = "html") -> Dict[str, Any]:
        """
        Start the initial sync handshake.

        Returns:
            dict with 'ready' and 'syncUpdatedToken'
        """
        return self._request("POST", "/email/sync", params={"daysWithin": days_within, "bodyType": body_type})

    def pull_changes(self, delta_token: Optional[str] = None, page_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Pull one page of changed records.

        Returns:
            dict with 'records', and 'nextPageToken' or 'nextDeltaToken'
        """
        params = {}
        if delta_token:
            params["deltaToken"] = delta_token
        if page_token:
            params["pageToken"] = page_token
        return self._request("GET", "/email/sync/updated", params=params)

    def create_change_subscription(self, callback_url: str) -> Dict[str, Any]:
        """Ask the provider to POST change notifications to callback_url."""
        return self._request("POST", "/subscriptions", json={
            "resource": "/email/messages",
            "notificationUrl": callback_url
        })


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason or ""
    if isinstance(data, dict):
        return str(data.get("message") or data.get("code") or data)
    return str(data)
