from __future__ import annotations

import logging
from typing import Optional

import requests

from .report import NotificationDocument

DEFAULT_TIMEOUT = 30


class NotificationError(Exception):
    """Raised when the webhook rejects or never receives a notification."""


class DiscordNotifier:
    """Posts rendered run reports to a Discord-compatible webhook."""

    def __init__(
        self,
        webhook_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._webhook_url = webhook_url
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "restic-backup-runner"})
        self._timeout = timeout
        self._log = logging.getLogger(self.__class__.__name__)

    def deliver(self, document: NotificationDocument) -> bool:
        """Send ``document``; failures are logged and reported as ``False``."""
        if not self._webhook_url:
            self._log.warning("No webhook configured; skipping notification")
            return False

        self._log.info("Sending Discord notification...")
        try:
            self._post(document)
        except NotificationError as exc:
            self._log.error("Failed to send Discord notification: %s", exc)
            return False

        self._log.info("Discord notification sent successfully")
        return True

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def _post(self, document: NotificationDocument) -> None:
        try:
            response = self._session.post(
                self._webhook_url,
                data=document.to_json().encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise NotificationError(str(exc)) from exc

        if response.status_code >= 400:
            self._log.debug("Webhook response body: %s", response.text)
            raise NotificationError(f"webhook returned HTTP {response.status_code}")
