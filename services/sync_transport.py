# services/sync_transport.py
import logging
from typing import Any, Dict, List, Optional

import requests

from utils.changeset import count_changes, normalize_changes
from utils.exceptions import SyncTransportError, ValidationError

logger = logging.getLogger(__name__)

SYNC_PATH = "/api/sync"


class HttpSyncTransport:
    """Posts a change set to the remote peer and returns the peer's change set."""

    def __init__(self, base_url: str, timeout: float = 10, session: Optional[requests.Session] = None):
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.base_url}{SYNC_PATH}"

    def exchange(self, changes: Dict[str, List[dict]]) -> Dict[str, List[dict]]:
        logger.debug("POST %s with %d changes", self.url, count_changes(changes))
        try:
            response = self.session.request(
                method="POST",
                url=self.url,
                headers={"Content-Type": "application/json"},
                json=changes,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SyncTransportError(f"Sync peer unreachable: {e}") from e

        if not 200 <= response.status_code < 300:
            raise SyncTransportError(
                f"Sync peer answered HTTP {response.status_code}", status=response.status_code
            )

        try:
            body: Any = response.json()
        except ValueError as e:
            raise SyncTransportError("Sync peer answered with a non-JSON body",
                                     status=response.status_code) from e

        try:
            return normalize_changes(body, strict=True)
        except ValidationError as e:
            raise SyncTransportError(f"Sync peer answered with a bad change set: {e}",
                                     status=response.status_code) from e

    def close(self):
        self.session.close()
