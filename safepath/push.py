"""
push.py – Expo push notification gateway client.

Messages are posted to the Expo push API in chunks of PUSH_BATCH_SIZE. The
API answers with one ticket per message; a transport failure or a non-2xx
response fails the whole batch with PushGatewayError.
"""
import logging
from typing import List, Optional

import requests

from config import Config
from safepath.errors import PushGatewayError

logger = logging.getLogger(__name__)


class ExpoPushClient:
    """Thin wrapper around the Expo push HTTP endpoint."""

    def __init__(self, url: str = Config.EXPO_PUSH_URL,
                 access_token: Optional[str] = Config.EXPO_ACCESS_TOKEN,
                 timeout: float = Config.PUSH_TIMEOUT_SECONDS,
                 batch_size: int = Config.PUSH_BATCH_SIZE,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.access_token = access_token
        self.timeout = timeout
        self.batch_size = batch_size
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        headers = {
            "Content-Type":    "application/json",
            "Accept":          "application/json",
            "Accept-Encoding": "gzip, deflate",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def send(self, messages: List[dict]) -> List[dict]:
        """
        Deliver a batch of messages.

        Returns
        -------
        list of Expo tickets, one per message, e.g.
          {"status": "ok", "id": "..."} or {"status": "error", "message": "..."}
        """
        tickets: List[dict] = []
        for start in range(0, len(messages), self.batch_size):
            chunk = messages[start:start + self.batch_size]
            try:
                response = self.session.post(self.url, json=chunk,
                                             headers=self._headers(),
                                             timeout=self.timeout)
                response.raise_for_status()
                payload = response.json()
            except (requests.RequestException, ValueError) as e:
                raise PushGatewayError(f"Expo push request failed: {e}") from e

            chunk_tickets = payload.get("data", []) if isinstance(payload, dict) else []
            tickets.extend(chunk_tickets)

        failed = [t for t in tickets if t.get("status") == "error"]
        if failed:
            logger.warning("[push] %d of %d message(s) rejected: %s",
                           len(failed), len(tickets), failed[0].get("message"))
        logger.info("[push] delivered %d message(s) to Expo", len(tickets) - len(failed))
        return tickets
