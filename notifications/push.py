"""
Expo push client — delivers push notifications to devices.

Expo is a trusted service; a failed push is most likely an invalid token.
Transport errors are retried with exponential backoff and then surface to
the caller, which decides whether to swallow them.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import NotificationConfig

logger = structlog.get_logger()


class ExpoPushClient:
    """Thin async wrapper around the Expo push API."""

    def __init__(self, config: NotificationConfig = None):
        self.config = config or NotificationConfig()
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            headers = {
                "Accept": "application/json",
                "Accept-Encoding": "gzip, deflate",
                "Content-Type": "application/json",
            }
            if self.config.expo_access_token:
                headers["Authorization"] = f"Bearer {self.config.expo_access_token}"
            self.client = httpx.AsyncClient(headers=headers, timeout=self.config.timeout_seconds)
        return self.client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def send(self, token: str, title: str, body: str, data: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        message = {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": data,
        }
        response = await client.post(self.config.expo_push_url, json=message)
        response.raise_for_status()
        return response.json()

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None
