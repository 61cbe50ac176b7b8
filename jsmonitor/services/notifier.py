"""
Webhook transport for change summaries.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Any, Optional

import aiohttp

from jsmonitor.core.errors import DeliveryError
from jsmonitor.core.logger import logger


DEFAULT_RETRY_AFTER = 60.0


@dataclass
class DeliveryResult:
    ok: bool
    status: int = 0
    retry_after: Optional[float] = None


class WebhookNotifier:
    """POSTs JSON payloads to a chat webhook (Discord-compatible embeds)."""

    def __init__(self, url: str, timeout: float = 10.0, username: str = "jsmonitor"):
        self.url = url
        self.timeout = timeout
        self.username = username

    @staticmethod
    def _retry_after(headers) -> float:
        value = headers.get('Retry-After')
        if not value:
            return DEFAULT_RETRY_AFTER
        try:
            return max(0.0, float(value))
        except ValueError:
            return DEFAULT_RETRY_AFTER

    async def send(self, payload: Dict[str, Any]) -> DeliveryResult:
        body = dict(payload)
        body.setdefault("username", self.username)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=body) as response:
                    if response.status == 429:
                        retry_after = self._retry_after(response.headers)
                        logger.warning(f"Webhook rate limited, retry after {retry_after:.0f}s")
                        return DeliveryResult(ok=False, status=429, retry_after=retry_after)
                    if response.status >= 400:
                        text = await response.text()
                        raise DeliveryError(
                            f"Webhook returned HTTP {response.status}: {text[:100]}",
                            status=response.status
                        )
                    return DeliveryResult(ok=True, status=response.status)
        except asyncio.TimeoutError:
            raise DeliveryError(f"Webhook timed out after {self.timeout}s")
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Webhook client error: {str(e)[:80]}")
