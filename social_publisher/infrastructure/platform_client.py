# social_publisher/infrastructure/platform_client.py
import os
from typing import Optional, Protocol

import httpx
import structlog

from social_publisher.adapters.registry import PayloadUnit
from social_publisher.errors import TerminalPlatformError, TransientPlatformError
from social_publisher.infrastructure.proxy_client import ProxyManager, open_client
from social_publisher.infrastructure.security import decrypt_token
from social_publisher.models.connected_platform import ConnectedPlatform

logger = structlog.get_logger(__name__)

PLATFORM_API_BASE_URL = os.getenv("PLATFORM_API_BASE_URL", "http://localhost:9000")
PLATFORM_TIMEOUT_SECONDS = float(os.getenv("PLATFORM_TIMEOUT_SECONDS", "15"))


class PlatformClient(Protocol):
    async def publish(self, connection: ConnectedPlatform, unit: PayloadUnit, reply_to: Optional[str]) -> str:
        """Publish one payload unit and return the platform-assigned post id."""
        ...


class HttpPlatformClient:
    """Talks to the platform gateway over HTTP.

    The gateway owns each network's wire protocol; we send one JSON document per
    payload unit to ``{base_url}/{platform}/posts`` and expect ``{"id": ...}`` back.
    Timeouts, connection errors, 5xx and 429 are transient; other 4xx are terminal.
    """

    def __init__(
        self,
        base_url: str = PLATFORM_API_BASE_URL,
        timeout: float = PLATFORM_TIMEOUT_SECONDS,
        proxy_manager: Optional[ProxyManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.proxy_manager = proxy_manager if proxy_manager is not None else ProxyManager.from_env()
        self.transport = transport

    async def publish(self, connection: ConnectedPlatform, unit: PayloadUnit, reply_to: Optional[str]) -> str:
        platform = connection.platform
        token = decrypt_token(connection.access_token_enc)
        if not token:
            raise TerminalPlatformError(platform, "connection credentials are missing or unreadable")

        payload = {
            "account": connection.provider_user_id,
            "text": unit.text,
            "media": unit.media,
            "settings": unit.settings,
            "position": unit.position,
            "total": unit.total,
            "reply_to": reply_to,
        }
        headers = {"Authorization": f"Bearer {token}"}
        extra = {"transport": self.transport} if self.transport else {}

        try:
            async with open_client(self.proxy_manager, self.timeout, **extra) as client:
                response = await client.post(f"{self.base_url}/{platform}/posts", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientPlatformError(platform, f"timed out after {self.timeout}s") from exc
        except httpx.TransportError as exc:
            raise TransientPlatformError(platform, f"network error: {exc}") from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientPlatformError(
                platform, f"{platform} API error ({response.status_code}): {response.text}", response.status_code
            )
        if response.status_code >= 400:
            raise TerminalPlatformError(
                platform, f"{platform} API rejected post ({response.status_code}): {response.text}", response.status_code
            )

        body = response.json()
        post_id = body.get("id")
        if not post_id:
            raise TerminalPlatformError(platform, f"{platform} API returned no post id: {body}")
        logger.debug("platform_unit_published", platform=platform, position=unit.position, platform_post_id=post_id)
        return str(post_id)
