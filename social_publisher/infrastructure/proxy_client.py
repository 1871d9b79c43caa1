# social_publisher/infrastructure/proxy_client.py
import os
import random
from typing import List, Optional

import httpx

PLATFORM_PROXIES = os.getenv("PLATFORM_PROXIES", "")


class ProxyManager:
    def __init__(self, proxies: Optional[List[str]] = None):
        self.proxies = proxies or []

    @classmethod
    def from_env(cls, raw: str = PLATFORM_PROXIES) -> "ProxyManager":
        return cls([p.strip() for p in raw.split(",") if p.strip()])

    def pick(self) -> Optional[str]:
        if not self.proxies:
            return None
        return random.choice(self.proxies)


def open_client(proxy_manager: Optional[ProxyManager], timeout: float, **kwargs) -> httpx.AsyncClient:
    """New AsyncClient routed through a randomly picked proxy, if any are configured."""
    proxy = proxy_manager.pick() if proxy_manager else None
    return httpx.AsyncClient(proxy=proxy, timeout=timeout, **kwargs)
