"""
Infrastructure for evasion-aware crawling.

- Rate shaping and identity rotation
- Session health tracking
- Proxy rotation
- Stealth browser driver (imported from emlak.infrastructure.browser)
"""

from .rate_shaper import BrowserIdentity, RateShaper
from .session_pool import Session, SessionHealth, SessionPool
from .proxy_rotation import (
    ProxyConfig,
    ProxyEntry,
    ProxyHealth,
    ProxyPool,
    ProxyPoolConfig,
    RotationStrategy,
    create_proxy_pool,
    load_proxies_from_file,
)

__all__ = [
    "BrowserIdentity",
    "RateShaper",
    "Session",
    "SessionHealth",
    "SessionPool",
    "ProxyConfig",
    "ProxyEntry",
    "ProxyHealth",
    "ProxyPool",
    "ProxyPoolConfig",
    "RotationStrategy",
    "create_proxy_pool",
    "load_proxies_from_file",
]
