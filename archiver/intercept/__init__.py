"""Response interception over the Chrome DevTools Protocol.

Main Components:
- Transport: WebSocket protocol client with flattened sessions
- Browser Factory: Finds or launches a browser with the debugging port open
- Target Watcher: Per-target interest decisions and session lifecycle
- Target Session: Pausing and observation channel wiring
- Response Correlator: Observation channel event correlation
- Interception Engine: Composition root

Usage:
    from archiver.intercept import InterceptionEngine, InterceptionConfig

    engine = InterceptionEngine(InterceptionConfig(
        capture_rules=[{"from": "https://example.com/*", "intercept": "*.png"}],
        response_handler=handle_response,
    ))
    async with engine.session(web_socket_debugger_url):
        await engine.wait_closed()
"""

from .browser_factory import BrowserConfig, BrowserFactory
from .engine import (
    DEFAULT_DISCOVER_TARGETS_FILTER,
    InterceptionConfig,
    InterceptionEngine,
    create_interception_engine,
)
from .interest import InterceptionHandle, InterestReason, TargetInterest
from .response_correlator import PendingObservation, ResponseCorrelator
from .target_session import TargetSession
from .target_watcher import TargetWatcher
from .transport import CdpConnection, CdpSession

__all__ = [
    "BrowserConfig",
    "BrowserFactory",
    "DEFAULT_DISCOVER_TARGETS_FILTER",
    "InterceptionConfig",
    "InterceptionEngine",
    "create_interception_engine",
    "InterceptionHandle",
    "InterestReason",
    "TargetInterest",
    "PendingObservation",
    "ResponseCorrelator",
    "TargetSession",
    "TargetWatcher",
    "CdpConnection",
    "CdpSession",
]
