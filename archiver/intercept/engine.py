"""Interception engine that ties the transport, target watcher and handlers together.

This module provides the InterceptionEngine class, the composition root of the
interception core: it validates the configuration, opens the DevTools
connection, routes target lifecycle events to the TargetWatcher, starts
target discovery and retrieves response bodies on demand.
"""

import base64
import logging
from collections import Counter
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Sequence, Union

from ..errors import CdpConnectionError, ConfigurationError
from ..models.capture import BodyRef, CaptureRule, CapturedResponse
from ..models.events import TARGET_EVENTS, ProtocolEvent, handler_method
from ..utils.pattern_matcher import PatternMatcher
from .target_session import RawPauseHandler, ResponseHandler
from .target_watcher import TargetPredicate, TargetWatcher
from .transport import CdpConnection

logger = logging.getLogger(__name__)

DEFAULT_DISCOVER_TARGETS_FILTER: List[Dict[str, Any]] = [
    {"type": "page"},
    {"type": "service_worker"},
]


class InterceptionConfig:
    """Configuration for the interception engine."""

    def __init__(
        self,
        initial_url: Optional[str] = None,
        capture_rules: Optional[Sequence[Union[CaptureRule, Dict[str, Any]]]] = None,
        response_handler: Optional[ResponseHandler] = None,
        target_predicate: Optional[TargetPredicate] = None,
        raw_pause_handler: Optional[RawPauseHandler] = None,
        discover_targets_filter: Optional[List[Dict[str, Any]]] = None,
        command_timeout: float = 30.0,
    ):
        """Initialize interception configuration.

        Args:
            initial_url: URL opened when the browser is launched
            capture_rules: Rules selecting responses to capture
            response_handler: Receives captured responses; required together
                with capture_rules
            target_predicate: Decides per target whether to register interception
            raw_pause_handler: Receives paused requests of registered targets
            discover_targets_filter: Target discovery filter
            command_timeout: Seconds to wait for a protocol command
        """
        self.initial_url = initial_url
        self.capture_rules = (
            None if capture_rules is None
            else [CaptureRule.model_validate(rule) for rule in capture_rules]
        )
        self.response_handler = response_handler
        self.target_predicate = target_predicate
        self.raw_pause_handler = raw_pause_handler
        self.discover_targets_filter = discover_targets_filter
        self.command_timeout = command_timeout

    def validate(self) -> None:
        """Check the configuration.

        Raises:
            ConfigurationError: If only one of capture_rules and
                response_handler is given
        """
        if (self.capture_rules is None) != (self.response_handler is None):
            raise ConfigurationError("response_handler must be used together with capture_rules")

    @property
    def discover_filter(self) -> List[Dict[str, Any]]:
        return self.discover_targets_filter or DEFAULT_DISCOVER_TARGETS_FILTER


class InterceptionEngine:
    """Intercepts responses of browser targets over the DevTools protocol."""

    def __init__(
        self,
        config: InterceptionConfig,
        connection_factory: Callable[..., CdpConnection] = CdpConnection,
    ):
        """Initialize the interception engine.

        Args:
            config: Engine configuration, validated here
            connection_factory: Builds the connection from a debugger URL

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        config.validate()
        self.config = config
        self.connection_factory = connection_factory
        self.connection: Optional[CdpConnection] = None
        self.watcher: Optional[TargetWatcher] = None
        self.matcher = PatternMatcher()
        self.stats: Counter = Counter()
        self._is_running = False

    async def start(self, web_socket_debugger_url: str) -> None:
        """Connect to the browser and start discovering targets.

        Args:
            web_socket_debugger_url: Browser DevTools WebSocket URL

        Raises:
            CdpConnectionError: If the browser cannot be reached
            ProtocolError: If target discovery is refused
        """
        if self._is_running:
            logger.warning("Interception engine already running")
            return

        logger.info("Connecting to the Chrome DevTools Protocol... ")
        self.connection = self.connection_factory(
            web_socket_debugger_url, command_timeout=self.config.command_timeout
        )
        await self.connection.connect()
        logger.info("Connection successful!")

        self.watcher = TargetWatcher(
            self.connection,
            capture_rules=self.config.capture_rules,
            response_handler=self.config.response_handler,
            target_predicate=self.config.target_predicate,
            raw_pause_handler=self.config.raw_pause_handler,
            matcher=self.matcher,
            stats=self.stats,
        )
        for event_type in TARGET_EVENTS:
            self.connection.on(event_type.METHOD, self._target_listener(event_type))
        self.connection.on_close(self._on_connection_closed)
        self._is_running = True

        try:
            await self.connection.send("Target.setDiscoverTargets", {
                "discover": True,
                "filter": self.config.discover_filter,
            })
        except Exception:
            await self.stop()
            raise

    def _target_listener(self, event_type: type) -> Callable[[Dict[str, Any]], Any]:
        def listener(params: Dict[str, Any]):
            event: ProtocolEvent = event_type.model_validate(params)
            return handler_method(self.watcher, event)(event)
        return listener

    def _on_connection_closed(self, error: Optional[BaseException]) -> None:
        self._is_running = False
        if error is not None:
            logger.info(f"The CDP WebSocket connection failed with an error: {error}")
        else:
            logger.info(
                "The CDP WebSocket connection was closed. Please reconnect by "
                "running this program again (if you're not finished)."
            )

    async def stop(self) -> None:
        """Detach all sessions and close the connection."""
        if self.watcher is not None and self.connection is not None and self.connection.is_connected:
            await self.watcher.close()
        if self.connection is not None:
            await self.connection.close()
        self._is_running = False

    async def wait_closed(self) -> Optional[BaseException]:
        """Wait until the browser connection closes.

        Returns:
            The error that closed the connection, or None
        """
        if self.connection is None:
            return None
        return await self.connection.wait_closed()

    async def fetch_body(self, ref: Union[BodyRef, CapturedResponse]) -> bytes:
        """Retrieve a captured response body.

        This consumes the body; it can be fetched once per request.

        Args:
            ref: Body reference, or the captured response itself

        Returns:
            Raw body bytes

        Raises:
            CdpConnectionError: If the engine is not connected
            ProtocolError: If the body is no longer available
        """
        if isinstance(ref, CapturedResponse):
            ref = ref.body_ref
        if self.connection is None:
            raise CdpConnectionError("The interception engine is not started")

        domain = "Fetch" if ref.via_pausing_channel else "Network"
        result = await self.connection.send(
            f"{domain}.getResponseBody", {"requestId": ref.request_id}, session_id=ref.session_id
        )
        body = result.get("body", "")
        if result.get("base64Encoded"):
            return base64.b64decode(body)
        return body.encode("utf-8")

    @asynccontextmanager
    async def session(self, web_socket_debugger_url: str) -> AsyncGenerator['InterceptionEngine', None]:
        """Context manager for engine lifecycle."""
        await self.start(web_socket_debugger_url)
        try:
            yield self
        finally:
            await self.stop()

    @property
    def is_running(self) -> bool:
        return self._is_running

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics.

        Returns:
            Dictionary with session, response and error counts
        """
        watcher_stats = self.watcher.get_stats() if self.watcher is not None else {
            'sessions_active': 0,
            'pending_observations': 0,
        }
        return {
            'running': self._is_running,
            'sessions_active': watcher_stats['sessions_active'],
            'sessions_bound': self.stats['sessions_bound'],
            'bind_failures': self.stats['bind_failures'],
            'responses_via_pausing_channel': self.stats['responses_via_pausing_channel'],
            'responses_via_observation_channel': self.stats['responses_via_observation_channel'],
            'pending_observations': watcher_stats['pending_observations'],
            'evicted_observations': self.stats['evicted_observations'],
            'continue_failures': self.stats['continue_failures'],
            'handler_errors': self.stats['handler_errors'],
            'patterns_cached': self.matcher.cache_size,
        }

    def __repr__(self) -> str:
        stats = self.get_stats()
        return (
            f"InterceptionEngine(running={self._is_running}, "
            f"sessions={stats['sessions_active']}, "
            f"captured={stats['responses_via_pausing_channel'] + stats['responses_via_observation_channel']})"
        )


def create_interception_engine(
    capture_rules: Optional[Sequence[Union[CaptureRule, Dict[str, Any]]]] = None,
    response_handler: Optional[ResponseHandler] = None,
    **kwargs
) -> InterceptionEngine:
    """Create an interception engine with common configuration.

    Args:
        capture_rules: Rules selecting responses to capture
        response_handler: Receives captured responses
        **kwargs: Additional InterceptionConfig options

    Returns:
        Configured InterceptionEngine instance
    """
    config = InterceptionConfig(
        capture_rules=capture_rules,
        response_handler=response_handler,
        **kwargs
    )
    return InterceptionEngine(config)
