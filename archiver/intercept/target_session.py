"""Channel wiring for one bound target.

This module provides the TargetSession class that owns the pausing channel
(``Fetch``) and observation channel (``Network``) subscriptions of one bound
target, correlates observation events and routes responses to the caller's
handlers. Every paused request is continued unless the raw pause handler asks
otherwise.
"""

import inspect
import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from ..errors import ArchiverError
from ..models.capture import CapturedResponse, TargetInfo
from ..models.events import (
    LoadingFinished,
    NetworkEventHandler,
    OBSERVATION_EVENTS,
    PAUSING_EVENTS,
    ProtocolEvent,
    RequestPaused,
    RequestWillBeSent,
    ResponseReceived,
    handler_method,
)
from ..utils.pattern_matcher import PatternMatcher
from .interest import InterceptionHandle, TargetInterest
from .response_correlator import ResponseCorrelator
from .transport import CdpSession

logger = logging.getLogger(__name__)

ResponseHandler = Callable[[CapturedResponse], Union[None, Awaitable[None]]]
RawPauseHandler = Callable[[RequestPaused, CdpSession], Union[Optional[bool], Awaitable[Optional[bool]]]]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class TargetSession(NetworkEventHandler):
    """A target bound to a protocol session, with both channels wired."""

    def __init__(
        self,
        cdp_session: CdpSession,
        target: TargetInfo,
        interest: TargetInterest,
        matcher: PatternMatcher,
        response_handler: Optional[ResponseHandler] = None,
        raw_pause_handler: Optional[RawPauseHandler] = None,
        stats: Optional[Counter] = None,
    ):
        """Initialize the target session.

        Args:
            cdp_session: Protocol session attached (or attaching) to the target
            target: Target snapshot; its URL is reported as the initiator
            interest: Interest the session was bound for
            matcher: Matcher for the intercept patterns
            response_handler: Receives every captured response
            raw_pause_handler: Receives every paused request when interception
                was registered; a truthy result means the request must not be
                continued automatically
            stats: Shared counters
        """
        self.cdp_session = cdp_session
        self.target = target
        self.interest = interest
        self.matcher = matcher
        self.response_handler = response_handler
        self.raw_pause_handler = raw_pause_handler
        self.stats = stats if stats is not None else Counter()
        self.correlator = ResponseCorrelator()
        self.bound = False
        self.closed = False
        self._handles: List[InterceptionHandle] = list(interest.handles)
        self._subscribed: Dict[str, Callable[[Dict[str, Any]], Any]] = {}

    @property
    def target_id(self) -> str:
        return self.target.target_id

    @property
    def session_id(self) -> Optional[str]:
        return self.cdp_session.id

    @property
    def raw_capture(self) -> bool:
        return self.interest.wants_response_capture and self.interest.raw_capture

    def add_handles(self, handles: List[InterceptionHandle]) -> None:
        """Attach registration handles, resolving them if the outcome is known."""
        for handle in handles:
            if self.bound:
                handle.resolve(self.cdp_session)
            elif self.closed:
                handle.resolve(False)
            else:
                self._handles.append(handle)

    def mark_bound(self) -> None:
        """Record a successful bind and resolve waiting handles with the session."""
        self.bound = True
        self.correlator.session_id = self.session_id
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.resolve(self.cdp_session)

    async def enable(self) -> None:
        """Subscribe to both channels, then enable the protocol domains.

        Raises:
            ProtocolError: If the browser refuses to enable a domain
        """
        events: List[Type[ProtocolEvent]] = list(PAUSING_EVENTS)
        if self.raw_capture:
            events += OBSERVATION_EVENTS
        for event_type in events:
            listener = self._listener(event_type)
            self._subscribed[event_type.METHOD] = listener
            self.cdp_session.on(event_type.METHOD, listener)

        if self.interest.wants_response_capture:
            await self.cdp_session.send("Fetch.enable", {
                "patterns": [
                    {"urlPattern": pattern, "requestStage": "Response"}
                    for pattern in self.interest.patterns
                ]
            })
            if self.raw_capture:
                logger.debug(f"Observation channel enabled for {self.target_id}")
                await self.cdp_session.send("Network.enable")

    def _listener(self, event_type: Type[ProtocolEvent]) -> Callable[[Dict[str, Any]], Any]:
        def listener(params: Dict[str, Any]):
            if self.closed:
                return None
            event = event_type.model_validate(params)
            return handler_method(self, event)(event)
        return listener

    async def on_request_paused(self, event: RequestPaused) -> None:
        do_not_continue = False
        try:
            if self.interest.wants_response_capture:
                if self.correlator.evict(event.network_id):
                    self.stats['evicted_observations'] += 1
                captured = CapturedResponse(
                    initiator=self.target.url,
                    via_pausing_channel=True,
                    request_id=event.request_id,
                    network_id=event.network_id,
                    session_id=self.session_id,
                    request=event.request,
                    response=event.response_meta(),
                )
                self.stats['responses_via_pausing_channel'] += 1
                if self.response_handler is not None:
                    await _maybe_await(self.response_handler(captured))
            if self.interest.wants_interception and self.raw_pause_handler is not None:
                do_not_continue = bool(await _maybe_await(self.raw_pause_handler(event, self.cdp_session)))
        except Exception:
            self.stats['handler_errors'] += 1
            logger.exception(f"Error handling paused request {event.request.get('url')}")
        finally:
            if not do_not_continue:
                await self._continue_request(event.request_id)

    async def _continue_request(self, request_id: str) -> None:
        try:
            await self.cdp_session.send("Fetch.continueRequest", {"requestId": request_id})
        except ArchiverError as e:
            self.stats['continue_failures'] += 1
            logger.debug(f"Failed to continue request {request_id}: {e}")

    def on_request_will_be_sent(self, event: RequestWillBeSent) -> None:
        url = event.request.get("url", "")
        if self.matcher.matches_any(url, self.interest.patterns):
            self.correlator.track(event.request_id, self.target.url, event.request)

    def on_response_received(self, event: ResponseReceived) -> None:
        self.correlator.attach_response(event.request_id, event.response)

    async def on_loading_finished(self, event: LoadingFinished) -> None:
        captured = self.correlator.complete(event.request_id)
        if captured is None:
            return
        self.stats['responses_via_observation_channel'] += 1
        if self.response_handler is None:
            return
        try:
            await _maybe_await(self.response_handler(captured))
        except Exception:
            self.stats['handler_errors'] += 1
            logger.exception(f"Error handling observed response {captured.url}")

    def close(self) -> None:
        """Drop pending observations and unsubscribe from both channels.

        Handles still waiting for the bind outcome resolve to False.
        """
        if self.closed:
            return
        self.closed = True
        self.correlator.clear()
        for method, listener in self._subscribed.items():
            self.cdp_session.off(method, listener)
        self._subscribed.clear()
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.resolve(False)

    async def detach(self) -> None:
        """Close the session and detach from the target."""
        self.close()
        try:
            await self.cdp_session.detach()
        except ArchiverError as e:
            logger.debug(f"Failed to detach from {self.target_id}: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get session statistics.

        Returns:
            Dictionary with the session state and correlation counts
        """
        return {
            'target_id': self.target_id,
            'session_id': self.session_id,
            'url': self.target.url,
            'reasons': sorted(reason.value for reason in self.interest.reasons),
            'patterns': list(self.interest.patterns),
            'raw_capture': self.raw_capture,
            **self.correlator.get_stats(),
        }

    def __repr__(self) -> str:
        return (
            f"TargetSession(target={self.target_id}, session={self.session_id}, "
            f"reasons={sorted(r.value for r in self.interest.reasons)}, pending={len(self.correlator)})"
        )
