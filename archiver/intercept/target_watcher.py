"""Target lifecycle tracking and interception interest decisions.

This module provides the TargetWatcher class. On every created or changed
target it derives the target's interest from the capture rules and the
caller's target predicate, then binds, keeps, rebinds or detaches the
target's session so that a session exists exactly while interest does.
"""

import asyncio
import inspect
import logging
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from ..errors import ArchiverError, BindError
from ..models.capture import CaptureRule, TargetInfo, TargetKind
from ..models.events import (
    DetachedFromTarget,
    TargetCrashed,
    TargetCreated,
    TargetDestroyed,
    TargetEventHandler,
    TargetInfoChanged,
)
from ..utils.pattern_matcher import PatternMatcher
from .interest import InterceptionHandle, InterestReason, TargetInterest
from .target_session import RawPauseHandler, ResponseHandler, TargetSession
from .transport import CdpConnection, CdpSession

logger = logging.getLogger(__name__)

RegisterInterception = Callable[..., InterceptionHandle]
TargetPredicate = Callable[[TargetKind, str, RegisterInterception], Any]


class TargetWatcher(TargetEventHandler):
    """Keeps one session per interesting target."""

    def __init__(
        self,
        connection: CdpConnection,
        capture_rules: Optional[Sequence[CaptureRule]] = None,
        response_handler: Optional[ResponseHandler] = None,
        target_predicate: Optional[TargetPredicate] = None,
        raw_pause_handler: Optional[RawPauseHandler] = None,
        matcher: Optional[PatternMatcher] = None,
        stats: Optional[Counter] = None,
    ):
        """Initialize the target watcher.

        Args:
            connection: Browser connection sessions are opened on
            capture_rules: Rules mapping target URLs to response patterns
            response_handler: Receives captured responses
            target_predicate: Called as ``predicate(kind, url, register)`` for
                every target event; may call ``register(patterns)`` before it
                returns to request interception
            raw_pause_handler: Receives paused requests of targets registered
                through the predicate
            matcher: Pattern matcher shared by all sessions
            stats: Shared counters
        """
        self.connection = connection
        self.capture_rules = list(capture_rules or [])
        self.response_handler = response_handler
        self.target_predicate = target_predicate
        self.raw_pause_handler = raw_pause_handler
        self.matcher = matcher or PatternMatcher()
        self.stats = stats if stats is not None else Counter()
        self.sessions: Dict[str, TargetSession] = {}
        self._predicate_tasks: Set[asyncio.Future] = set()

    def is_inspected(self, target_id: str) -> bool:
        return target_id in self.sessions

    def evaluate_interest(self, target: TargetInfo) -> TargetInterest:
        """Derive a target's interest from the capture rules and the predicate.

        Args:
            target: Current target snapshot

        Returns:
            TargetInterest; empty when the target must not be inspected
        """
        reasons: Set[InterestReason] = set()
        patterns: List[str] = []
        handles: List[InterceptionHandle] = []
        raw_capture = False

        for rule in self.capture_rules:
            if not self.matcher.matches_any(target.url, rule.from_patterns):
                continue
            if rule.service_worker_only and target.kind != TargetKind.SERVICE_WORKER:
                continue
            patterns.extend(rule.intercept_patterns)
            if rule.enable_raw_capture:
                raw_capture = True
        if patterns:
            reasons.add(InterestReason.RESPONSE_CAPTURE)

        if self.target_predicate is not None:
            accepting = True

            def register_interception(intercept: Optional[Sequence[str]] = None) -> InterceptionHandle:
                intercept = [intercept] if isinstance(intercept, str) else list(intercept or [])
                if not accepting:
                    logger.warning(
                        f"Interception registered for {target.target_id} after the target "
                        f"predicate returned; register before the first await"
                    )
                    return InterceptionHandle(intercept, accepted=False)
                reasons.add(InterestReason.INTERCEPTION)
                patterns.extend(intercept)
                handle = InterceptionHandle(intercept)
                handles.append(handle)
                return handle

            try:
                result = self.target_predicate(target.kind, target.url, register_interception)
                if inspect.isawaitable(result):
                    self._track_predicate(result)
            except Exception:
                self.stats['handler_errors'] += 1
                logger.exception(f"Error in target predicate for {target.url}")
            finally:
                accepting = False

        return TargetInterest(
            reasons=frozenset(reasons),
            patterns=patterns,
            raw_capture=raw_capture,
            handles=handles,
        )

    def _track_predicate(self, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._predicate_tasks.add(task)

        def done(task: asyncio.Future) -> None:
            self._predicate_tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                self.stats['handler_errors'] += 1
                logger.error("Error in target predicate", exc_info=task.exception())

        task.add_done_callback(done)

    async def inspect_target(self, target: TargetInfo) -> Optional[TargetSession]:
        """Reconcile a target's session with its current interest.

        Args:
            target: Current target snapshot

        Returns:
            The target's session after reconciliation, or None
        """
        interest = self.evaluate_interest(target)
        existing = self.sessions.get(target.target_id)

        if not interest:
            interest.resolve_handles(False)
            if existing is not None:
                logger.debug(f"Interest dropped for {target.target_id} ({target.url})")
                await self._detach(target.target_id)
            return None

        if existing is None:
            return await self._bind(target, interest)

        if existing.interest.same_as(interest):
            existing.target = target
            existing.add_handles(interest.handles)
            return existing

        logger.debug(f"Interest changed for {target.target_id} ({target.url}), rebinding")
        await self._detach(target.target_id)
        if target.target_id in self.sessions:
            # A newer event bound the target while detaching
            interest.resolve_handles(False)
            return self.sessions[target.target_id]
        return await self._bind(target, interest)

    async def _bind(self, target: TargetInfo, interest: TargetInterest) -> Optional[TargetSession]:
        target_id = target.target_id
        cdp_session = self.connection.open_session(target_id)
        session = TargetSession(
            cdp_session,
            target,
            interest,
            self.matcher,
            response_handler=self.response_handler,
            raw_pause_handler=self.raw_pause_handler,
            stats=self.stats,
        )
        # Registered before the first await so later events see the session
        self.sessions[target_id] = session
        cdp_session.on_detached(lambda _: self._forget(target_id, session))
        logger.debug(f"Start monitor: {target_id} {target.url}")

        try:
            await cdp_session.ready
            if self.sessions.get(target_id) is not session:
                raise BindError(target_id, "target was dropped while binding")
            session.mark_bound()
            self.stats['sessions_bound'] += 1
            await session.enable()
        except ArchiverError as e:
            # e.g. the target was destroyed before the session attached
            self.stats['bind_failures'] += 1
            logger.debug(f"Error monitoring {target_id}: {e}")
            if self.sessions.get(target_id) is session:
                del self.sessions[target_id]
            if session.bound:
                await session.detach()
            else:
                session.close()
            return None
        return session

    async def _detach(self, target_id: str) -> None:
        session = self.sessions.pop(target_id, None)
        if session is not None:
            logger.debug(f"Stop monitor: {target_id} {session.target.url}")
            await session.detach()

    def _drop(self, target_id: str) -> None:
        session = self.sessions.pop(target_id, None)
        if session is not None:
            logger.debug(f"Stop monitor: {target_id} {session.target.url}")
            session.close()

    def _forget(self, target_id: str, session: TargetSession) -> None:
        if self.sessions.get(target_id) is session:
            self._drop(target_id)
        else:
            session.close()

    async def on_target_created(self, event: TargetCreated) -> None:
        await self.inspect_target(event.target_info)

    async def on_target_info_changed(self, event: TargetInfoChanged) -> None:
        await self.inspect_target(event.target_info)

    async def on_target_destroyed(self, event: TargetDestroyed) -> None:
        self._drop(event.target_id)

    async def on_target_crashed(self, event: TargetCrashed) -> None:
        logger.debug(f"Target crashed: {event.target_id} ({event.status})")
        self._drop(event.target_id)

    async def on_detached_from_target(self, event: DetachedFromTarget) -> None:
        if event.target_id is not None:
            session = self.sessions.get(event.target_id)
            if session is not None and session.session_id == event.session_id:
                self._drop(event.target_id)
            return
        for target_id, session in list(self.sessions.items()):
            if session.session_id == event.session_id:
                self._drop(target_id)

    async def close(self) -> None:
        """Detach every session."""
        for target_id in list(self.sessions):
            await self._detach(target_id)
        for task in list(self._predicate_tasks):
            task.cancel()

    def active_sessions(self) -> List[CdpSession]:
        return [session.cdp_session for session in self.sessions.values() if session.bound]

    def get_stats(self) -> Dict[str, int]:
        """Get watcher statistics.

        Returns:
            Dictionary with session counts
        """
        return {
            'sessions_active': len(self.sessions),
            'sessions_bound': self.stats['sessions_bound'],
            'bind_failures': self.stats['bind_failures'],
            'pending_observations': sum(len(s.correlator) for s in self.sessions.values()),
        }

    def __repr__(self) -> str:
        return f"TargetWatcher(rules={len(self.capture_rules)}, sessions={len(self.sessions)})"
