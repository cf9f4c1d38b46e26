"""Correlation of observation channel events into complete responses.

This module provides the ResponseCorrelator class that follows a request
through ``Network.requestWillBeSent``, ``Network.responseReceived`` and
``Network.loadingFinished`` and yields a CapturedResponse once the body is
available. Requests also reported by the pausing channel are evicted so they
are only reported once.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models.capture import CapturedResponse, ResponseMeta

logger = logging.getLogger(__name__)


@dataclass
class PendingObservation:
    """A request seen by the observation channel that has not finished loading."""

    request_id: str
    initiator: str
    request: Dict[str, Any] = field(default_factory=dict)
    response: Optional[ResponseMeta] = None
    session_id: Optional[str] = None

    def to_captured_response(self) -> CapturedResponse:
        """Build the handler payload for this observation."""
        return CapturedResponse(
            initiator=self.initiator,
            via_pausing_channel=False,
            request_id=self.request_id,
            session_id=self.session_id,
            request=self.request,
            response=self.response,
        )


class ResponseCorrelator:
    """Per-session store of pending observations, keyed by request id."""

    def __init__(self, session_id: Optional[str] = None):
        """Initialize the correlator.

        Args:
            session_id: Protocol session the observations belong to
        """
        self.session_id = session_id
        self._pending: Dict[str, PendingObservation] = {}
        self.completed_count = 0
        self.evicted_count = 0

    def track(self, request_id: str, initiator: str, request: Dict[str, Any]) -> PendingObservation:
        """Start tracking a request.

        A request id seen again (e.g. on redirect) replaces the earlier entry.
        """
        observation = PendingObservation(
            request_id=request_id,
            initiator=initiator,
            request=dict(request),
            session_id=self.session_id,
        )
        self._pending[request_id] = observation
        return observation

    def attach_response(self, request_id: str, response: Dict[str, Any]) -> bool:
        """Store the response snapshot for a tracked request.

        Returns:
            True if the request was tracked
        """
        observation = self._pending.get(request_id)
        if observation is None:
            return False
        observation.response = ResponseMeta.from_network_response(response)
        return True

    def complete(self, request_id: str) -> Optional[CapturedResponse]:
        """Remove a finished request and build its payload.

        Returns:
            CapturedResponse, or None if the request was not tracked
        """
        observation = self._pending.pop(request_id, None)
        if observation is None:
            return None
        self.completed_count += 1
        return observation.to_captured_response()

    def evict(self, network_id: Optional[str]) -> bool:
        """Forget a request reported by the pausing channel.

        Args:
            network_id: Observation channel id of the paused request

        Returns:
            True if a pending observation was removed
        """
        if network_id is None:
            return False
        if self._pending.pop(network_id, None) is None:
            return False
        self.evicted_count += 1
        logger.debug(f"Evicted observation {network_id}, reported by the pausing channel")
        return True

    def get(self, request_id: str) -> Optional[PendingObservation]:
        return self._pending.get(request_id)

    def pending_ids(self) -> List[str]:
        return list(self._pending)

    def clear(self) -> None:
        """Drop all pending observations."""
        if self._pending:
            logger.debug(f"Dropping {len(self._pending)} pending observations")
        self._pending.clear()

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def get_stats(self) -> Dict[str, int]:
        """Get correlation statistics.

        Returns:
            Dictionary with pending, completed and evicted counts
        """
        return {
            'pending_observations': len(self._pending),
            'completed_observations': self.completed_count,
            'evicted_observations': self.evicted_count,
        }

    def __repr__(self) -> str:
        return (
            f"ResponseCorrelator(session={self.session_id}, pending={len(self._pending)}, "
            f"completed={self.completed_count}, evicted={self.evicted_count})"
        )
