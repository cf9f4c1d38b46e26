"""Per-target interception interest and registration handles."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, List, Optional, Union

from .transport import CdpSession


class InterestReason(str, Enum):
    """Why a target must be bound to a session."""
    INTERCEPTION = "interception"
    RESPONSE_CAPTURE = "response_capture"


class InterceptionHandle:
    """Result of registering interception interest for a target.

    Registration returns immediately; ``bound`` resolves later with the
    bound CdpSession, or False if binding failed or the registration was
    refused.
    """

    def __init__(self, patterns: List[str], accepted: bool = True):
        self.patterns = list(patterns)
        self.accepted = accepted
        self.bound: asyncio.Future = asyncio.get_running_loop().create_future()
        if not accepted:
            self.bound.set_result(False)

    def resolve(self, result: Union[CdpSession, bool]) -> None:
        if not self.bound.done():
            self.bound.set_result(result)

    async def wait(self) -> Union[CdpSession, bool]:
        """Wait for the binding outcome."""
        return await asyncio.shield(self.bound)

    @property
    def done(self) -> bool:
        return self.bound.done()

    def __repr__(self) -> str:
        state = "pending" if not self.bound.done() else repr(self.bound.result())
        return f"InterceptionHandle(patterns={self.patterns}, accepted={self.accepted}, bound={state})"


@dataclass
class TargetInterest:
    """Interest in a target, derived from scratch on every target event."""

    reasons: FrozenSet[InterestReason] = frozenset()
    patterns: List[str] = field(default_factory=list)
    raw_capture: bool = False
    handles: List[InterceptionHandle] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.reasons)

    @property
    def wants_interception(self) -> bool:
        return InterestReason.INTERCEPTION in self.reasons

    @property
    def wants_response_capture(self) -> bool:
        return InterestReason.RESPONSE_CAPTURE in self.reasons

    def same_as(self, other: Optional["TargetInterest"]) -> bool:
        """Compare everything but the registration handles."""
        return (
            other is not None
            and self.reasons == other.reasons
            and self.patterns == other.patterns
            and self.raw_capture == other.raw_capture
        )

    def resolve_handles(self, result: Any) -> None:
        for handle in self.handles:
            handle.resolve(result)
