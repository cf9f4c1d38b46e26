"""Typed protocol events and handler interfaces.

Each protocol event the archiver reacts to is parsed into one of a closed set
of models. Target lifecycle events and network events are dispatched through
explicit handler interfaces instead of string-keyed callbacks, so every event
type has exactly one handler method.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, List, Optional, Type, Union

from pydantic import Field

from .capture import ProtocolModel, ResponseMeta, TargetInfo


class ProtocolEvent(ProtocolModel):
    """Base for parsed protocol events."""

    METHOD: ClassVar[str] = ""


# Target lifecycle


class TargetCreated(ProtocolEvent):
    METHOD: ClassVar[str] = "Target.targetCreated"

    target_info: TargetInfo


class TargetInfoChanged(ProtocolEvent):
    METHOD: ClassVar[str] = "Target.targetInfoChanged"

    target_info: TargetInfo


class TargetDestroyed(ProtocolEvent):
    METHOD: ClassVar[str] = "Target.targetDestroyed"

    target_id: str


class TargetCrashed(ProtocolEvent):
    METHOD: ClassVar[str] = "Target.targetCrashed"

    target_id: str
    status: Optional[str] = None
    error_code: Optional[int] = None


class DetachedFromTarget(ProtocolEvent):
    METHOD: ClassVar[str] = "Target.detachedFromTarget"

    session_id: str
    target_id: Optional[str] = None


# Pausing channel


class RequestPaused(ProtocolEvent):
    """A request halted by the pausing channel."""

    METHOD: ClassVar[str] = "Fetch.requestPaused"

    request_id: str
    request: Dict[str, Any] = Field(default_factory=dict)
    frame_id: Optional[str] = None
    resource_type: Optional[str] = None
    network_id: Optional[str] = None
    response_error_reason: Optional[str] = None
    response_status_code: Optional[int] = None
    response_status_text: Optional[str] = None
    response_headers: Optional[List[Dict[str, Any]]] = None

    @property
    def is_response_stage(self) -> bool:
        """True when paused after the response headers arrived."""
        return self.response_status_code is not None or self.response_error_reason is not None

    def response_meta(self) -> ResponseMeta:
        """Response status line and headers as reported by the pause."""
        return ResponseMeta(
            status=self.response_status_code,
            status_text=self.response_status_text or "",
            headers=self.response_headers,
            url=self.request.get("url"),
        )


# Observation channel


class RequestWillBeSent(ProtocolEvent):
    METHOD: ClassVar[str] = "Network.requestWillBeSent"

    request_id: str
    request: Dict[str, Any] = Field(default_factory=dict)
    loader_id: Optional[str] = None
    type: Optional[str] = None


class ResponseReceived(ProtocolEvent):
    METHOD: ClassVar[str] = "Network.responseReceived"

    request_id: str
    response: Dict[str, Any] = Field(default_factory=dict)
    type: Optional[str] = None


class LoadingFinished(ProtocolEvent):
    METHOD: ClassVar[str] = "Network.loadingFinished"

    request_id: str
    encoded_data_length: Optional[float] = None


TargetEvent = Union[TargetCreated, TargetInfoChanged, TargetDestroyed, TargetCrashed, DetachedFromTarget]
ObservationEvent = Union[RequestWillBeSent, ResponseReceived, LoadingFinished]

TARGET_EVENTS: List[Type[ProtocolEvent]] = [
    TargetCreated, TargetInfoChanged, TargetDestroyed, TargetCrashed, DetachedFromTarget
]
PAUSING_EVENTS: List[Type[ProtocolEvent]] = [RequestPaused]
OBSERVATION_EVENTS: List[Type[ProtocolEvent]] = [RequestWillBeSent, ResponseReceived, LoadingFinished]

EVENT_TYPES: Dict[str, Type[ProtocolEvent]] = {
    cls.METHOD: cls for cls in TARGET_EVENTS + PAUSING_EVENTS + OBSERVATION_EVENTS
}


def parse_event(method: str, params: Optional[Dict[str, Any]]) -> Optional[ProtocolEvent]:
    """Parse raw event params into a typed event.

    Args:
        method: Protocol event name, e.g. ``Fetch.requestPaused``
        params: Raw event params

    Returns:
        Parsed event, or None for events the archiver does not handle
    """
    event_type = EVENT_TYPES.get(method)
    if event_type is None:
        return None
    return event_type.model_validate(params or {})


class TargetEventHandler(ABC):
    """Receiver for target lifecycle events."""

    @abstractmethod
    async def on_target_created(self, event: TargetCreated) -> None:
        pass

    @abstractmethod
    async def on_target_info_changed(self, event: TargetInfoChanged) -> None:
        pass

    @abstractmethod
    async def on_target_destroyed(self, event: TargetDestroyed) -> None:
        pass

    @abstractmethod
    async def on_target_crashed(self, event: TargetCrashed) -> None:
        pass

    @abstractmethod
    async def on_detached_from_target(self, event: DetachedFromTarget) -> None:
        pass


class NetworkEventHandler(ABC):
    """Receiver for both interception channels of one session."""

    @abstractmethod
    async def on_request_paused(self, event: RequestPaused) -> None:
        pass

    @abstractmethod
    def on_request_will_be_sent(self, event: RequestWillBeSent) -> None:
        pass

    @abstractmethod
    def on_response_received(self, event: ResponseReceived) -> None:
        pass

    @abstractmethod
    async def on_loading_finished(self, event: LoadingFinished) -> None:
        pass


_TARGET_DISPATCH = {
    TargetCreated: "on_target_created",
    TargetInfoChanged: "on_target_info_changed",
    TargetDestroyed: "on_target_destroyed",
    TargetCrashed: "on_target_crashed",
    DetachedFromTarget: "on_detached_from_target",
}

_NETWORK_DISPATCH = {
    RequestPaused: "on_request_paused",
    RequestWillBeSent: "on_request_will_be_sent",
    ResponseReceived: "on_response_received",
    LoadingFinished: "on_loading_finished",
}


def handler_method(handler: Union[TargetEventHandler, NetworkEventHandler], event: ProtocolEvent):
    """Look up the bound handler method for an event.

    Raises:
        TypeError: If the handler interface has no method for the event type
    """
    table = _TARGET_DISPATCH if isinstance(handler, TargetEventHandler) else _NETWORK_DISPATCH
    name = table.get(type(event))
    if name is None:
        raise TypeError(f"{type(handler).__name__} cannot handle {type(event).__name__}")
    return getattr(handler, name)
