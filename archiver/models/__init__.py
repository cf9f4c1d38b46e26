"""Archiver data models package."""

from .capture import (
    UNKNOWN_PROMPT,
    TargetKind,
    TargetInfo,
    CaptureRule,
    ResponseMeta,
    BodyRef,
    CapturedResponse,
    ArchiveRecord,
    ArchivedImage,
    normalize_headers,
)

from .events import (
    ProtocolEvent,
    TargetCreated,
    TargetInfoChanged,
    TargetDestroyed,
    TargetCrashed,
    DetachedFromTarget,
    RequestPaused,
    RequestWillBeSent,
    ResponseReceived,
    LoadingFinished,
    TargetEventHandler,
    NetworkEventHandler,
    parse_event,
)

__all__ = [
    # Capture models
    'UNKNOWN_PROMPT',
    'TargetKind',
    'TargetInfo',
    'CaptureRule',
    'ResponseMeta',
    'BodyRef',
    'CapturedResponse',
    'ArchiveRecord',
    'ArchivedImage',
    'normalize_headers',

    # Protocol events
    'ProtocolEvent',
    'TargetCreated',
    'TargetInfoChanged',
    'TargetDestroyed',
    'TargetCrashed',
    'DetachedFromTarget',
    'RequestPaused',
    'RequestWillBeSent',
    'ResponseReceived',
    'LoadingFinished',
    'TargetEventHandler',
    'NetworkEventHandler',
    'parse_event',
]
