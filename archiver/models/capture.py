"""Pydantic models for intercepted targets, responses and archive records.

This module defines the data models shared by the interception engine and
the archive store: inspected targets, capture rules, captured response
snapshots and the metadata record written for every archived artifact.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UNKNOWN_PROMPT = "[unknown prompt]"


class TargetKind(str, Enum):
    """Kinds of inspectable browser targets."""
    PAGE = "page"
    SERVICE_WORKER = "service_worker"
    OTHER = "other"

    @classmethod
    def from_protocol(cls, target_type: Optional[str]) -> "TargetKind":
        """Map a protocol target type string to a TargetKind."""
        if target_type == "page":
            return cls.PAGE
        if target_type == "service_worker":
            return cls.SERVICE_WORKER
        return cls.OTHER


class ProtocolModel(BaseModel):
    """Base for models parsed from camelCase protocol payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class TargetInfo(ProtocolModel):
    """An inspectable browser execution context (tab or worker)."""

    target_id: str = Field(description="Stable target identifier")
    type: str = Field(default="other", description="Protocol target type")
    url: str = Field(default="", description="Current target URL")
    title: Optional[str] = Field(default=None, description="Target title")

    @property
    def kind(self) -> TargetKind:
        """Target kind derived from the protocol type."""
        return TargetKind.from_protocol(self.type)


class CaptureRule(BaseModel):
    """Maps originating target URL patterns to response URL patterns.

    Matches targets whose URL matches any of ``from_patterns`` and asks for
    responses whose URL matches any of ``intercept_patterns``.
    """

    model_config = ConfigDict(populate_by_name=True)

    from_patterns: List[str] = Field(
        alias="from",
        description="Wildcard patterns for the originating target URL"
    )
    intercept_patterns: List[str] = Field(
        alias="intercept",
        description="Wildcard patterns for response URLs to capture"
    )
    service_worker_only: bool = Field(
        default=False,
        description="Only match service worker targets"
    )
    enable_raw_capture: bool = Field(
        default=False,
        description="Also enable the non-pausing observation channel"
    )

    @field_validator('from_patterns', 'intercept_patterns', mode='before')
    @classmethod
    def coerce_pattern_list(cls, v):
        """Accept a single pattern string as a one-item list."""
        if isinstance(v, str):
            return [v]
        return v


def normalize_headers(headers: Any) -> Dict[str, str]:
    """Normalize protocol headers into a flat dict.

    The pausing channel reports headers as a list of ``{name, value}``
    entries while the observation channel uses an object. Repeated names are
    joined with ``", "``.
    """
    if not headers:
        return {}
    if isinstance(headers, dict):
        return {str(k): str(v) for k, v in headers.items()}

    result: Dict[str, str] = {}
    for entry in headers:
        name = entry.get("name")
        if name is None:
            continue
        value = str(entry.get("value", ""))
        if name in result:
            result[name] = f"{result[name]}, {value}"
        else:
            result[name] = value
    return result


class ResponseMeta(BaseModel):
    """Response status line and headers (the body is fetched on demand)."""

    status: Optional[int] = Field(default=None, description="HTTP status code")
    status_text: str = Field(default="", description="HTTP status text")
    headers: Dict[str, str] = Field(default_factory=dict, description="Response headers")
    mime_type: Optional[str] = Field(default=None, description="MIME type reported by the browser")
    url: Optional[str] = Field(default=None, description="Response URL")

    @field_validator('headers', mode='before')
    @classmethod
    def validate_headers(cls, v):
        return normalize_headers(v)

    @classmethod
    def from_network_response(cls, response: Dict[str, Any]) -> "ResponseMeta":
        """Build from an observation channel ``Response`` object."""
        return cls(
            status=response.get("status"),
            status_text=response.get("statusText") or "",
            headers=response.get("headers"),
            mime_type=response.get("mimeType"),
            url=response.get("url"),
        )

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    @property
    def content_type(self) -> Optional[str]:
        """Content type from the headers, falling back to the MIME type."""
        return self.header("content-type") or self.mime_type


class BodyRef(BaseModel):
    """Everything needed to fetch a captured response body."""

    via_pausing_channel: bool
    request_id: str
    session_id: Optional[str] = None


class CapturedResponse(BaseModel):
    """A response reported by either interception channel."""

    initiator: str = Field(description="URL of the target that issued the request")
    via_pausing_channel: bool = Field(description="Reported by the pausing channel")
    request_id: str = Field(description="Protocol request id for this channel")
    network_id: Optional[str] = Field(
        default=None,
        description="Observation channel id of the same request (pausing channel only)"
    )
    session_id: Optional[str] = Field(default=None, description="Protocol session id")
    request: Dict[str, Any] = Field(default_factory=dict, description="Request snapshot")
    response: Optional[ResponseMeta] = Field(default=None, description="Response snapshot")

    @property
    def url(self) -> str:
        """Request URL."""
        return self.request.get("url", "")

    @property
    def body_ref(self) -> BodyRef:
        """Reference for fetching the body of this response."""
        return BodyRef(
            via_pausing_channel=self.via_pausing_channel,
            request_id=self.request_id,
            session_id=self.session_id,
        )

    @property
    def is_successful(self) -> bool:
        """Check for a 2xx status."""
        return (
            self.response is not None
            and self.response.status is not None
            and 200 <= self.response.status < 300
        )


class ArchiveRecord(BaseModel):
    """Metadata record persisted next to every archived artifact.

    Extra keys supplied by the caller are kept and written as-is.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(description="Unique artifact id")
    prompt: str = Field(default=UNKNOWN_PROMPT, description="Prompt that produced the artifact")
    unix_time: Union[int, float] = Field(alias="unixTime", description="Capture time in seconds")
    image_file: Optional[str] = Field(
        default=None,
        alias="imageFile",
        description="Artifact path relative to the archive root"
    )

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        return str(v)

    @field_validator('prompt', mode='before')
    @classmethod
    def default_prompt(cls, v):
        return UNKNOWN_PROMPT if v is None else str(v)

    def to_json_dict(self) -> Dict[str, Any]:
        """Serialize with the on-disk key names.

        Caller extras set to None are written as null.
        """
        data = self.model_dump(mode="json", by_alias=True)
        if data.get("imageFile") is None:
            data.pop("imageFile", None)
        return data


class ArchivedImage(BaseModel):
    """Result of a successful archive write."""

    record: ArchiveRecord
    image_format: str
    image_path: Path
    record_path: Optional[Path] = None

    @property
    def id(self) -> str:
        return self.record.id


RecordDetails = Union[ArchiveRecord, Dict[str, Any], None]
