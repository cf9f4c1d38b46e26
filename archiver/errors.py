"""Exception hierarchy shared by the archiver packages.

Failures scoped to one target or request (BindError, handler errors,
continue-request failures) are isolated by the interception layer and never
escape it. ConfigurationError and CdpConnectionError are fatal and are turned
into exit codes by the CLI.
"""

from typing import Any, Optional


class ArchiverError(Exception):
    """Base class for all archiver errors."""
    pass


class ConfigurationError(ArchiverError):
    """Missing or invalid required settings."""
    pass


class CdpConnectionError(ArchiverError):
    """The DevTools endpoint is unreachable or the connection was closed."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class ProtocolError(ArchiverError):
    """A protocol command was refused or malformed."""

    def __init__(self, method: str, code: Optional[int] = None, message: str = "", data: Any = None):
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{method} failed ({code}): {message}")


class BindError(ArchiverError):
    """A target disappeared or refused session binding."""

    def __init__(self, target_id: str, reason: str):
        self.target_id = target_id
        super().__init__(f"Could not bind target {target_id}: {reason}")


class ArchiveError(ArchiverError):
    """Base class for archive write failures."""
    pass


class DuplicateIdError(ArchiveError):
    """An artifact with the same id is already archived."""

    def __init__(self, artifact_id: str):
        self.artifact_id = artifact_id
        super().__init__(f"Already archived: {artifact_id}")


class EmptyPayloadError(ArchiveError):
    """The artifact payload has zero length."""

    def __init__(self, artifact_id: str):
        self.artifact_id = artifact_id
        super().__init__(f"Zero length payload: {artifact_id}")


class UnknownFormatError(ArchiveError):
    """The payload does not start with any known image signature."""

    def __init__(self, leading_bytes: bytes):
        self.leading_bytes = leading_bytes
        super().__init__(f"Unknown image type (leading bytes: {leading_bytes.hex()})")
