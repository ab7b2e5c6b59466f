"""Exception hierarchy for agent-pipelines.

Every failure in the core surfaces as one of these exceptions. Nothing is
converted into a default value on the way out:

- MissingInputError: neither result nor status payload is usable
- SchemaInvalidError: a payload exists but is malformed
- WriteFailureError / ShortWriteError: a write did not complete
- LockFailureError: the exclusive events lock could not be taken
- EventError: an event was rejected before any I/O happened
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class PipelineError(Exception):
    """Base exception for agent-pipelines errors."""

    pass


class MissingInputError(PipelineError):
    """Raised when no usable input file exists."""

    pass


class ResultMissingError(MissingInputError):
    """Raised when neither result.json nor status.json can be found."""

    def __init__(self, message: str = "result missing") -> None:
        super().__init__(message)


class SchemaInvalidError(PipelineError):
    """Raised when an input file exists but cannot be decoded."""

    kind = "payload"

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"{self.kind} invalid: {path}: {detail}")


class ResultInvalidError(SchemaInvalidError):
    """Raised when result.json is malformed."""

    kind = "result"


class StatusInvalidError(SchemaInvalidError):
    """Raised when the legacy status.json is malformed."""

    kind = "status"


class WriteFailureError(PipelineError):
    """Raised when a directory or file write fails.

    Attributes:
        truncate_error: Set when the compensating truncate after a failed
            append also failed, meaning the file may hold a partial line.
    """

    def __init__(self, message: str, truncate_error: Optional[BaseException] = None) -> None:
        self.truncate_error = truncate_error
        if truncate_error is not None:
            message = f"{message} (truncate failed: {truncate_error})"
        super().__init__(message)

    @property
    def recovered(self) -> bool:
        return self.truncate_error is None


class ShortWriteError(WriteFailureError):
    """Raised when fewer bytes than requested reached the events file."""

    pass


class LockFailureError(PipelineError):
    """Raised when the exclusive file lock cannot be acquired."""

    pass


class EventError(PipelineError, ValueError):
    """Base class for events that are rejected or cannot be decoded."""

    pass


class MissingPathError(EventError):
    def __init__(self) -> None:
        super().__init__("events file path is empty")


class MissingTypeError(EventError):
    def __init__(self) -> None:
        super().__init__("event type is empty")


class MissingSessionError(EventError):
    def __init__(self) -> None:
        super().__init__("event session is empty")


class EventDecodeError(EventError):
    """Raised when a line in an events file is not a valid event object."""

    def __init__(self, path: Path, line_no: int, detail: str) -> None:
        self.path = path
        self.line_no = line_no
        super().__init__(f"{path}:{line_no}: {detail}")


class ConfigError(PipelineError, ValueError):
    """Raised for configuration values that cannot be used."""

    pass


class ValidationError(PipelineError):
    """Raised by a RequestValidator when a request must not reach a provider."""

    pass
