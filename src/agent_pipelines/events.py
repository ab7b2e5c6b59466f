"""Append-only events.jsonl writing.

Each call to `append` writes exactly one JSON object followed by a newline.
Appends hold an exclusive flock on the events file for the whole
seek/write, so writers in different threads *and* different processes
never interleave. If a write comes up short the file is truncated back to
its previous length, so a crash or a full disk never leaves a partial
trailing line behind.

Lock acquisition has no deadline: a caller blocks until the current holder
finishes its append.

Usage:
    >>> writer = EventWriter(session_dir / "events.jsonl")
    >>> writer.emit(EventType.ITERATION_START, "session-1", Cursor(iteration=1))
"""

from __future__ import annotations

import enum
import fcntl
import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, NoReturn, Optional, Type, Union

from .errors import (
    EventDecodeError,
    EventError,
    LockFailureError,
    MissingPathError,
    MissingSessionError,
    MissingTypeError,
    ShortWriteError,
    WriteFailureError,
)

logger = logging.getLogger(__name__)

EVENTS_FILENAME = "events.jsonl"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class EventType(str, enum.Enum):
    SESSION_START = "session_start"
    SESSION_COMPLETE = "session_complete"
    NODE_START = "node_start"
    NODE_COMPLETE = "node_complete"
    ITERATION_START = "iteration_start"
    ITERATION_COMPLETE = "iteration_complete"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """Return a UTC RFC 3339 timestamp with second precision."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class Cursor:
    """Position within a session. Empty/zero fields are not serialized."""

    node_path: str = ""
    node_run: int = 0
    iteration: int = 0
    provider: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.node_path:
            out["node_path"] = self.node_path
        if self.node_run:
            out["node_run"] = self.node_run
        if self.iteration:
            out["iteration"] = self.iteration
        if self.provider:
            out["provider"] = self.provider
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Cursor":
        node_run = raw.get("node_run", 0)
        iteration = raw.get("iteration", 0)
        if not isinstance(node_run, int) or not isinstance(iteration, int):
            raise ValueError("cursor node_run/iteration must be integers")
        return cls(
            node_path=str(raw.get("node_path", "")),
            node_run=node_run,
            iteration=iteration,
            provider=str(raw.get("provider", "")),
        )


@dataclass(frozen=True)
class Event:
    """A single events.jsonl entry. Never modified once appended."""

    type: Union[EventType, str]
    session: str
    cursor: Optional[Cursor] = None
    data: Optional[Mapping[str, Any]] = None
    timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ts": self.timestamp,
            "type": str(self.type),
            "session": self.session,
            "cursor": self.cursor.to_dict() if self.cursor is not None else None,
            "data": dict(self.data) if self.data is not None else {},
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Event":
        cursor_raw = raw.get("cursor")
        if cursor_raw is not None and not isinstance(cursor_raw, dict):
            raise ValueError("cursor must be an object or null")
        data = raw.get("data")
        if data is not None and not isinstance(data, dict):
            raise ValueError("data must be an object")
        return cls(
            type=str(raw.get("type", "")),
            session=str(raw.get("session", "")),
            cursor=Cursor.from_dict(cursor_raw) if cursor_raw is not None else None,
            data=data if data is not None else {},
            timestamp=str(raw.get("ts", "")),
        )


def new_event(
    event_type: Union[EventType, str],
    session: str,
    cursor: Optional[Cursor] = None,
    data: Optional[Mapping[str, Any]] = None,
) -> Event:
    """Construct an event stamped with the current UTC time."""
    return Event(
        type=event_type,
        session=session,
        cursor=cursor,
        data=data,
        timestamp=utc_timestamp(),
    )


def _prepare(event: Event) -> Event:
    """Validate and fill defaults. Raises before any filesystem access."""
    event_type = str(event.type).strip() if event.type is not None else ""
    if not event_type:
        raise MissingTypeError()
    session = (event.session or "").strip()
    if not session:
        raise MissingSessionError()
    return replace(
        event,
        type=event_type,
        session=session,
        timestamp=event.timestamp or utc_timestamp(),
        data=event.data if event.data is not None else {},
    )


def _encode(event: Event) -> bytes:
    try:
        line = json.dumps(event.to_dict(), separators=(",", ":"), ensure_ascii=False)
        return (line + "\n").encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EventError(f"marshal event: {e}") from e


def _write(fd: int, payload: bytes) -> int:
    return os.write(fd, payload)


def _seek_end(fd: int) -> int:
    return os.lseek(fd, 0, os.SEEK_END)


def _truncate(fd: int, length: int) -> None:
    os.ftruncate(fd, length)


def _close(fd: int) -> None:
    os.close(fd)


@contextmanager
def exclusive_lock(fd: int, path: Path) -> Iterator[None]:
    """Hold an exclusive flock on fd for the duration of the block.

    The lock is released on every exit path. Closing the descriptor also
    drops it, so a failed unlock is only logged.
    """
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
    except OSError as e:
        raise LockFailureError(f"lock events file {path}: {e}") from e
    try:
        yield
    finally:
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as e:
            logger.warning("Failed to unlock %s: %s", path, e)


def _rollback(
    fd: int,
    start: int,
    path: Path,
    error_cls: Type[WriteFailureError],
    message: str,
    cause: Optional[BaseException],
) -> NoReturn:
    try:
        _truncate(fd, start)
    except OSError as truncate_error:
        logger.error("Could not truncate %s back to %d bytes: %s", path, start, truncate_error)
        raise error_cls(message, truncate_error=truncate_error) from cause
    logger.warning("Truncated %s back to %d bytes after failed append", path, start)
    raise error_cls(message) from cause


def _append_locked(fd: int, payload: bytes, path: Path) -> None:
    try:
        start = _seek_end(fd)
    except OSError as e:
        raise WriteFailureError(f"seek events file {path}: {e}") from e
    try:
        written = _write(fd, payload)
    except OSError as e:
        _rollback(fd, start, path, WriteFailureError, f"write event: {e}", e)
    if written != len(payload):
        _rollback(
            fd,
            start,
            path,
            ShortWriteError,
            f"write event: short write ({written} of {len(payload)} bytes)",
            None,
        )


def append(path: Union[str, "os.PathLike[str]", None], event: Event) -> None:
    """Append one event to the events.jsonl file at path.

    Raises:
        MissingPathError, MissingTypeError, MissingSessionError: before any I/O
        LockFailureError: the exclusive lock could not be acquired
        ShortWriteError: a partial write was rolled back
        WriteFailureError: the directory, open, seek, write, or close failed
    """
    text = os.fspath(path).strip() if path is not None else ""
    if not text:
        raise MissingPathError()
    target = Path(text)

    payload = _encode(_prepare(event))

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(target, os.O_CREAT | os.O_RDWR, 0o644)
    except OSError as e:
        raise WriteFailureError(f"open events file {target}: {e}") from e

    try:
        with exclusive_lock(fd, target):
            _append_locked(fd, payload, target)
    except BaseException:
        try:
            _close(fd)
        except OSError as e:
            logger.warning("Failed to close %s: %s", target, e)
        raise

    try:
        _close(fd)
    except OSError as e:
        raise WriteFailureError(f"close events file {target}: {e}") from e


def read_events(path: Union[str, "os.PathLike[str]"]) -> List[Event]:
    """Read every event from an events.jsonl file, skipping blank lines."""
    target = Path(path)
    events: List[Event] = []
    with target.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                raw = json.loads(line)
                if not isinstance(raw, dict):
                    raise ValueError("expected object")
                events.append(Event.from_dict(raw))
            except ValueError as e:
                raise EventDecodeError(target, line_no, str(e)) from e
    return events


class EventWriter:
    """Append events to one events.jsonl file.

    The instance lock serializes callers sharing this writer; the file lock
    taken by `append` serializes separate writers and processes.
    """

    def __init__(self, path: Union[str, "os.PathLike[str]"]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"EventWriter(path={str(self.path)!r})"

    def append(self, event: Event) -> None:
        with self._lock:
            append(self.path, event)

    def emit(
        self,
        event_type: Union[EventType, str],
        session: str,
        cursor: Optional[Cursor] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Event:
        """Build a timestamped event, append it, and return it."""
        event = new_event(event_type, session, cursor, data)
        self.append(event)
        return event
