"""Result reconciliation across the two agent payload schemas.

Agents report the outcome of an iteration by writing one of two files:

- result.json: the current schema (summary, work, artifacts, signals,
  errors, decision, reason)
- status.json: the legacy schema (decision, reason, summary, work, errors)

`load` prefers result.json and only falls back to status.json when the result
file is *absent*. A result file that exists but cannot be decoded is fatal:
silently reading an older status.json would let a stale decision steer the
loop. `normalize_files` additionally rewrites the canonical form to
result.json, which upgrades legacy status payloads on disk.

Usage:
    >>> result, source = normalize_files(run_dir / "result.json", run_dir / "status.json")
    >>> result.signals.risk
    'low'
"""

from __future__ import annotations

import enum
import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Type, Union

from .atomic_file import atomic_write_json
from .errors import (
    ResultInvalidError,
    ResultMissingError,
    SchemaInvalidError,
    StatusInvalidError,
    WriteFailureError,
)

logger = logging.getLogger(__name__)

RESULT_FILENAME = "result.json"
STATUS_FILENAME = "status.json"
DEFAULT_RISK = "low"

PathArg = Union[str, "os.PathLike[str]", None]
Strings = Optional[Tuple[str, ...]]


class Source(str, enum.Enum):
    """File origin of a normalized result."""

    RESULT = "result"
    STATUS = "status"

    def __str__(self) -> str:
        return self.value


def _freeze(value: Any) -> Strings:
    if value is None:
        return None
    return tuple(value)


# -------------------------
# Dataclasses
# -------------------------


@dataclass(frozen=True)
class WorkInfo:
    """Work completed by an agent during one iteration."""

    items_completed: Strings = None
    files_touched: Strings = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items_completed", _freeze(self.items_completed))
        object.__setattr__(self, "files_touched", _freeze(self.files_touched))


@dataclass(frozen=True)
class ArtifactInfo:
    """Outputs produced by an agent."""

    outputs: Strings = None
    paths: Strings = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "outputs", _freeze(self.outputs))
        object.__setattr__(self, "paths", _freeze(self.paths))


@dataclass(frozen=True)
class SignalInfo:
    """Advisory signals consulted when the agent gives no explicit decision."""

    plateau_suspected: bool = False
    risk: str = ""
    notes: str = ""


@dataclass(frozen=True)
class Result:
    """Canonical per-iteration snapshot of what the agent reported.

    A Result read from disk may have absent (None) list fields; everything
    returned by `normalize`, `from_status`, `load`, and `normalize_files`
    has every list populated and a non-empty `signals.risk`.
    """

    summary: str = ""
    work: WorkInfo = WorkInfo()
    artifacts: ArtifactInfo = ArtifactInfo()
    signals: SignalInfo = SignalInfo()
    errors: Strings = None
    decision: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "errors", _freeze(self.errors))

    def to_dict(self) -> Dict[str, Any]:
        """Return the canonical result.json payload (normalized, ordered)."""
        r = normalize(self)
        payload: Dict[str, Any] = {
            "summary": r.summary,
            "work": {
                "items_completed": list(r.work.items_completed or ()),
                "files_touched": list(r.work.files_touched or ()),
            },
            "artifacts": {
                "outputs": list(r.artifacts.outputs or ()),
                "paths": list(r.artifacts.paths or ()),
            },
            "signals": {
                "plateau_suspected": r.signals.plateau_suspected,
                "risk": r.signals.risk,
                "notes": r.signals.notes,
            },
            "errors": list(r.errors or ()),
        }
        # decision/reason are optional in the agent-facing contract.
        if r.decision:
            payload["decision"] = r.decision
        if r.reason:
            payload["reason"] = r.reason
        return payload


@dataclass(frozen=True)
class Status:
    """Legacy status.json payload."""

    decision: str = ""
    reason: str = ""
    summary: str = ""
    work: WorkInfo = WorkInfo()
    errors: Strings = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "errors", _freeze(self.errors))


# -------------------------
# Decoding helpers
# -------------------------


def _obj(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key}: expected object, got {type(value).__name__}")
    return value


def _str(raw: Mapping[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected string, got {type(value).__name__}")
    return value


def _bool(raw: Mapping[str, Any], key: str) -> bool:
    value = raw.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{key}: expected boolean, got {type(value).__name__}")
    return value


def _str_list(raw: Mapping[str, Any], key: str) -> Strings:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError(f"{key}: expected array, got {type(value).__name__}")
    for idx, item in enumerate(value):
        if not isinstance(item, str):
            raise ValueError(f"{key}[{idx}]: expected string, got {type(item).__name__}")
    return tuple(value)


def _work_from_dict(raw: Mapping[str, Any]) -> WorkInfo:
    work = _obj(raw, "work")
    return WorkInfo(
        items_completed=_str_list(work, "items_completed"),
        files_touched=_str_list(work, "files_touched"),
    )


def result_from_dict(raw: Mapping[str, Any]) -> Result:
    """Decode a result.json object. Raises ValueError on schema mismatch."""
    artifacts = _obj(raw, "artifacts")
    signals = _obj(raw, "signals")
    return Result(
        summary=_str(raw, "summary"),
        work=_work_from_dict(raw),
        artifacts=ArtifactInfo(
            outputs=_str_list(artifacts, "outputs"),
            paths=_str_list(artifacts, "paths"),
        ),
        signals=SignalInfo(
            plateau_suspected=_bool(signals, "plateau_suspected"),
            risk=_str(signals, "risk"),
            notes=_str(signals, "notes"),
        ),
        errors=_str_list(raw, "errors"),
        decision=_str(raw, "decision"),
        reason=_str(raw, "reason"),
    )


def status_from_dict(raw: Mapping[str, Any]) -> Status:
    """Decode a legacy status.json object. Raises ValueError on schema mismatch."""
    return Status(
        decision=_str(raw, "decision"),
        reason=_str(raw, "reason"),
        summary=_str(raw, "summary"),
        work=_work_from_dict(raw),
        errors=_str_list(raw, "errors"),
    )


def _as_path(value: PathArg) -> Optional[Path]:
    if value is None:
        return None
    text = os.fspath(value).strip()
    if not text:
        return None
    return Path(text)


def _read_payload(
    path: Path, error_cls: Type[SchemaInvalidError]
) -> Optional[Dict[str, Any]]:
    """Return the decoded JSON object at path, or None if the file is absent."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise error_cls(path, f"cannot read: {e}") from e

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise error_cls(path, str(e)) from e
    if payload is None:
        # A literal null decodes to an empty payload.
        return {}
    if not isinstance(payload, dict):
        raise error_cls(path, f"expected object, got {type(payload).__name__}")
    return payload


# -------------------------
# Public API
# -------------------------


def normalize(result: Result) -> Result:
    """Fill absent lists with empty ones and default a blank risk to "low".

    Idempotent: normalizing a normalized result returns an equal value.
    """
    risk = result.signals.risk.strip() or DEFAULT_RISK
    return replace(
        result,
        work=WorkInfo(
            items_completed=result.work.items_completed or (),
            files_touched=result.work.files_touched or (),
        ),
        artifacts=ArtifactInfo(
            outputs=result.artifacts.outputs or (),
            paths=result.artifacts.paths or (),
        ),
        signals=replace(result.signals, risk=risk),
        errors=result.errors or (),
    )


def from_status(status: Status) -> Result:
    """Convert a legacy status payload into a normalized Result."""
    return normalize(
        Result(
            summary=status.summary,
            work=status.work,
            artifacts=ArtifactInfo(outputs=(), paths=()),
            signals=SignalInfo(
                plateau_suspected=False,
                risk=DEFAULT_RISK,
                notes=status.reason,
            ),
            errors=status.errors,
            decision=status.decision,
            reason=status.reason,
        )
    )


def load(result_path: PathArg, status_path: PathArg) -> Tuple[Result, Source]:
    """Resolve a normalized Result, preferring result.json over status.json.

    Args:
        result_path: Path to result.json; blank or None skips it
        status_path: Path to the legacy status.json fallback

    Returns:
        (normalized result, source it was read from)

    Raises:
        ResultInvalidError: result.json exists but is malformed (never falls
            back to status.json)
        StatusInvalidError: status.json exists but is malformed
        ResultMissingError: neither file is present
    """
    rpath = _as_path(result_path)
    if rpath is not None:
        payload = _read_payload(rpath, ResultInvalidError)
        if payload is not None:
            try:
                loaded = result_from_dict(payload)
            except ValueError as e:
                raise ResultInvalidError(rpath, str(e)) from e
            return normalize(loaded), Source.RESULT

    spath = _as_path(status_path)
    if spath is None:
        raise ResultMissingError()

    payload = _read_payload(spath, StatusInvalidError)
    if payload is None:
        raise ResultMissingError(f"result missing: no {RESULT_FILENAME} or {STATUS_FILENAME}")
    try:
        status = status_from_dict(payload)
    except ValueError as e:
        raise StatusInvalidError(spath, str(e)) from e

    logger.debug("Loaded legacy status payload from %s", spath)
    return from_status(status), Source.STATUS


def write(path: PathArg, result: Result) -> None:
    """Write the canonical result.json payload atomically.

    Output uses stable field order, 2-space indentation and a trailing
    newline. Parent directories are created as needed.

    Raises:
        WriteFailureError: path is blank or the write fails
    """
    target = _as_path(path)
    if target is None:
        raise WriteFailureError("result path is empty")
    try:
        atomic_write_json(target, result.to_dict())
    except (OSError, TypeError, UnicodeError) as e:
        raise WriteFailureError(f"write result {target}: {e}") from e


def normalize_files(result_path: PathArg, status_path: PathArg) -> Tuple[Result, Source]:
    """Load, normalize, and write result.json back when a path is supplied.

    When the payload came from status.json this leaves a canonical
    result.json next to it, so later readers only see the current schema.
    """
    normalized, source = load(result_path, status_path)
    if _as_path(result_path) is None:
        return normalized, source
    write(result_path, normalized)
    if source is Source.STATUS:
        logger.info("Migrated legacy status payload to %s", result_path)
    return normalized, source
