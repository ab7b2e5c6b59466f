"""Atomic file writes for canonical payloads.

Writes go to a sibling temp file that is then renamed over the target.
A rename on the same filesystem is atomic on POSIX, so a reader (the agent,
the driver, or a later iteration) never observes a half-written result.json.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping


def _temp_path_for(path: Path) -> Path:
    # Hidden, per-process name so two processes never share a temp file.
    return path.with_name(f".{path.name}.{os.getpid()}.tmp")


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write content to file atomically using temp file + rename.

    Parent directories are created as needed.

    Raises:
        OSError: If the directory, write, or rename fails
        UnicodeEncodeError: If content cannot be encoded

    The temp file is removed before any error propagates.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_path_for(path)
    try:
        with temp_path.open("w", encoding=encoding) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        temp_path.replace(path)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


def canonical_json(data: Mapping[str, Any], indent: int = 2) -> str:
    """Serialize data with insertion-ordered keys and a trailing newline."""
    return json.dumps(data, indent=indent, ensure_ascii=False) + "\n"


def atomic_write_json(path: Path, data: Mapping[str, Any], indent: int = 2) -> None:
    """Write JSON data to file atomically.

    Key order is the mapping's insertion order, so callers control the
    on-disk field order.

    Raises:
        TypeError: If data is not JSON-serializable
        OSError: If write or rename fails
    """
    atomic_write_text(path, canonical_json(data, indent=indent))
