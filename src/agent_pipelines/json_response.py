"""JSON response builders for CLI output.

Shell drivers parse stdout, so every command prints exactly one object of
the shape {"cmd", "exit_code", "timestamp", ...command data, "error"?}.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .events import utc_timestamp


@dataclass
class JsonResponse:
    """Standard JSON response structure.

    Attributes:
        cmd: The command that generated this response
        exit_code: Exit code (0 = success, non-zero = error)
        timestamp: UTC timestamp of when the response was created
        data: Additional response data (command-specific)
        error: Optional error message if exit_code != 0
        error_type: Exception class name for the error, if any
    """

    cmd: str
    exit_code: int
    timestamp: str = field(default_factory=utc_timestamp)
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "cmd": self.cmd,
            "exit_code": self.exit_code,
            "timestamp": self.timestamp,
        }
        if self.data:
            result.update(self.data)
        if self.error:
            result["error"] = self.error
        if self.error_type:
            result["error_type"] = self.error_type
        return result


def build_json_response(cmd: str, exit_code: int = 0, **kwargs: Any) -> Dict[str, Any]:
    """Build a standardized JSON response.

    Example:
        >>> build_json_response("termination check", done=True, reason="...")
        {'cmd': 'termination check', 'exit_code': 0, 'timestamp': '...', 'done': True, 'reason': '...'}
    """
    return JsonResponse(cmd=cmd, exit_code=exit_code, data=kwargs).to_dict()


def build_error_response(cmd: str, error: BaseException, exit_code: int = 1) -> Dict[str, Any]:
    """Build a JSON error response from an exception."""
    response = JsonResponse(
        cmd=cmd,
        exit_code=exit_code,
        error=str(error),
        error_type=type(error).__name__,
    )
    return response.to_dict()
