"""Provider and validator interfaces.

The pipeline core never launches an agent itself. A Provider implementation
(living outside this package) runs the agent binary and lets it write
result.json / status.json; the core only consumes those files. A
RequestValidator screens every request before it reaches a provider.

Usage:
    >>> class EchoProvider(Provider):
    ...     name = "echo"
    ...     default_model = ""
    ...     def execute(self, request):
    ...         ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ProviderRequest:
    """Everything a provider needs for one agent execution.

    Attributes:
        prompt: Text sent to the agent
        model: Model override; empty uses the provider default
        env: Extra environment variables for the agent process
        work_dir: Working directory for the agent
        config: Provider-specific settings
        status_path: Where the agent may write a legacy status.json
        result_path: Where the agent should write result.json
    """

    prompt: str
    model: str = ""
    env: Dict[str, str] = field(default_factory=dict)
    work_dir: str = ""
    config: Dict[str, Any] = field(default_factory=dict)
    status_path: str = ""
    result_path: str = ""


@dataclass(frozen=True)
class ProviderResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    model: str = ""
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


class Provider(ABC):
    """Execution interface for agent backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the canonical provider name."""
        pass

    @property
    def default_model(self) -> str:
        return ""

    @abstractmethod
    def execute(self, request: ProviderRequest) -> ProviderResult:
        """Run the agent once.

        Implementations own process launch, timeouts and output capture.
        They must not retry; a failure is raised to the caller.
        """
        pass


class RequestValidator(ABC):
    """Security gate applied to a request before any provider sees it."""

    @abstractmethod
    def validate(self, request: ProviderRequest) -> None:
        """Raise ValidationError if the request must not be executed."""
        pass
