"""Loop termination strategies.

The fixed strategy stops after a configured number of iterations, but lets
the agent end the loop early. Precedence, first match wins:

1. explicit decision "stop"
2. explicit decision "error"
3. any other explicit decision (including "continue") -> continue hint
4. no decision: risk "high" -> error, plateau suspected -> stop
5. iteration cap reached

Rules 1-4 are an ordered tuple of `DecisionRule` values so each step of the
chain can be tested on its own. The strategy keeps no history: the same
(iteration, result) always yields the same answer.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Tuple

from .errors import ConfigError
from .result import Result

logger = logging.getLogger(__name__)

# Fallback iteration count when neither "iterations" nor "max" is set.
DEFAULT_FIXED_ITERATIONS = 1

FIXED_STRATEGY = "fixed"


def _coerce_optional_int(value: Any, key: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"termination.{key} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigError(f"termination.{key} must be an integer, got {value!r}")


@dataclass(frozen=True)
class FixedConfig:
    """Fixed termination settings.

    Both values are optional; a value that is None or not positive is
    treated as unset.
    """

    iterations: Optional[int] = None
    max_iterations: Optional[int] = None

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "FixedConfig":
        """Build from a config table using the "iterations" and "max" keys."""
        raw = raw or {}
        return cls(
            iterations=_coerce_optional_int(raw.get("iterations"), "iterations"),
            max_iterations=_coerce_optional_int(raw.get("max"), "max"),
        )

    def target(self) -> int:
        """Return the iteration cap: iterations, else max, else the default."""
        if self.iterations is not None and self.iterations > 0:
            return self.iterations
        if self.max_iterations is not None and self.max_iterations > 0:
            return self.max_iterations
        return DEFAULT_FIXED_ITERATIONS


class Verdict(enum.Enum):
    STOP = "stop"
    ERROR = "error"
    CONTINUE = "continue"


class RuleKind(enum.Enum):
    """Which rule of the precedence chain produced a decision."""

    EXPLICIT_STOP = "explicit_stop"
    EXPLICIT_ERROR = "explicit_error"
    EXPLICIT_OTHER = "explicit_other"
    SIGNAL_ERROR = "signal_error"
    SIGNAL_STOP = "signal_stop"
    SIGNAL_CONTINUE = "signal_continue"
    CAP_REACHED = "cap_reached"


def _decision(result: Result) -> str:
    return result.decision.strip().lower()


@dataclass(frozen=True)
class DecisionRule:
    kind: RuleKind
    verdict: Verdict
    matches: Callable[[Result], bool]


DECISION_RULES: Tuple[DecisionRule, ...] = (
    DecisionRule(RuleKind.EXPLICIT_STOP, Verdict.STOP, lambda r: _decision(r) == "stop"),
    DecisionRule(RuleKind.EXPLICIT_ERROR, Verdict.ERROR, lambda r: _decision(r) == "error"),
    DecisionRule(RuleKind.EXPLICIT_OTHER, Verdict.CONTINUE, lambda r: _decision(r) != ""),
    DecisionRule(
        RuleKind.SIGNAL_ERROR,
        Verdict.ERROR,
        lambda r: r.signals.risk.strip().lower() == "high",
    ),
    DecisionRule(RuleKind.SIGNAL_STOP, Verdict.STOP, lambda r: r.signals.plateau_suspected),
    DecisionRule(RuleKind.SIGNAL_CONTINUE, Verdict.CONTINUE, lambda r: True),
)


def decision_hint(result: Result) -> DecisionRule:
    """Return the first decision rule that matches result."""
    for rule in DECISION_RULES:
        if rule.matches(result):
            return rule
    # SIGNAL_CONTINUE always matches.
    raise AssertionError("unreachable")


@dataclass(frozen=True)
class TerminationDecision:
    done: bool
    reason: str
    rule: RuleKind


class Fixed:
    """Enforce a fixed iteration limit with optional early stop decisions."""

    name = FIXED_STRATEGY

    def __init__(self, config: Optional[FixedConfig] = None) -> None:
        self._target = (config or FixedConfig()).target()

    def __repr__(self) -> str:
        return f"Fixed(target={self._target})"

    def target(self) -> int:
        if self._target > 0:
            return self._target
        return DEFAULT_FIXED_ITERATIONS

    def evaluate(self, iteration: int, result: Result) -> TerminationDecision:
        rule = decision_hint(result)
        if rule.kind is RuleKind.EXPLICIT_OTHER and _decision(result) != "continue":
            logger.debug("Unrecognized decision %r treated as continue", result.decision)

        if rule.verdict is Verdict.STOP:
            return TerminationDecision(
                True, f"Agent requested stop at iteration {iteration}", rule.kind
            )
        if rule.verdict is Verdict.ERROR:
            return TerminationDecision(
                True, f"Agent reported error at iteration {iteration}", rule.kind
            )

        target = self.target()
        if iteration >= target:
            return TerminationDecision(
                True,
                f"Completed {iteration} iterations (max: {target})",
                RuleKind.CAP_REACHED,
            )
        return TerminationDecision(False, "", rule.kind)

    def should_stop(self, iteration: int, result: Result) -> Tuple[bool, str]:
        """Return (done, reason) for the iteration that just finished."""
        decision = self.evaluate(iteration, result)
        return decision.done, decision.reason


def build_strategy(raw: Optional[Mapping[str, Any]]) -> Fixed:
    """Build a termination strategy from a stage `termination:` block.

    Example:
        >>> build_strategy({"type": "fixed", "iterations": 3}).target()
        3
    """
    raw = raw or {}
    kind = str(raw.get("type") or FIXED_STRATEGY).strip().lower()
    if kind != FIXED_STRATEGY:
        raise ConfigError(f"Invalid termination.type: {kind!r}. Must be 'fixed'.")
    return Fixed(FixedConfig.from_mapping(raw))
