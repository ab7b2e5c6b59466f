"""Iteration driver composing provider, reconciler, policy and audit log.

One iteration is:

    iteration_start -> validate -> provider.execute -> normalize_files
                    -> should_stop -> iteration_complete

Every collaborator is passed in by the caller; nothing here is a module
level singleton. A failure inside an iteration is recorded as an `error`
event and re-raised. There are no retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from .config import Config, FilesConfig
from .events import Cursor, EventType, EventWriter
from .providers import Provider, ProviderRequest, ProviderResult, RequestValidator
from .result import Result, Source, normalize_files
from .termination import Fixed

logger = logging.getLogger(__name__)


@dataclass
class IterationResult:
    iteration: int
    source: Source
    result: Result
    done: bool
    reason: str
    exit_code: int
    run_dir: Path


def iteration_dir(session_dir: Path, iteration: int) -> Path:
    return session_dir / "iterations" / f"{iteration:03d}"


def open_session(project_root: Path, cfg: Config, session: str) -> Tuple[Path, EventWriter]:
    """Return (session_dir, events writer) for a session under cfg.files.run_dir."""
    session_dir = project_root / cfg.files.run_dir / session
    session_dir.mkdir(parents=True, exist_ok=True)
    return session_dir, EventWriter(session_dir / cfg.files.events)


def run_iteration(
    *,
    provider: Provider,
    strategy: Fixed,
    writer: EventWriter,
    session: str,
    session_dir: Path,
    iteration: int,
    prompt: str,
    validator: Optional[RequestValidator] = None,
    files: FilesConfig = FilesConfig(),
    env: Optional[Mapping[str, str]] = None,
    provider_config: Optional[Mapping[str, Any]] = None,
    node_path: str = "",
    node_run: int = 0,
) -> IterationResult:
    run_dir = iteration_dir(session_dir, iteration)
    run_dir.mkdir(parents=True, exist_ok=True)
    result_path = run_dir / files.result
    status_path = run_dir / files.status

    cursor = Cursor(
        node_path=node_path,
        node_run=node_run,
        iteration=iteration,
        provider=provider.name,
    )
    request = ProviderRequest(
        prompt=prompt,
        model=provider.default_model,
        env=dict(env or {}),
        work_dir=str(session_dir),
        config=dict(provider_config or {}),
        status_path=str(status_path),
        result_path=str(result_path),
    )

    writer.emit(EventType.ITERATION_START, session, cursor)
    try:
        if validator is not None:
            validator.validate(request)
        outcome: ProviderResult = provider.execute(request)
        result, source = normalize_files(result_path, status_path)
    except Exception as e:
        logger.error("Iteration %d failed: %s", iteration, e)
        writer.emit(
            EventType.ERROR,
            session,
            cursor,
            {"error": str(e), "error_type": type(e).__name__},
        )
        raise

    done, reason = strategy.should_stop(iteration, result)
    writer.emit(
        EventType.ITERATION_COMPLETE,
        session,
        cursor,
        {
            "source": source.value,
            "decision": result.decision,
            "summary": result.summary,
            "exit_code": outcome.exit_code,
            "model": outcome.model,
            "duration_seconds": outcome.duration_seconds,
            "done": done,
            "reason": reason,
        },
    )
    if done:
        logger.info("Stopping after iteration %d: %s", iteration, reason)
    else:
        logger.debug("Iteration %d complete; continuing", iteration)

    return IterationResult(
        iteration=iteration,
        source=source,
        result=result,
        done=done,
        reason=reason,
        exit_code=outcome.exit_code,
        run_dir=run_dir,
    )


def run_loop(
    *,
    provider: Provider,
    strategy: Fixed,
    writer: EventWriter,
    session: str,
    session_dir: Path,
    prompt: str,
    validator: Optional[RequestValidator] = None,
    files: FilesConfig = FilesConfig(),
    env: Optional[Mapping[str, str]] = None,
    provider_config: Optional[Mapping[str, Any]] = None,
    start_iteration: int = 1,
) -> List[IterationResult]:
    """Run iterations until the strategy says stop.

    The loop always ends: once the iteration number reaches the strategy's
    cap the fixed strategy stops regardless of what the agent reports.
    """
    writer.emit(
        EventType.SESSION_START,
        session,
        data={"provider": provider.name, "max_iterations": strategy.target()},
    )

    results: List[IterationResult] = []
    iteration = start_iteration
    while True:
        res = run_iteration(
            provider=provider,
            strategy=strategy,
            writer=writer,
            session=session,
            session_dir=session_dir,
            iteration=iteration,
            prompt=prompt,
            validator=validator,
            files=files,
            env=env,
            provider_config=provider_config,
        )
        results.append(res)
        if res.done:
            break
        iteration += 1

    writer.emit(
        EventType.SESSION_COMPLETE,
        session,
        data={"iterations": len(results), "reason": results[-1].reason},
    )
    return results
