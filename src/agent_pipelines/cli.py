from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from . import __version__
from .config import Config, load_config, load_stage_termination
from .errors import ConfigError, PipelineError
from .events import Cursor, EventWriter, new_event
from .json_response import build_error_response, build_json_response
from .logging_config import setup_logging
from .result import load, normalize_files
from .termination import Fixed, FixedConfig

logger = logging.getLogger(__name__)


def _project_root() -> Path:
    return Path(os.getcwd()).resolve()


def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2))


def cmd_result_normalize(args: argparse.Namespace) -> int:
    result, source = normalize_files(args.result, args.status)
    _print_json(
        build_json_response(
            "result normalize",
            source=source.value,
            result=result.to_dict(),
        )
    )
    return 0


def cmd_termination_check(args: argparse.Namespace) -> int:
    if args.iterations is not None or args.max is not None:
        strategy = Fixed(FixedConfig(iterations=args.iterations, max_iterations=args.max))
    elif args.stage:
        # A stage termination: block overrides the project default.
        strategy = load_stage_termination(Path(args.stage), default=args.config.strategy())
    else:
        strategy = args.config.strategy()

    result, source = load(args.result, args.status)
    decision = strategy.evaluate(args.iteration, result)
    _print_json(
        build_json_response(
            "termination check",
            done=decision.done,
            reason=decision.reason,
            rule=decision.rule.value,
            source=source.value,
            max_iterations=strategy.target(),
        )
    )
    return 0


def _parse_data(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"--data must be a JSON object: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("--data must be a JSON object")
    return data


def cmd_events_append(args: argparse.Namespace) -> int:
    cursor: Optional[Cursor] = None
    if args.node_path or args.node_run or args.iteration or args.provider:
        cursor = Cursor(
            node_path=args.node_path or "",
            node_run=args.node_run or 0,
            iteration=args.iteration or 0,
            provider=args.provider or "",
        )
    event = new_event(args.type, args.session, cursor, _parse_data(args.data))
    EventWriter(args.file).append(event)
    _print_json(build_json_response("events append", event=event.to_dict()))
    return 0


def _configure_logging(args: argparse.Namespace, cfg: Config, root: Path) -> None:
    """Re-apply logging with [logging] settings; command-line flags win."""
    settings = cfg.logging
    if not (settings.verbose or settings.quiet or settings.log_file):
        return
    log_file = Path(settings.log_file) if settings.log_file else None
    if log_file is not None and not log_file.is_absolute():
        log_file = root / log_file
    quiet = args.quiet or (settings.quiet and not args.verbose)
    setup_logging(verbose=args.verbose or settings.verbose, log_file=log_file, quiet=quiet)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="agent-pipelines",
        description="Result reconciliation, termination checks and event logging for agent loops",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    p.add_argument("--quiet", "-q", action="store_true", help="Only log errors")
    sub = p.add_subparsers(dest="cmd", required=True)

    # result
    p_result = sub.add_parser("result", help="Work with agent result payloads")
    result_sub = p_result.add_subparsers(dest="result_cmd", required=True)

    p_normalize = result_sub.add_parser(
        "normalize",
        help="Load result.json (or legacy status.json) and write canonical result.json",
    )
    p_normalize.add_argument("--result", required=True, help="Path to result.json")
    p_normalize.add_argument("--status", default="", help="Path to legacy status.json")
    p_normalize.set_defaults(func=cmd_result_normalize)

    # termination
    p_term = sub.add_parser("termination", help="Evaluate loop termination")
    term_sub = p_term.add_subparsers(dest="termination_cmd", required=True)

    p_check = term_sub.add_parser(
        "check",
        help="Decide whether the loop should stop after an iteration",
    )
    p_check.add_argument("--iteration", type=int, required=True, help="Iteration just completed")
    p_check.add_argument("--iterations", type=int, default=None, help="Iteration cap")
    p_check.add_argument("--max", type=int, default=None, help="Fallback iteration cap")
    p_check.add_argument("--result", required=True, help="Path to result.json")
    p_check.add_argument("--status", default="", help="Path to legacy status.json")
    p_check.add_argument(
        "--stage", default="", help="stage.yaml whose termination: block sets the cap"
    )
    p_check.set_defaults(func=cmd_termination_check)

    # events
    p_events = sub.add_parser("events", help="Append to a session events.jsonl")
    events_sub = p_events.add_subparsers(dest="events_cmd", required=True)

    p_append = events_sub.add_parser("append", help="Append one event")
    p_append.add_argument("--file", required=True, help="Path to events.jsonl")
    p_append.add_argument("--type", required=True, help="Event type (e.g. iteration_start)")
    p_append.add_argument("--session", required=True, help="Session identifier")
    p_append.add_argument("--node-path", default="", help="Cursor node path")
    p_append.add_argument("--node-run", type=int, default=0, help="Cursor node run")
    p_append.add_argument("--iteration", type=int, default=0, help="Cursor iteration")
    p_append.add_argument("--provider", default="", help="Cursor provider")
    p_append.add_argument("--data", default="", help="Event data as a JSON object")
    p_append.set_defaults(func=cmd_events_append)

    return p


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, quiet=args.quiet)

    cmd_name = " ".join(
        x for x in (args.cmd, getattr(args, f"{args.cmd}_cmd", None)) if x
    )
    try:
        root = _project_root()
        args.config = load_config(root)
        _configure_logging(args, args.config, root)
        logger.debug("agent-pipelines v%s starting", __version__)
        return int(args.func(args))
    except PipelineError as e:
        logger.error("%s", e)
        _print_json(build_error_response(cmd_name, e))
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
