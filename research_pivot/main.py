import argparse
import asyncio
import json
import logging
import sys
import time

import structlog

from research_pivot.config import get_settings
from research_pivot.exceptions import GateBlockedError, ResearchPivotError
from research_pivot.phases.gate import STAGE_NAMES, PhaseGate


def _init_logging(level: str):
    level = level.upper()
    logging.basicConfig(level=level, stream=sys.stderr)
    structlog.configure(
        processors=[structlog.processors.add_log_level, structlog.processors.TimeStamper(fmt="iso"), structlog.processors.JSONRenderer()],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        # stdout carries command output; logs go to stderr through the root logger
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _print_json(obj) -> None:
    print(json.dumps(obj, indent=2, default=str))


def _pipeline(args):
    # Deferred: building the pipeline wires up analyzers and the cache
    from research_pivot.pipeline import ResearchPipeline
    return ResearchPipeline(args.session)


def cmd_verify(args) -> int:
    check = PhaseGate(args.session).verify(args.stage)
    if check.satisfied:
        print(f"OK: {args.stage} may proceed")
        return 0
    print(f"BLOCKED: {args.stage} requires {' or '.join(check.missing)}")
    return 1


def cmd_mark(args) -> int:
    metrics = json.loads(args.metrics) if args.metrics else None
    if metrics is not None and not isinstance(metrics, dict):
        raise ResearchPivotError("--metrics must be a JSON object")
    marker = PhaseGate(args.session).mark_complete(args.stage, metrics=metrics)
    print(f"Marked {args.stage} complete ({marker.marker})")
    return 0


def cmd_skip_wave2(args) -> int:
    PhaseGate(args.session).skip_wave2(args.reason)
    print(f"Wave 2 skipped: {args.reason}")
    return 0


def cmd_status(args) -> int:
    status = PhaseGate(args.session).status()
    if args.json:
        _print_json(status.model_dump(mode="json"))
        return 0
    print(f"Session: {status.session_dir}")
    print(f"Completed: {', '.join(status.completed) or 'none'}")
    print(f"Next stage: {status.next_stage or 'done'}")
    print(f"Worker outputs: wave-1={status.worker_counts.get('wave-1', 0)} "
          f"wave-2={status.worker_counts.get('wave-2', 0)}")
    return 0


def cmd_count(args) -> int:
    print(PhaseGate(args.session).count(args.wave))
    return 0


async def cmd_classify(args) -> int:
    outcome = await _pipeline(args).classify(args.query)
    _print_json(outcome.model_dump(mode="json"))
    return 0


async def cmd_plan(args) -> int:
    plan = await _pipeline(args).plan(args.query)
    data = plan.model_dump(mode="json")
    data["total_workers"] = plan.total_workers
    _print_json(data)
    return 0


def cmd_evaluate(args) -> int:
    decision = _pipeline(args).evaluate_wave(args.wave)
    _print_json(decision.model_dump(mode="json"))
    return 0


def cmd_cache(args) -> int:
    from research_pivot.data.cache import ResultCache
    cache = ResultCache()
    if args.action == "stats":
        _print_json(cache.stats())
    elif args.action == "clear":
        print(f"Removed {cache.clear()} cache entries")
    else:
        print(f"Purged {cache.purge_expired()} expired cache entries")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="research-pivot", description="Research planning, quality gates and phase control")
    p.add_argument("--session", default=None, help="Session directory (defaults to SESSION_DIR)")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("verify", help="Check a stage's prerequisite")
    s.add_argument("stage", choices=STAGE_NAMES)
    s.set_defaults(func=cmd_verify)

    s = sub.add_parser("mark", help="Mark a stage complete")
    s.add_argument("stage", choices=STAGE_NAMES)
    s.add_argument("--metrics", default=None, help="JSON object stored with the marker")
    s.set_defaults(func=cmd_mark)

    s = sub.add_parser("skip-wave2", help="Record that wave 2 is not needed")
    s.add_argument("reason")
    s.set_defaults(func=cmd_skip_wave2)

    s = sub.add_parser("status", help="Show phase progress")
    s.add_argument("--json", action="store_true")
    s.set_defaults(func=cmd_status)

    s = sub.add_parser("count", help="Count worker outputs for a wave")
    s.add_argument("--wave", type=int, default=1)
    s.set_defaults(func=cmd_count)

    s = sub.add_parser("classify", help="Consensus-classify a query")
    s.add_argument("query")
    s.set_defaults(func=cmd_classify)

    s = sub.add_parser("plan", help="Generate and validate research perspectives")
    s.add_argument("query")
    s.set_defaults(func=cmd_plan)

    s = sub.add_parser("evaluate", help="Score a wave and decide on the pivot")
    s.add_argument("--wave", type=int, default=1)
    s.set_defaults(func=cmd_evaluate)

    s = sub.add_parser("cache", help="Inspect or maintain the result cache")
    s.add_argument("action", choices=["stats", "clear", "purge"])
    s.set_defaults(func=cmd_cache)
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValueError as e:
        sys.stderr.write(f"Configuration error: {e}\n")
        return 1
    _init_logging(settings.LOG_LEVEL)
    if args.session is None:
        args.session = settings.SESSION_DIR

    async def arun():
        result = args.func(args)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    t0 = time.time()
    try:
        return asyncio.run(asyncio.wait_for(arun(), timeout=settings.WALL_TIMEOUT_SEC))
    except asyncio.TimeoutError:
        sys.stderr.write(f"Timed out after {time.time() - t0:.1f}s (WALL_TIMEOUT_SEC={settings.WALL_TIMEOUT_SEC})\n")
        return 1
    except GateBlockedError as e:
        sys.stderr.write(f"BLOCKED: {e}\n")
        return 1
    except ResearchPivotError as e:
        sys.stderr.write(f"Error: {e}\n")
        return 1
    except json.JSONDecodeError as e:
        sys.stderr.write(f"Invalid JSON: {e}\n")
        return 1
    except KeyboardInterrupt:
        sys.stderr.write("Interrupted by user.\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
