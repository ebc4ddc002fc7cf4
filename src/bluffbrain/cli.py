from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from .core.config import EngineConfig
from .features.decision import DecisionEngine, PerformancePayload


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--storage", type=Path, default=None, help="Directory holding the learned state")
    p.add_argument("--seed", type=int, default=None, help="RNG seed (random if omitted)")
    p.add_argument(
        "--log-level",
        default=os.environ.get("BLUFFBRAIN_LOG_LEVEL", "WARNING"),
        help="Logging level for diagnostics on stderr",
    )


def _read_state(raw: str) -> Any:
    # Inline JSON, "-" for stdin, or a path to a JSON file.
    if raw == "-":
        return json.load(sys.stdin)
    if raw.lstrip().startswith("{"):
        return json.loads(raw)
    with open(raw, encoding="utf-8") as fh:
        return json.load(fh)


def _emit(payload: Any) -> None:
    json.dump(payload, sys.stdout, indent=2, sort_keys=True)
    sys.stdout.write("\n")


async def _run(args: argparse.Namespace, engine: DecisionEngine) -> int:
    await engine.load()
    if args.command == "decide":
        try:
            state = _read_state(args.state)
        except (OSError, ValueError) as exc:
            print(f"cannot read state: {exc}", file=sys.stderr)
            return 2
        result = await engine.decide_detailed(state, args.chat, opponent_id=args.opponent)
        _emit(result.to_payload().to_dict())
        return 1 if result.recovered and result.source == "fallback" else 0
    if args.command == "progress":
        _emit(engine.learning_progress().to_dict())
        return 0
    if args.command == "performance":
        payload = PerformancePayload(
            performance=engine.performance_snapshot().to_dict(),
            metrics=engine.metrics().to_dict(),
            distribution=engine.decision_distribution(),
            learning=engine.learning_progress().to_dict(),
            errors=engine.error_summary(),
        )
        _emit(payload.to_dict())
        return 0
    if args.command == "recent":
        _emit([record.to_dict() for record in engine.recent_decisions(args.limit)])
        return 0
    raise AssertionError(f"unhandled command {args.command!r}")


def main(argv: list[str] | None = None) -> int:
    """Offline inspection of a decision engine's learned state."""

    parser = argparse.ArgumentParser(prog="bluffbrain", description="Bluffing card game decision engine")
    sub = parser.add_subparsers(dest="command", required=True)

    decide = sub.add_parser("decide", help="Decide one move for a game state")
    decide.add_argument("state", help="Game state as inline JSON, a JSON file path, or - for stdin")
    decide.add_argument("--chat", default=None, help="Optional table talk from the human player")
    decide.add_argument("--opponent", default=None, help="Opponent id for per-opponent patterns")
    _add_common_args(decide)

    progress = sub.add_parser("progress", help="Show policy learning progress")
    _add_common_args(progress)

    performance = sub.add_parser("performance", help="Show performance and monitoring figures")
    _add_common_args(performance)

    recent = sub.add_parser("recent", help="Show the most recent recorded decisions")
    recent.add_argument("--limit", type=int, default=10, help="Number of decisions to show")
    _add_common_args(recent)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=str(args.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    config = EngineConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.storage is not None:
        overrides["storage_dir"] = args.storage
    if args.seed is not None:
        overrides["seed"] = args.seed
    engine = DecisionEngine.create(replace(config, **overrides))
    return asyncio.run(_run(args, engine))


if __name__ == "__main__":
    raise SystemExit(main())
