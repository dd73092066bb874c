"""
canary-sre CLI — automation entry point for canary rollouts.

Usage:
    canary-sre evaluate --metrics metrics.json
    canary-sre evaluate --metrics metrics.json --analyze-only
    canary-sre evaluate --percentage=20
    canary-sre status
    canary-sre reset
    canary-sre assign --percentage 20 --clients 10000
    canary-sre version

``evaluate`` exits 1 when the canary error rate exceeds the stable error rate
by more than the configured threshold, so CI can trigger rollback jobs.
"""

import argparse
import json
import logging
import os
import random
import sys
from collections import Counter
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from canary_sre import __version__
from canary_sre.delivery.assignment import Variant, VariantAssigner
from canary_sre.delivery.metrics import load_metrics
from canary_sre.delivery.report import build_report, write_report
from canary_sre.delivery.runner import (
    RolloutContext,
    apply_manual_override,
    reset_rollout,
    run_evaluation,
    run_failed_fetch,
)
from canary_sre.delivery.store import ConcurrentUpdateError, config_to_document
from canary_sre.integrations.otel import EventLogger, MetricsExporter
from canary_sre.settings import Settings, load_settings


def _set_output(name: str, value: str) -> None:
    """Set GitHub Actions output."""
    output_file = os.environ.get("GITHUB_OUTPUT")
    if output_file:
        with open(output_file, "a") as f:
            f.write(f"{name}={value}\n")
    else:
        print(f"::set-output name={name}::{value}")


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _load_settings(parsed: argparse.Namespace) -> Settings:
    settings = load_settings(parsed.settings)
    if parsed.config:
        settings = settings.model_copy(update={"config_path": parsed.config})
    return settings


def _evaluate(parsed: argparse.Namespace, settings: Settings) -> int:
    ctx = RolloutContext.from_settings(
        settings,
        history_path=parsed.history_file,
        metrics=MetricsExporter(),
        events=EventLogger(),
    )
    persist = not parsed.analyze_only
    metrics: Dict[Variant, Any] = {}

    if parsed.percentage is not None:
        try:
            percentage = float(parsed.percentage)
            outcome = apply_manual_override(ctx, percentage, persist=persist)
        except ValueError:
            return _error("Percentage must be a number between 0 and 100")
    else:
        if not parsed.metrics:
            return _error("--metrics is required unless --percentage is given")
        try:
            metrics = load_metrics(parsed.metrics)
        except (OSError, ValueError) as exc:
            outcome = run_failed_fetch(ctx, str(exc), persist=persist)
        else:
            outcome = run_evaluation(ctx, metrics, persist=persist)

    if not parsed.skip_report_file:
        report = build_report(
            metrics,
            outcome.evaluation,
            outcome.before,
            outcome.after,
            outcome.reason,
            settings.error_threshold,
            outcome.exceeds_threshold,
            timestamp=ctx.clock(),
        )
        try:
            write_report(report, parsed.report_file or settings.report_path)
        except OSError as exc:
            return _error(f"Cannot write analysis report: {exc}")

    summary = outcome.summary()
    _set_output("percentage", f"{outcome.after.current_percentage:g}")
    _set_output("reason", outcome.reason)
    _set_output("decision", summary["decision"])
    print(json.dumps(summary, indent=2))
    return 1 if outcome.exceeds_threshold else 0


def _assign(parsed: argparse.Namespace) -> int:
    try:
        percentage = float(parsed.percentage)
        if parsed.clients < 1:
            raise ValueError("--clients must be positive")
        assigner = VariantAssigner(rng=random.Random(parsed.seed))
        counts = Counter(assigner.assign(percentage).variant.value for _ in range(parsed.clients))
    except ValueError as exc:
        return _error(str(exc))
    result = {
        "percentage": percentage,
        "clients": parsed.clients,
        "stable": counts.get(Variant.STABLE.value, 0),
        "canary": counts.get(Variant.CANARY.value, 0),
        "canary_fraction": counts.get(Variant.CANARY.value, 0) / parsed.clients,
    }
    print(json.dumps(result, indent=2))
    return 0


def cli(args: Optional[List[str]] = None) -> int:
    """Main CLI entry point. Returns exit code."""
    parser = argparse.ArgumentParser(
        prog="canary-sre",
        description="Client-side canary rollouts driven by error-rate health checks",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--config", help="Rollout config document (JSON)")
        sub.add_argument("--settings", help="Settings file (YAML)")

    # evaluate subcommand
    eval_parser = subparsers.add_parser("evaluate", help="Evaluate canary health and adjust rollout")
    add_common(eval_parser)
    eval_parser.add_argument("--metrics", help="Metrics JSON keyed by variant")
    eval_parser.add_argument(
        "--analyze-only", action="store_true", help="Compute the decision without persisting it"
    )
    eval_parser.add_argument("--percentage", help="Force a canary percentage (0-100)")
    eval_parser.add_argument(
        "--skip-report-file", action="store_true", help="Do not write the analysis report"
    )
    eval_parser.add_argument("--report-file", help="Analysis report path")
    eval_parser.add_argument("--history-file", help="Append percentage changes to this file")

    # status subcommand
    status_parser = subparsers.add_parser("status", help="Show the persisted rollout state")
    add_common(status_parser)

    # reset subcommand
    reset_parser = subparsers.add_parser("reset", help="Reset a paused or rolled-back rollout")
    add_common(reset_parser)

    # assign subcommand
    assign_parser = subparsers.add_parser("assign", help="Simulate client assignments")
    assign_parser.add_argument("--percentage", required=True, help="Canary percentage (0-100)")
    assign_parser.add_argument("--clients", type=int, default=10000)
    assign_parser.add_argument("--seed", type=int, default=None)

    # version subcommand
    subparsers.add_parser("version", help="Show version")

    parsed = parser.parse_args(args)

    if parsed.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if parsed.command == "version":
        print(f"canary-sre {__version__}")
        return 0

    if parsed.command == "assign":
        return _assign(parsed)

    if parsed.command in ("evaluate", "status", "reset"):
        try:
            settings = _load_settings(parsed)
        except (OSError, ValidationError, yaml.YAMLError) as exc:
            return _error(f"Invalid settings: {exc}")

        try:
            if parsed.command == "evaluate":
                return _evaluate(parsed, settings)

            ctx = RolloutContext.from_settings(
                settings, metrics=MetricsExporter(), events=EventLogger()
            )
            if parsed.command == "status":
                config = ctx.store.load()
                print(json.dumps(config_to_document(config)["distribution"], indent=2))
                return 0

            outcome = reset_rollout(ctx)
            print(f"Rollout status: {outcome.before.status.value} -> {outcome.after.status.value}")
            return 0
        except ConcurrentUpdateError as exc:
            return _error(str(exc))

    parser.print_help()
    return 1


def main() -> None:
    sys.exit(cli())


if __name__ == "__main__":
    main()
