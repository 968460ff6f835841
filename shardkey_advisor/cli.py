"""CLI entrypoint for the shard key advisor."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections.abc import Sequence

from pydantic import ValidationError

from .api import ShardKeyAdvisorAPI
from .errors import AdvisorError
from .models import AdvisorConfig, AnalysisOptions, Candidate, Namespace, WorkloadConfig
from .mongo import MongoGateway


def _namespace(value: str) -> Namespace:
    try:
        return Namespace.parse(value)
    except (ValueError, ValidationError) as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _candidate(value: str) -> Candidate:
    try:
        return Candidate(key=json.loads(value))
    except (ValueError, ValidationError) as exc:
        raise argparse.ArgumentTypeError(f"invalid shard key {value!r}: {exc}") from None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shardkey-advisor", description="Evaluate MongoDB shard key candidates."
    )
    parser.add_argument(
        "--uri",
        default=os.environ.get("SHARDKEY_ADVISOR_URI"),
        help="MongoDB connection string (defaults to $SHARDKEY_ADVISOR_URI).",
    )
    parser.add_argument(
        "--sample-size",
        type=int,
        default=10_000,
        help="Default analyzeShardKey sample size.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Score and rank shard key candidates.")
    analyze.add_argument("namespace", type=_namespace, help="Target as database.collection.")
    analyze.add_argument(
        "--key",
        dest="candidates",
        type=_candidate,
        action="append",
        required=True,
        help='Candidate key as JSON, e.g. \'{"customerId": 1}\' (repeatable).',
    )
    analyze.add_argument("--sample-rate", type=float, default=None, help="Fraction to sample.")
    analyze.add_argument("--json", action="store_true", help="Print the full report as JSON.")

    suggest = sub.add_parser("suggest", help="Propose candidates from sampled documents.")
    suggest.add_argument("namespace", type=_namespace, help="Target as database.collection.")

    sub.add_parser("profiles", help="List built-in workload profiles.")

    workload = sub.add_parser("workload", help="Run a synthetic workload to completion.")
    workload.add_argument("namespace", type=_namespace, help="Target as database.collection.")
    workload.add_argument("--profile", default="ecommerce", help="Workload profile id.")
    workload.add_argument("--duration", type=float, default=120, help="Run length in seconds.")
    workload.add_argument("--qps", type=float, default=15, help="Target queries per second.")

    sampling = sub.add_parser("sampling", help="Control query sampling.")
    sampling_sub = sampling.add_subparsers(dest="action", required=True)
    start = sampling_sub.add_parser("start", help="Enable sampling on a collection.")
    start.add_argument("namespace", type=_namespace, help="Target as database.collection.")
    start.add_argument("--rate", type=int, default=10, help="Samples per second (1-50).")
    stop = sampling_sub.add_parser("stop", help="Disable sampling on a collection.")
    stop.add_argument("namespace", type=_namespace, help="Target as database.collection.")
    sampling_sub.add_parser("status", help="Show sampling state.")

    return parser


def _config_from_args(args: argparse.Namespace) -> AdvisorConfig:
    return AdvisorConfig(mongo_uri=args.uri, default_sample_size=args.sample_size)


def _print_json(data: str) -> None:
    print(json.dumps(json.loads(data), indent=2))


def main(argv: Sequence[str] | None = None, *, gateway: MongoGateway | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = _config_from_args(args)
    api = ShardKeyAdvisorAPI(config, gateway)

    try:
        if args.command == "profiles":
            for profile in api.profiles():
                total = sum(p.weight for p in profile.patterns)
                print(f"{profile.id}: {profile.name} - {profile.description}")
                for p in profile.patterns:
                    share = p.weight * 100 / total
                    print(f"  {share:5.1f}%  {p.type:<5} {p.operation:<9} {p.name}")
            return 0
        if args.command == "analyze":
            options = AnalysisOptions(sample_rate=args.sample_rate)
            report = api.analyze(args.namespace, args.candidates, options)
            if args.json:
                _print_json(report.model_dump_json(by_alias=True))
                return 0
            for result in report.results:
                s = result.score
                print(f"{result.label} -> score={s.overall} grade={s.grade}")
                for warning in result.warnings:
                    print(f"  [{warning.severity}] {warning.message}")
            for error in report.errors:
                print(f"{error.label} -> failed: {error.error}")
            for rec in report.recommendations:
                print(f"{rec.type}: {rec.title or rec.message}")
            return 0 if report.results else 1
        if args.command == "suggest":
            suggestions = api.suggest(args.namespace)
            if not suggestions.candidates:
                print(suggestions.message or "No candidates found.")
                return 0
            for cand in suggestions.candidates:
                index = "indexed" if cand.has_index else "no index"
                print(f"{cand.label} -> score={cand.score} ({cand.rating}, {index})")
            return 0
        if args.command == "workload":
            if not 10 <= args.duration <= 3600:
                parser.error("--duration must be between 10 and 3600 seconds")
            workload = WorkloadConfig(
                profile=args.profile,
                duration_seconds=args.duration,
                queries_per_second=args.qps,
            )
            api.start_workload(args.namespace, workload)
            try:
                api.scheduler.wait()
            except KeyboardInterrupt:
                api.stop_workload()
            status = api.workload_status()
            _print_json(status.model_dump_json(by_alias=True, exclude={"stats": {"latencies"}}))
            return 0
        if args.command == "sampling":
            if args.action == "start":
                state = api.start_sampling(args.namespace, args.rate)
            elif args.action == "stop":
                state = api.stop_sampling(args.namespace)
            else:
                state = api.sampling_status()
            _print_json(state.model_dump_json(by_alias=True))
            return 0
    except (AdvisorError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        api.close()
    parser.error(f"Unsupported command {args.command}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
