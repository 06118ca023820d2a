import argparse
import asyncio
import json
import logging
import sys

from .common.config_loader import load_settings
from .engine.planning import HeuristicPlanner
from .engine.retrieval_routing import route_tool_calls
from .eval.lore_benchmark import run_benchmark_file


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Archivist grounded answer pipeline CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    bench = sub.add_parser("bench", help="Run the lore regression benchmark against a fixture file")
    bench.add_argument("fixture", help="Path to a lore regression fixture (JSON with a 'cases' list)")
    bench.add_argument("--json", action="store_true", help="Print the report as JSON")

    route = sub.add_parser("route", help="Show the tool calls a message would be routed to")
    route.add_argument("message", help="User message")

    return parser.parse_args(argv)


def _run_bench(args: argparse.Namespace) -> int:
    try:
        report = run_benchmark_file(args.fixture)
    except (OSError, ValueError) as err:
        print(f"Unable to run benchmark: {err}")
        return 2

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"Cases:              {len(report.results)}")
        print(f"Citation presence:  {_fmt_rate(report.citation_presence)}")
        print(f"Abstain precision:  {_fmt_rate(report.abstain_precision)}")
        print(f"Contradiction rate: {_fmt_rate(report.contradiction_rate)}")
        for failure in report.failures:
            print(f"  FAIL {failure}")
        print("PASSED" if report.passed else "FAILED")
    return 0 if report.passed else 1


def _fmt_rate(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.1%}"


def _run_route(args: argparse.Namespace) -> int:
    settings = load_settings()
    planner = HeuristicPlanner(settings.max_salient_terms)
    plan = asyncio.run(planner.plan(args.message))
    calls = route_tool_calls(args.message, list(plan.tool_calls), plan.salient_terms, settings.max_salient_terms)
    for idx, call in enumerate(calls):
        print(f"{idx}: {call.tool_name} {json.dumps(call.args)}")
    if not calls:
        print("(no tool calls)")
    return 0


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "bench":
        return _run_bench(args)
    return _run_route(args)


if __name__ == "__main__":
    sys.exit(run())
