"""
grantshield command line - serve the API or run maintenance jobs once.
"""

import argparse
import json
import sys
from typing import List, Optional

from .errors import SecurityPipelineError
from .pipeline import SecurityPipeline
from .security.selftest import SelfTestReporter
from .utils.datetime import parse_iso
from .utils.logger import error, log_context
from .utils.settings import Settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="grantshield",
        description="Security and compliance event pipeline",
    )
    parser.add_argument(
        "--config",
        help="Settings JSON file (default: ~/.config/grantshield/settings.json)",
    )
    parser.add_argument("--db", help="DuckDB path (overrides settings.db_path)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the REST API and background schedules")
    serve.add_argument("--host", help="Bind address")
    serve.add_argument("--port", type=int, help="Port to listen on")

    sub.add_parser("sweep", help="Apply the retention policy once")

    selftest = sub.add_parser("selftest", help="Run config validation and the test suite")
    selftest.add_argument("--json", action="store_true", help="Print results as JSON")

    report = sub.add_parser("report", help="Print the security test report")
    report.add_argument("--start", help="ISO start date (default: 24h ago)")
    report.add_argument("--end", help="ISO end date (default: now)")
    report.add_argument(
        "--export", action="store_true", help="Print the JSON snapshot instead of text"
    )
    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    settings = Settings.load(args.config)
    if args.db:
        settings = settings.with_overrides(db_path=args.db)
    return settings


def _serve(pipeline: SecurityPipeline, args: argparse.Namespace) -> int:
    from .api import SecurityAPIServer

    settings = pipeline.settings
    server = SecurityAPIServer(
        pipeline,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
    )
    print(f"Serving on {server.url}")
    server.serve_forever()
    return 0


def _sweep(pipeline: SecurityPipeline, args: argparse.Namespace) -> int:
    result = pipeline.retention.sweep()
    for category, count in result.deleted.items():
        print(f"  ✓ {category}: {count} deleted")
    return 0


def _selftest(pipeline: SecurityPipeline, args: argparse.Namespace) -> int:
    summary = pipeline.selftest.run_full()
    if args.json:
        print(json.dumps(summary.to_dict(), indent=2))
    else:
        for result in summary.results:
            print(f"[{result.status.value:<7}] {result.name}: {result.details.description}")
        print(
            f"\n{summary.passed} passed, {summary.failed} failed, "
            f"{summary.warnings} warnings"
        )
    return 1 if summary.failed else 0


def _report(pipeline: SecurityPipeline, args: argparse.Namespace) -> int:
    report = pipeline.selftest.report(parse_iso(args.start), parse_iso(args.end))
    if args.export:
        print(json.dumps(pipeline.selftest.export_snapshot(report), indent=2))
    else:
        print(SelfTestReporter().generate_summary_report(report))
    return 0


_COMMANDS = {
    "serve": _serve,
    "sweep": _sweep,
    "selftest": _selftest,
    "report": _report,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        pipeline = SecurityPipeline(_load_settings(args))
    except ValueError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return 2

    if args.command == "serve":
        pipeline.start()
    try:
        with log_context(auto_request_id=True):
            return _COMMANDS[args.command](pipeline, args)
    except SecurityPipelineError as e:
        error(f"[CLI] {args.command} failed: {e}")
        print(f"{args.command} failed: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Invalid argument: {e}", file=sys.stderr)
        return 2
    finally:
        pipeline.stop()


if __name__ == "__main__":
    sys.exit(main())
