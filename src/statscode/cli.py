from __future__ import annotations

import argparse
import json
import sqlite3
import sys
from pathlib import Path
from typing import Any

import uvicorn

from .api import create_app
from .certificate import EXPORT_FORMATS, load_certificate, verify
from .errors import StatsCodeError
from .hooks import DEFAULT_TOOL, HOOK_HANDLERS, dispatch
from .logger import setup_logging
from .models import VALID_TOOLS
from .service import StatsCodeService


def _service() -> StatsCodeService:
    return StatsCodeService.create()


def _read_stdin_payload() -> dict[str, Any]:
    if sys.stdin is None or sys.stdin.isatty():
        return {}
    raw = sys.stdin.read()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _run_hook(event: str, tool: str) -> int:
    """Hook processes always exit 0 and never write to stdout."""

    try:
        service = _service()
        setup_logging(service.dirs["logs"], debug=service.config.debug)
        dispatch(service, event, _read_stdin_payload(), tool)
    except Exception as exc:
        print(f"statscode: hook {event} skipped: {exc}", file=sys.stderr)
    return 0


def _print_badges(report: list[dict[str, Any]]) -> None:
    if not report:
        print("No badges yet - keep coding!")
        return
    for badge in report:
        tier = f" [{badge['tier']}]" if badge.get("tier") else ""
        progress = f" {badge['progress']:.0f}%" if badge.get("progress") is not None else ""
        print(f"{badge['icon']} {badge['name']}{tier}{progress} - {badge['points']} pts")


def main() -> int:
    parser = argparse.ArgumentParser(description="StatsCode activity tracker CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    hook_cmd = sub.add_parser("hook", help="Handle a host lifecycle callback (payload JSON on stdin)")
    hook_cmd.add_argument("event", choices=sorted(HOOK_HANDLERS))
    hook_cmd.add_argument("--tool", default=DEFAULT_TOOL, choices=VALID_TOOLS)

    sub.add_parser("stats", help="Print computed stats as JSON")

    badges_cmd = sub.add_parser("badges", help="List earned badges")
    badges_cmd.add_argument("--json", action="store_true", help="Print JSON instead of text")

    export_cmd = sub.add_parser("export", help="Export a certificate")
    export_cmd.add_argument("--format", dest="fmt", default="json", choices=EXPORT_FORMATS)
    export_cmd.add_argument("--out", help="Write to this path instead of stdout")

    verify_cmd = sub.add_parser("verify", help="Verify a certificate JSON file")
    verify_cmd.add_argument("path")

    sub.add_parser("sync", help="Sync stats to the leaderboard now")

    api_cmd = sub.add_parser("api", help="Run the local read-only API")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8787)

    args = parser.parse_args()

    if args.command == "hook":
        return _run_hook(args.event, args.tool)

    try:
        if args.command == "verify":
            certificate = load_certificate(Path(args.path))
            valid = verify(certificate)
            print(json.dumps({"valid": valid, "verificationHash": certificate.verification_hash}, indent=2))
            return 0 if valid else 1

        service = _service()
        setup_logging(service.dirs["logs"], debug=service.config.debug)

        if args.command == "stats":
            print(json.dumps(service.compute_stats().to_dict(), indent=2, ensure_ascii=False))
            return 0

        if args.command == "badges":
            report = service.badge_report()
            if args.json:
                print(json.dumps(report, indent=2, ensure_ascii=False))
            else:
                _print_badges(report)
            return 0

        if args.command == "export":
            out = Path(args.out) if args.out else None
            rendered = service.export(args.fmt, out)
            if out is None:
                print(rendered)
            else:
                print(json.dumps({"format": args.fmt, "path": str(out)}, indent=2))
            return 0

        if args.command == "sync":
            result = service.sync()
            print(json.dumps(result.to_dict(), indent=2))
            return 0 if result.success else 1

        if args.command == "api":
            app = create_app(service)
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
            return 0
    except (StatsCodeError, ValueError, OSError, sqlite3.Error) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
