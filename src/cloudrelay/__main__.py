"""Operator tooling for the reliability layer. Use --help for usage."""

import argparse
import json
import logging
import sys
from collections import Counter
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from cloudrelay.config.config import DEFAULT_CONFIG_FILE, ReliabilityConfig, load_config
from cloudrelay.errors.classifiers import classify, classify_refresh_error
from cloudrelay.errors.exceptions import CloudRelayError, ProviderError
from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.errors.taxonomy import ErrorType
from cloudrelay.logging.setup import setup_logging
from cloudrelay.resilience.recovery import select_strategy
from cloudrelay.resilience.retry import RetryPolicy

# Project root directory (where .env file is located)
# __main__.py is at src/cloudrelay/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


def _emit(data: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
        return
    for key, value in data.items():
        if isinstance(value, dict):
            print(f"{key}:")
            for sub_key, sub_value in value.items():
                print(f"  {sub_key}: {sub_value}")
        else:
            print(f"{key}: {value}")


def _parse_error_type(name: str) -> ErrorType | TokenRefreshErrorType:
    """Accept enum values or names from either taxonomy (generic first)."""
    for enum_cls in (ErrorType, TokenRefreshErrorType):
        for member in enum_cls:
            if name.lower() in (member.value, member.name.lower()):
                return member
    raise argparse.ArgumentTypeError(f"Unknown error type: {name}")


def _load_config(args: argparse.Namespace) -> ReliabilityConfig | None:
    """Load the effective configuration, reporting failures. None on error."""
    config_path = args.config or DEFAULT_CONFIG_FILE
    try:
        return load_config(config_path=config_path)
    except (CloudRelayError, FileNotFoundError, yaml.YAMLError) as e:
        if args.json:
            print(json.dumps({"valid": False, "error": str(e), "config_path": str(config_path)}, indent=2))
        else:
            print(f"Configuration invalid: {e}", file=sys.stderr)
        return None


def cmd_config(args: argparse.Namespace) -> int:
    config_path = args.config or DEFAULT_CONFIG_FILE
    config = _load_config(args)
    if config is None:
        return 1

    output: dict[str, Any] = {}
    if args.validate or not args.show:
        output["valid"] = True
        output["config_path"] = str(config_path)
    if args.show:
        output["config"] = config.to_dict()

    if args.json:
        print(json.dumps(output, indent=2, default=str))
    else:
        if "valid" in output:
            print(f"Configuration valid: {config_path}")
        if args.show:
            print(yaml.safe_dump({"cloudrelay": output["config"]}, sort_keys=False), end="")
    return 0


def cmd_classify(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 1

    raw = ProviderError(
        message=args.message,
        provider=args.provider,
        status_code=args.status,
        error_code=args.code,
        reason=args.reason,
    )
    policy = RetryPolicy(config.retry)

    if args.refresh:
        error_type = classify_refresh_error(raw)
        output = {
            "error_type": error_type.value,
            "severity": error_type.severity.value,
            "recoverable": error_type.is_recoverable,
            "requires_user_intervention": error_type.requires_user_intervention,
            "notify_immediately": error_type.should_notify_immediately,
            "retry_schedule": policy.schedule(error_type),
            "message": error_type.notification_message,
        }
    else:
        error_type = classify(raw, provider=args.provider)
        output = {
            "error_type": error_type.value,
            "severity": error_type.severity.value,
            "recoverable": error_type.is_recoverable,
            "requires_user_intervention": error_type.requires_user_intervention,
            "recovery_strategy": select_strategy(error_type).value,
            "retry_schedule": policy.schedule(error_type),
            "message": error_type.user_message(args.provider or "cloud storage"),
        }

    _emit(output, args.json)
    return 0


def cmd_schedule(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 1

    error_type = args.error_type
    policy = RetryPolicy(config.retry)
    delays = policy.schedule(error_type)
    output = {
        "error_type": error_type.value,
        "taxonomy": "refresh" if isinstance(error_type, TokenRefreshErrorType) else "storage",
        "max_attempts": policy.max_attempts(error_type),
        "delays_seconds": delays,
        "total_wait_seconds": sum(delays),
    }
    _emit(output, args.json)
    return 0


def summarize_audit_log(lines: Iterable[str]) -> dict[str, Any]:
    """
    Summarise JSON audit log lines by event and by user.

    Lines that are not JSON objects, or carry no "event" field, are counted
    as skipped.
    """
    by_event: Counter[str] = Counter()
    by_user: Counter[str] = Counter()
    skipped = 0

    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        if not isinstance(entry, dict) or not entry.get("event"):
            skipped += 1
            continue
        by_event[entry["event"]] += 1
        if entry.get("user_id") is not None:
            by_user[str(entry["user_id"])] += 1

    return {
        "total_events": sum(by_event.values()),
        "skipped_lines": skipped,
        "by_event": dict(by_event.most_common()),
        "by_user": dict(by_user.most_common()),
    }


def cmd_audit_report(args: argparse.Namespace) -> int:
    if not args.logfile.exists():
        print(f"Log file not found: {args.logfile}", file=sys.stderr)
        return 1
    with args.logfile.open(encoding="utf-8") as f:
        report = summarize_audit_log(f)
    _emit(report, args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloudrelay",
        description="Cloud storage reliability tooling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate the packaged configuration
  python -m cloudrelay config --validate

  # Show the effective configuration for a custom file
  python -m cloudrelay config --config /etc/cloudrelay.yaml --show

  # Classify a provider failure
  python -m cloudrelay classify "User rate limit exceeded" --provider google-drive --status 403 --reason userRateLimitExceeded

  # Print the retry schedule for an error type
  python -m cloudrelay schedule network_error --json

  # Summarise a security audit log
  python -m cloudrelay audit-report logs/cloudrelay_security.log
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    # Shared by every subcommand so --json works after the subcommand name
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format instead of human-readable",
    )
    common.add_argument("--config", type=Path, help="Path to config.yaml (default: packaged file)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    config_parser = subparsers.add_parser("config", parents=[common], help="Validate or show configuration")
    config_parser.add_argument("--validate", action="store_true", help="Validate configuration")
    config_parser.add_argument("--show", action="store_true", help="Display the effective configuration")
    config_parser.set_defaults(func=cmd_config)

    classify_parser = subparsers.add_parser("classify", parents=[common], help="Classify a provider error")
    classify_parser.add_argument("message", help="Error message text")
    classify_parser.add_argument("--provider", help="Provider key (google-drive, amazon-s3, ...)")
    classify_parser.add_argument("--status", type=int, help="HTTP status code")
    classify_parser.add_argument("--code", help="Provider error code (e.g. AccessDenied)")
    classify_parser.add_argument("--reason", help="Provider error reason (e.g. storageQuotaExceeded)")
    classify_parser.add_argument(
        "--refresh",
        action="store_true",
        help="Classify as a token refresh failure",
    )
    classify_parser.set_defaults(func=cmd_classify)

    schedule_parser = subparsers.add_parser("schedule", parents=[common], help="Show the retry schedule for an error type")
    schedule_parser.add_argument("error_type", type=_parse_error_type, help="Error type value, e.g. network_error")
    schedule_parser.set_defaults(func=cmd_schedule)

    audit_parser = subparsers.add_parser("audit-report", parents=[common], help="Summarise a JSON audit log")
    audit_parser.add_argument("logfile", type=Path, help="Security log file (JSON lines)")
    audit_parser.set_defaults(func=cmd_audit_report)

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")

    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        console_level=logging.DEBUG if args.verbose else logging.WARNING,
        console_stream=sys.stderr,
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
