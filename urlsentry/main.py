"""
Command-line entry point for urlsentry.

Usage:
    urlsentry check https://example.com http://203.0.113.7/login
    urlsentry check --json --timeout 5 --allow example.com https://example.com
    urlsentry features https://example.com --label benign
    urlsentry --env-file /etc/urlsentry/urlsentry.env check https://example.com
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional, Sequence

from dotenv import dotenv_values

from .analyzer import ProxyMLScorer, ThreatAnalyzer
from .analyzer.models import AnalysisResult
from .config import Config, load_config, validate_config

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.getenv("LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
        ],
    )


def _load_env_file(path: str) -> None:
    """Load environment variables from a .env-style file."""
    for key, value in dotenv_values(path).items():
        if value is None:
            continue
        os.environ[key] = value


def format_result(result: AnalysisResult) -> str:
    """One human-readable block per verdict."""
    verdict = "BLOCK" if result.is_malicious else "allow"
    lines = [
        f"{verdict:5} [{result.risk_level.value.upper():8}] {result.risk_score:3}/100  {result.url}",
        f"      {result.details}",
    ]
    for signal in result.matched_signals:
        lines.append(f"      - [{signal.layer.value}] {signal.method} (+{signal.score}): {signal.details}")
    return "\n".join(lines)


async def run_check(
    config: Config,
    urls: Sequence[str],
    as_json: bool = False,
    timeout: Optional[float] = None,
    allow: Sequence[str] = (),
) -> int:
    analyzer = ThreatAnalyzer(config)
    for domain in allow:
        analyzer.add_to_whitelist(domain)

    results = await analyzer.analyze_many(urls, timeout=timeout)

    if as_json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for result in results:
            print(format_result(result))
    return 0


def run_features(config: Config, url: str, label: str) -> int:
    scorer = ProxyMLScorer(config)
    print(scorer.export_features(url, label == "malicious"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="urlsentry",
        description="Multi-layer URL risk analysis (threat intelligence, heuristics, ML proxy).",
    )
    parser.add_argument("--env-file", help="Load environment variables from a file before running.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Analyze one or more URLs.")
    check.add_argument("urls", nargs="+", metavar="URL")
    check.add_argument("--json", action="store_true", dest="as_json", help="Print verdicts as JSON.")
    check.add_argument("--timeout", type=float, default=None, help="Per-URL deadline in seconds.")
    check.add_argument(
        "--allow",
        action="append",
        default=[],
        metavar="DOMAIN",
        help="Whitelist a domain for this run (repeatable).",
    )

    features = sub.add_parser("features", help="Print the ML feature vector of a URL as JSON.")
    features.add_argument("url", metavar="URL")
    features.add_argument("--label", choices=("malicious", "benign"), default="benign")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    if args.env_file:
        _load_env_file(args.env_file)

    config = load_config()
    validation_errors = validate_config(config)
    if validation_errors:
        for err in validation_errors:
            logger.error(err)
        return 1

    if args.command == "check":
        return asyncio.run(
            run_check(config, args.urls, as_json=args.as_json, timeout=args.timeout, allow=args.allow)
        )
    return run_features(config, args.url, args.label)


if __name__ == "__main__":
    sys.exit(main())
