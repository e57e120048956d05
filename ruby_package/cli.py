"""
cli.py - コマンドラインエントリポイント

  ruby-package package [--config serverless.yml] [--function NAME]
  ruby-package profile RUNTIME
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from typing import List, Optional

from .error_messages import PackagingError
from .logging_utils import configure_logging
from .packager import RubyPackager, load_service_definition
from .runtime_profiles import resolve


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ruby-package",
        description="Build a minimal Lambda package for a Ruby serverless service",
    )
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    parser.add_argument(
        "--log-format", choices=["json", "text"], default="text", help="Log output format"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    pkg = sub.add_parser("package", help="Build gems and print the package include rules")
    pkg.add_argument(
        "--config",
        default=".",
        help="Path to serverless.yml or the service directory (default: .)",
    )
    pkg.add_argument("--function", help="Function being packaged (used as the run id)")
    pkg.add_argument(
        "--format", choices=["json", "text"], default="text", help="Output format for the rules"
    )

    prof = sub.add_parser("profile", help="Show the on-disk layout for a runtime")
    prof.add_argument("runtime", help="Lambda runtime identifier, e.g. ruby2.7")

    return parser


def _cmd_package(args: argparse.Namespace) -> int:
    service = load_service_definition(args.config)
    RubyPackager(service).before_package(run_id=args.function)

    if args.format == "json":
        print(json.dumps(service.package.to_dict(), indent=2))
    else:
        for pattern in service.package.include:
            print(pattern)
    return 0


def _cmd_profile(args: argparse.Namespace) -> int:
    profile = resolve(args.runtime)
    data = asdict(profile)
    data["dependency_root"] = profile.dependency_root
    data["extension_root"] = profile.extension_root
    print(json.dumps(data, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level, fmt=args.log_format)

    try:
        if args.command == "package":
            return _cmd_package(args)
        return _cmd_profile(args)
    except PackagingError as e:
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1
