#!/usr/bin/env python3
"""
Infra Vault CLI.

Usage:
    infra-vault serve                           # Start the MCP server
    infra-vault scan FILE                       # List placeholders in a file
    infra-vault check FILE --owner ID           # Report placeholders without a secret
    infra-vault render FILE --owner ID          # Print FILE with secrets injected
    infra-vault generate-secret [--length N]    # Print a random secret
    infra-vault templates load FILE --owner ID  # Save templates from a YAML file
    infra-vault templates apply NAME --owner ID # Store a template's values
"""

import argparse
import json
import os
import sys
from pathlib import Path

from loguru import logger

from .config import VaultSettings
from .crypto import generate_random_secret
from .errors import IntegrityError, VaultError
from .injection import find_potential_secrets, scan
from .log import configure_logging
from .server import VaultTools, create_server


def _read(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text()


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def _tools(args: argparse.Namespace) -> VaultTools:
    settings = VaultSettings.from_env(env_file=args.env_file)
    configure_logging(settings.log_level)
    return VaultTools.from_settings(settings)


def cmd_serve(args: argparse.Namespace) -> int:
    settings = VaultSettings.from_env(env_file=args.env_file)
    configure_logging(settings.log_level)
    mcp = create_server(settings)
    port = args.port or int(os.environ.get("PORT", 8080))
    logger.info(f"Starting Infra Vault MCP server on {args.host}:{port}")
    mcp.run(transport="streamable-http", host=args.host, port=port)
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    content = _read(args.file)
    _print_json(
        {
            "placeholders": scan(content),
            "potential_secrets": [
                {"key": p.key, "line": p.line} for p in find_potential_secrets(content)
            ],
        }
    )
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    tools = _tools(args)
    missing = tools.vault.missing_placeholders(args.owner, _read(args.file))
    _print_json({"valid": not missing, "missing": missing})
    return 0 if not missing else 1


def cmd_render(args: argparse.Namespace) -> int:
    tools = _tools(args)
    report = tools.vault.render(args.owner, _read(args.file))
    if report.missing and not args.allow_missing:
        logger.error(f"Missing secrets: {', '.join(report.missing)}")
        return 1
    sys.stdout.write(report.rendered_text)
    return 0


def cmd_generate_secret(args: argparse.Namespace) -> int:
    print(generate_random_secret(args.length))
    return 0


def cmd_templates_load(args: argparse.Namespace) -> int:
    tools = _tools(args)
    saved = tools.templates.import_file(args.owner, args.file)
    _print_json({"saved": [t.name for t in saved]})
    return 0


def cmd_templates_apply(args: argparse.Namespace) -> int:
    tools = _tools(args)
    result = tools.templates.apply(args.name, args.owner)
    _print_json({"name": result.template_name, "applied_keys": result.applied_keys})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="infra-vault",
        description="Encrypted secrets vault with placeholder injection",
    )
    parser.add_argument(
        "--env-file",
        default=".env.local",
        help="dotenv file loaded before reading settings (default: .env.local)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Start the MCP server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=None, help="Defaults to $PORT or 8080")
    serve.set_defaults(func=cmd_serve)

    scan_parser = subparsers.add_parser("scan", help="List placeholders in a file")
    scan_parser.add_argument("file", help="File to scan, or - for stdin")
    scan_parser.set_defaults(func=cmd_scan)

    check = subparsers.add_parser("check", help="Report placeholders with no stored secret")
    check.add_argument("file")
    check.add_argument("--owner", required=True)
    check.set_defaults(func=cmd_check)

    render = subparsers.add_parser("render", help="Print a file with secrets injected")
    render.add_argument("file")
    render.add_argument("--owner", required=True)
    render.add_argument(
        "--allow-missing",
        action="store_true",
        help="Print even if some placeholders cannot be resolved",
    )
    render.set_defaults(func=cmd_render)

    generate = subparsers.add_parser("generate-secret", help="Print a random secret")
    generate.add_argument("--length", type=int, default=32, help="Random bytes (default: 32)")
    generate.set_defaults(func=cmd_generate_secret)

    templates = subparsers.add_parser("templates", help="Manage secret templates")
    template_commands = templates.add_subparsers(dest="template_command", required=True)

    load = template_commands.add_parser("load", help="Save templates from a YAML file")
    load.add_argument("file")
    load.add_argument("--owner", required=True)
    load.set_defaults(func=cmd_templates_load)

    apply = template_commands.add_parser("apply", help="Store a template's values")
    apply.add_argument("name")
    apply.add_argument("--owner", required=True)
    apply.set_defaults(func=cmd_templates_apply)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except IntegrityError as exc:
        logger.error(f"Integrity failure, contact an administrator: {exc}")
        return 3
    except VaultError as exc:
        logger.error(str(exc))
        return 2


if __name__ == "__main__":
    sys.exit(main())
