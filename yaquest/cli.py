"""CLI entry point for yaquest.

Sends one request and prints the response:

    yaquest GET https://api.example.com/items -q tag=a -q tag=b
    yaquest POST /items --config client.yaml --profile staging -d '{"name": "x"}'
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from yaquest.config_loader import DEFAULT_PROFILE, ConfigError, get_profile, load_client_config
from yaquest.errors import YaquestError
from yaquest.models import Method, Response
from yaquest.outcome import Reflection
from yaquest.request import Endpoint, Request, request


def non_negative_int(value: str) -> int:
    """Parse and validate a non-negative integer value.

    Raises:
        argparse.ArgumentTypeError: If value is not a non-negative integer.
    """
    try:
        result = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer '{value}'.")
    if result < 0:
        raise argparse.ArgumentTypeError(f"Value must be non-negative, got {result}.")
    return result


def parse_header(value: str) -> tuple[str, str]:
    """Parse 'Name: value' format."""
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(
            f"Invalid header '{value}'. Expected 'Name: value' (e.g., 'X-Api-Key: abc')"
        )
    return name.strip(), header_value.strip()


def parse_query(value: str) -> tuple[str, str]:
    """Parse name=value format. The value may be empty."""
    name, sep, query_value = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(
            f"Invalid query parameter '{value}'. Expected name=value"
        )
    return name, query_value


def parse_user(value: str) -> tuple[str, str]:
    """Parse user:password format. The password may contain ':'."""
    username, sep, password = value.partition(":")
    if not sep or not username:
        raise argparse.ArgumentTypeError(
            f"Invalid credentials '{value}'. Expected user:password"
        )
    return username, password


def parse_json_data(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"Invalid JSON body: {e}")


@dataclass
class CliArgs:
    """Parsed command-line arguments."""

    method: Method
    url: str
    headers: list[tuple[str, str]] = field(default_factory=list)
    query: list[tuple[str, str]] = field(default_factory=list)
    data: Any = None
    data_file: Path | None = None
    binary: bool = False
    timeout: int | None = None
    user: tuple[str, str] | None = None
    config: Path | None = None
    profile: str = DEFAULT_PROFILE
    verbose: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="yaquest",
        description="Send one HTTP request and print the response.",
    )
    parser.add_argument(
        "method",
        type=str.upper,
        choices=[m.value for m in Method],
        help="HTTP method",
    )
    parser.add_argument(
        "url",
        help="Absolute URL, or a path relative to the profile base URL when --config is given",
    )
    parser.add_argument(
        "-H", "--header",
        type=parse_header,
        action="append",
        default=[],
        metavar="'NAME: VALUE'",
        help="Request header (repeatable)",
    )
    parser.add_argument(
        "-q", "--query",
        type=parse_query,
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Query parameter (repeatable, order is kept)",
    )
    body_group = parser.add_mutually_exclusive_group()
    body_group.add_argument(
        "-d", "--data",
        type=parse_json_data,
        default=None,
        metavar="JSON",
        help="JSON request body",
    )
    body_group.add_argument(
        "--data-file",
        type=Path,
        default=None,
        metavar="PATH",
        help="File sent verbatim as application/octet-stream",
    )
    parser.add_argument(
        "--binary",
        action="store_true",
        help="Do not JSON-decode the response body",
    )
    parser.add_argument(
        "--timeout",
        type=non_negative_int,
        default=None,
        metavar="MS",
        help="Timeout in milliseconds, 0 disables it (default: 30000 or the profile value)",
    )
    parser.add_argument(
        "-u", "--user",
        type=parse_user,
        default=None,
        metavar="USER:PASSWORD",
        help="Basic auth credentials",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Client config YAML file",
    )
    parser.add_argument(
        "--profile",
        default=DEFAULT_PROFILE,
        help=f"Profile name in the config file (default: {DEFAULT_PROFILE})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging",
    )
    return parser


def parse_args(args: list[str] | None = None) -> CliArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    namespace = build_parser().parse_args(args)
    return CliArgs(
        method=Method(namespace.method),
        url=namespace.url,
        headers=namespace.header,
        query=namespace.query,
        data=namespace.data,
        data_file=namespace.data_file,
        binary=namespace.binary,
        timeout=namespace.timeout,
        user=namespace.user,
        config=namespace.config,
        profile=namespace.profile,
        verbose=namespace.verbose,
    )


def _is_absolute(url: str) -> bool:
    try:
        return httpx.URL(url).is_absolute_url
    except httpx.InvalidURL:
        # Left to the URL parser to report
        return False


def build_request(args: CliArgs) -> Request:
    """Build the request described by the arguments.

    Raises:
        ConfigError: If the config file or profile cannot be loaded, or an
            absolute URL is given together with --config.
        YaquestError: If the URL, body or TLS settings are invalid.
        OSError: If --data-file cannot be read.
    """
    if args.config is not None:
        profile = get_profile(load_client_config(args.config), args.profile)
        if _is_absolute(args.url):
            raise ConfigError(
                f"URL '{args.url}' must be a path relative to the profile base URL "
                f"when --config is given"
            )
        req = Endpoint.from_profile(profile).request(args.method, args.url)
    else:
        req = request(args.method, args.url)

    for name, value in args.headers:
        req.set(name, value)
    for name, value in args.query:
        req.query(name, value)
    if args.data_file is not None:
        req.send(args.data_file.read_bytes())
    elif args.data is not None:
        req.send(args.data)
    if args.binary:
        req.binary()
    if args.timeout is not None:
        req.timeout(args.timeout)
    if args.user is not None:
        req.auth(*args.user)
    return req


def _write_body(response: Response) -> None:
    body = response.body
    if isinstance(body, bytes):
        if not body:
            return
        buffer = getattr(sys.stdout, "buffer", None)
        if response.is_binary and buffer is not None:
            sys.stdout.flush()
            buffer.write(body)
            buffer.flush()
        else:
            print(body.decode("utf-8", errors="replace"))
    else:
        print(json.dumps(body, indent=2, ensure_ascii=False))


async def _run(req: Request) -> Reflection:
    return await req.reflect()


def dispatch(args: CliArgs) -> int:
    """Send the request and print the outcome. Returns the exit code."""
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        req = build_request(args)
        reflection = asyncio.run(_run(req))
    except (ConfigError, YaquestError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if reflection.is_fulfilled:
        response = reflection.value
        print(f"{response.status} {response.reason}")
        _write_body(response)
        return 0

    error = reflection.error
    print(f"Error: {error}", file=sys.stderr)
    if isinstance(error, YaquestError) and error.response is not None:
        print(f"{error.response.status} {error.response.reason}")
        _write_body(error.response)
    return 1


def main() -> int:
    """Main entry point."""
    try:
        return dispatch(parse_args())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
