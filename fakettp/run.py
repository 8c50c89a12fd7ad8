"""Command-line entry point for fakettp.

Parses the flags, assembles the Config (fatal on a bad rule file), and starts
uvicorn on 0.0.0.0:<port>.

Usage:
    fakettp -config fakes.json
    fakettp -proxy_host api.local -proxy_port 8080 -hyjack /api/users -code 500
    fakettp -hyjack '/users/[0-9]+' -pattern_match -method GET -body '{}' \\
            -header 'Content-Type: application/json' -time 250ms
    python -m fakettp.run ...

Every flag accepts one or two leading dashes (``-port`` or ``--port``).
``-header`` and ``-method`` may be repeated.
"""

from __future__ import annotations

import argparse
import os
from datetime import timedelta
from typing import Optional, Sequence

import uvicorn

from fakettp.config import Overrides, load_config
from fakettp.constants import LISTEN_HOST
from fakettp.main import create_app
from fakettp.utils.durations import DurationParseError, parse_duration
from fakettp.utils.logger import LOG_LEVELS, configure_logging, get_logger

logger = get_logger(__name__)


def _duration_arg(text: str) -> timedelta:
    try:
        return parse_duration(text)
    except DurationParseError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fakettp",
        description="Fake selected HTTP routes and reverse proxy everything else.",
    )

    def add(name: str, **kwargs) -> None:
        parser.add_argument(f"-{name}", f"--{name}", dest=name, **kwargs)

    add("config", default="", metavar="PATH",
        help="json formatted rule file; parameters below are merged on top")
    add("watch", action="store_true",
        help="reload the -config file when it changes")

    add("port", type=int, default=0, help="set the port on which to listen (default 5000)")
    add("code", type=int, default=0, help="set the http status code with which to respond")
    add("time", type=_duration_arg, default=timedelta(0),
        help="set the response time, ex: 250ms or 1m5s")
    add("body", default="", help="set the response body")
    add("request_body_substr", default="",
        help="only hyjack requests whose body contains this substring")
    add("header", action="append", default=[],
        help="response header, ex: 'Content-Type: application/json'. Repeatable.")
    add("pattern_match", action="store_true",
        help="treat -hyjack as an RE2 regular expression")
    add("request_uri", action="store_true",
        help="match -hyjack against the raw request target (path and query)")
    add("method", action="append", default=[],
        help="limit hyjacking to this http verb. Repeatable.")

    add("hyjack", default="", help="the route to hyjack")
    add("proxy_host", default="", help="the host to reverse proxy to (may include scheme://)")
    add("proxy_port", type=int, default=0, help="the proxy port (default: -port)")
    add("proxy_delay", type=_duration_arg, default=timedelta(0),
        help="delay before proxying un-hyjacked requests, ex: 250ms or 1m5s")

    add("log_level", type=str.upper, default=os.getenv("LOG_LEVEL", "INFO").upper(),
        choices=LOG_LEVELS)
    add("json_logs", action="store_true",
        default=os.getenv("JSON_LOGS", "false").lower() == "true",
        help="emit JSON log lines instead of console output")
    return parser


def overrides_from_args(args: argparse.Namespace) -> Overrides:
    return Overrides(
        port=args.port,
        code=args.code,
        time=args.time,
        body=args.body,
        headers=tuple(args.header),
        methods=tuple(args.method),
        request_body=args.request_body_substr,
        hyjack=args.hyjack,
        pattern_match=args.pattern_match,
        request_uri=args.request_uri,
        proxy_host=args.proxy_host,
        proxy_port=args.proxy_port,
        proxy_delay=args.proxy_delay,
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Start fakettp.

    Raises:
        SystemExit: bad flags, or a rule file that fails to load.
    """
    args = build_parser().parse_args(argv)
    configure_logging(log_level=args.log_level, json_output=args.json_logs)

    overrides = overrides_from_args(args)
    config = load_config(args.config or None, overrides)

    watch_path = args.config if args.watch and args.config else None
    if args.watch and not args.config:
        logger.warning("-watch ignored: no -config file given")

    application = create_app(config=config, watch_path=watch_path, overrides=overrides)

    logger.info("starting on port", port=config.port)
    uvicorn.run(
        application,
        host=LISTEN_HOST,
        port=config.port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
