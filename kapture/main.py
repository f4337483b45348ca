"""Command line entry point: ``python -m kapture serve|replay``."""

from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

import uvicorn

from .config import SERVER_HOST, SERVER_PORT
from .tools.replay import main as replay_main


def _setup_logging(level: int = logging.INFO) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=level,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kapture", description="Kapture run tracker")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the live broadcast and run store server")
    serve.add_argument("--host", default=SERVER_HOST)
    serve.add_argument("--port", type=int, default=SERVER_PORT)

    sub.add_parser(
        "replay",
        help="Replay a CSV of GPS fixes (see 'kapture replay --help')",
        add_help=False,
    )
    return parser


def serve(host: str = SERVER_HOST, port: int = SERVER_PORT) -> int:
    logging.info("Kapture server listening on %s:%d", host, port)
    uvicorn.run("kapture.server:create_app", factory=True, host=host, port=port)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args, rest = parser.parse_known_args(argv)
    _setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.command == "replay":
        return replay_main(rest)
    if rest:
        parser.error(f"unrecognized arguments: {' '.join(rest)}")
    return serve(args.host, args.port)
