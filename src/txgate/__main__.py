from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

import uvicorn

from txgate.app import create_app
from txgate.config import Config
from txgate.exception import TxgateError
from txgate.gateway import Gateway

logger = logging.getLogger("txgate")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="txgate",
        description=(
            "Run SQL over HTTP with writes held in transactions that need "
            "an explicit commit or rollback"
        ),
    )
    parser.add_argument("database_url", help="Database URL to connect to")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = Config.from_env(args.database_url)
    except TxgateError as e:
        print(f"txgate: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    server: Optional[uvicorn.Server] = None

    def request_exit() -> None:
        if server is not None:
            server.should_exit = True

    try:
        gateway = Gateway(config, on_fault=request_exit)
    except TxgateError as e:
        logger.error("Fatal error: %s", e)
        return 1

    server = uvicorn.Server(
        uvicorn.Config(
            create_app(gateway),
            host=args.host,
            port=args.port,
            lifespan="on",
            log_level=config.log_level.lower(),
        )
    )
    server.run()

    if gateway.fault is not None or not server.started:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
