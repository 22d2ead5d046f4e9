"""Run the HTTP API with uvicorn.

Usage:
    python -m hibiscus.cli.serve [--reload]
"""

import sys
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence

import uvicorn

from hibiscus.core.config import Settings


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    parser = ArgumentParser(description="Serve the Hibiscus API")
    parser.add_argument("--host", help="Bind address (default: HOST setting)")
    parser.add_argument("--port", type=int, help="Port (default: PORT setting)")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    settings = Settings()  # type: ignore[call-arg]

    uvicorn.run(
        "hibiscus.app:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
