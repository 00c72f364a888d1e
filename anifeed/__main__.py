"""Run the AniFeed API with ``python -m anifeed``."""

from __future__ import annotations

import argparse

import uvicorn

from app.config import settings


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="anifeed", description=settings.app_name)
    parser.add_argument("--host", default=settings.server_host)
    parser.add_argument("--port", type=int, default=settings.server_port)
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=settings.environment == "development",
        help="restart on code changes (defaults to on in development)",
    )
    args = parser.parse_args(argv)

    uvicorn.run("app.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
