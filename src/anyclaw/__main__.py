"""Command-line entry point for the AnyClaw bridge."""

import argparse
import logging
import os
import sys

from anyclaw.util.config import BridgeSettings

DEFAULT_PORT = 3000


def configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_server(host: str, port: int, settings: BridgeSettings) -> None:
    """Run the bridge API server.

    Args:
        host: Host to bind to
        port: Port to run on
        settings: Bridge settings for the app-server subprocess
    """
    import uvicorn
    from anyclaw.server.main import create_app

    app = create_app(settings=settings)
    print(f"Starting AnyClaw bridge on {host}:{port} (codex: {settings.codex_bin})")
    uvicorn.run(app, host=host, port=port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AnyClaw: web bridge for codex app-server")
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT, help=f"Port to listen on (default: {DEFAULT_PORT})"
    )
    parser.add_argument(
        "--host", type=str, default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--codex-bin",
        type=str,
        default=None,
        help="codex executable (default: $ANYCLAW_CODEX_BIN, $PREFIX/bin/codex, or codex)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get("ANYCLAW_LOG_LEVEL", "INFO"),
        help="Logging level (default: $ANYCLAW_LOG_LEVEL or INFO)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the AnyClaw bridge."""
    args = build_parser().parse_args(argv)

    try:
        configure_logging(args.log_level)
        settings = BridgeSettings.resolve(codex_bin=args.codex_bin)
        run_server(host=args.host, port=args.port, settings=settings)
        return 0
    except ValueError as e:
        print(f"\nError: {e}")
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
