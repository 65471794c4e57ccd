"""
LinkBridge CLI - command-line entry point for the bridge server.

Entry point:
    linkbridge   - serve shared clock state to local WebSocket clients
"""

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

# Fix Windows console encoding for unicode characters
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")


def validate_port(value: str) -> int:
    """Validate port number is in valid range."""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value}")

    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"Port must be between 1 and 65535, got: {port}")
    return port


def validate_hostname(value: str) -> str:
    """Validate hostname or IP address."""
    if not value or len(value) > 253:
        raise argparse.ArgumentTypeError(f"Invalid hostname: {value}")
    valid_chars = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789.-:[]")
    if not all(c in valid_chars for c in value):
        raise argparse.ArgumentTypeError(f"Invalid characters in hostname: {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    from link_bridge.config import BridgeConfig

    defaults = BridgeConfig.from_env()
    parser = argparse.ArgumentParser(
        prog="linkbridge",
        description="LinkBridge - share tempo and beat position with local WebSocket clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  linkbridge                    # Serve on ws://<lan-ip>:20809
  linkbridge --port 9100        # Custom port
  linkbridge --link             # Follow an Ableton Link session
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON config file (command-line options override it)",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=validate_port,
        default=None,
        help=f"WebSocket port (default: {defaults.port} or $LINKBRIDGE_PORT)",
    )
    parser.add_argument(
        "--host",
        type=validate_hostname,
        default=None,
        help=f"Interface to bind (default: {defaults.host} or $LINKBRIDGE_HOST)",
    )
    parser.add_argument(
        "--link",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Follow an Ableton Link session (requires aalink; default: $LINKBRIDGE_LINK)",
    )
    parser.add_argument(
        "--metrics-port",
        type=validate_port,
        default=None,
        help="Port for /health and /metrics HTTP endpoint (default: off or $LINKBRIDGE_METRICS_PORT)",
    )
    parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="Disable metrics HTTP endpoint",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LINKBRIDGE_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO or $LINKBRIDGE_LOG_LEVEL)",
    )
    parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Emit JSON log lines (default: only when LINKBRIDGE_ENV is production)",
    )
    return parser


def resolve_config(args: argparse.Namespace):
    """Merge config file, environment and command-line options."""
    from link_bridge.config import BridgeConfig

    config = BridgeConfig.load(args.config) if args.config else BridgeConfig.from_env()
    if args.port is not None:
        config.port = args.port
    if args.host is not None:
        config.host = args.host
    if args.link is not None:
        config.enable_link = args.link
    if args.metrics_port is not None:
        config.metrics_port = args.metrics_port
    if args.no_metrics:
        config.metrics_port = None
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    from link_bridge.errors import BindError
    from link_bridge.logging_config import configure_logging
    from link_bridge.server import LinkBridgeServer

    configure_logging(args.log_level, json_output=args.json_logs)
    server = LinkBridgeServer(resolve_config(args))

    async def _run():
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, server.stop)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, lambda signum, frame: server.stop())
        await server.run()

    try:
        asyncio.run(_run())
    except BindError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        pass

    return 0


if __name__ == "__main__":
    sys.exit(main())
