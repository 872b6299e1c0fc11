import argparse
import asyncio
import logging
import os
import signal
from urllib.parse import urlparse

from .coordinator import Coordinator
from .directory import start_directory
from .server import ChatServer, main_loop


LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _log_level(value: str) -> str:
    level = value.strip().upper()
    if level not in LOG_LEVELS:
        raise argparse.ArgumentTypeError(
            f"invalid level {value!r} (choose from {', '.join(LOG_LEVELS)})"
        )
    return level


def _parse_bind(bind_uri: str, default_port: int) -> tuple[str, int]:
    # Accept ws://host:port, host:port, :port or a bare port
    if bind_uri.startswith(("ws://", "wss://", "http://")):
        p = urlparse(bind_uri)
        return p.hostname or "127.0.0.1", int(p.port or default_port)
    if ":" in bind_uri:
        host, port = bind_uri.split(":", 1)
        return host or "0.0.0.0", int(port)
    return "0.0.0.0", int(bind_uri)


async def _run(args: argparse.Namespace) -> None:
    coordinator = Coordinator(
        history_limit=args.history_limit,
        max_retained=args.max_retained,
    )
    host, port = _parse_bind(args.bind, 3001)
    server = ChatServer(coordinator, host, port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows may not support SIGTERM
            pass

    httpd = None
    if args.http and args.http.lower() != "off":
        http_host, http_port = _parse_bind(args.http, 3002)
        httpd = start_directory(http_host, http_port, coordinator, loop)

    try:
        await main_loop(server, stop)
    finally:
        if httpd:
            httpd.shutdown()
        logging.info("Server shutdown complete")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="privchat direct messaging server")
    parser.add_argument(
        "--bind",
        default=os.getenv("BIND", "ws://127.0.0.1:3001"),
        help="WebSocket bind address ws://host:port",
    )
    parser.add_argument(
        "--http",
        default=os.getenv("HTTP_BIND", "127.0.0.1:3002"),
        help="Bind address for the registration HTTP endpoint. Use host:port or 'off' to disable.",
    )
    parser.add_argument(
        "--history-limit",
        type=int,
        default=int(os.getenv("HISTORY_LIMIT", "50")),
        help="Messages returned per chat-history request",
    )
    parser.add_argument(
        "--max-retained",
        type=int,
        default=int(os.getenv("MAX_RETAINED", "0")),
        help="Messages kept per conversation (0 keeps everything)",
    )
    parser.add_argument(
        "--log-level",
        type=_log_level,
        default=os.getenv("LOG_LEVEL", "INFO"),
        help=f"Logging level, one of {', '.join(LOG_LEVELS)}",
    )
    return parser


def main():
    args = build_parser().parse_args()
    logging.basicConfig(
        level=args.log_level, format="%(asctime)s %(levelname)s %(message)s"
    )
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        logging.info("Shutting down")


if __name__ == "__main__":
    main()
