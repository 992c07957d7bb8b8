"""
Block Importer coordinator – main entry point.

Usage
-----
# HTTP server mode (default – the sidebar talks to POST /messages, GET /events)
python main.py

# CLI mode (send one protocol message and print the response)
python main.py --cli --message '{"type": "ANALYZE_PAGE", "url": "https://example.com"}'

The browser is reached over CDP; start it with remote debugging enabled:
    google-chrome --remote-debugging-port=9222
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

load_dotenv(override=True)

from config.settings import settings  # noqa: E402 – must be after load_dotenv


def _configure_logging() -> None:
    logger.remove()
    # colorize=False: avoid ANSI escape codes that corrupt non-TTY output.
    logger.add(
        sys.stdout,
        level=settings.log_level,
        colorize=False,
        format="{time:HH:mm:ss} | {level: <8} | {message}",
    )
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention="7 days")


async def _run_cli(raw_message: str, connect_browser: bool) -> int:
    """Handle one message, wait for any background workflow, print the response."""
    from playwright.async_api import Error as PlaywrightError

    from bridge.page_agent import PageAgentBridge
    from coordinator.coordinator import Coordinator

    try:
        message = json.loads(raw_message)
    except json.JSONDecodeError as exc:
        logger.error(f"--message is not valid JSON: {exc}")
        return 2

    bridge = None
    if connect_browser:
        bridge = PageAgentBridge()
        try:
            await bridge.connect()
        except PlaywrightError as exc:
            logger.warning(f"Browser not reachable at {settings.cdp_endpoint}: {exc}")
            await bridge.close()
            bridge = None

    coordinator = Coordinator(bridge=bridge)
    try:
        result = await coordinator.handle(message)
        await coordinator.drain()
    finally:
        await coordinator.close()
        if bridge is not None:
            await bridge.close()

    print(json.dumps(result, indent=2))
    return 0 if result.get("success", "error" not in result) else 1


async def _run_server(host: str, port: int, connect_browser: bool) -> None:
    import uvicorn

    from server import create_app

    logger.info(f"Starting coordinator on http://{host}:{port}")
    config = uvicorn.Config(
        create_app(connect_browser=connect_browser),
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
        loop="asyncio",
    )
    await uvicorn.Server(config).serve()


def main() -> None:
    _configure_logging()

    parser = argparse.ArgumentParser(description="Block Importer coordinator")
    parser.add_argument(
        "--cli",
        action="store_true",
        help="Handle a single message instead of starting the HTTP server.",
    )
    parser.add_argument(
        "--message",
        type=str,
        default='{"type": "GET_STATE"}',
        help="Protocol message (JSON) to send in CLI mode.",
    )
    parser.add_argument("--host", type=str, default=settings.server_host)
    parser.add_argument("--port", type=int, default=settings.server_port)
    parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Do not connect to a browser; page-dependent messages will fail.",
    )
    args = parser.parse_args()

    if args.cli:
        sys.exit(asyncio.run(_run_cli(args.message, connect_browser=not args.no_browser)))
    else:
        asyncio.run(_run_server(args.host, args.port, connect_browser=not args.no_browser))


if __name__ == "__main__":
    main()
