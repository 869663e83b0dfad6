"""Command-line interface for telemetry-dash"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from telemetry_dash import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="telemetry-dash",
        description="Serve live values and history from push, REST and weather-station sources",
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        help="Path to config file (default: auto-detect)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Fetch every source once, print the states as JSON and exit",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--no-web",
        action="store_true",
        help="Disable the JSON API (sources are still fetched)",
    )
    parser.add_argument(
        "--web-port",
        type=int,
        default=None,
        help="Port for web server (default: web.port from config)",
    )
    parser.add_argument(
        "--web-host",
        type=str,
        default=None,
        help="Host for web server (default: web.host from config)",
    )
    return parser


async def fetch_once(context) -> dict:
    """Fetch every usable source once and return the states."""
    for source_id in context.registry.get_metadata():
        if not context.scheduler.is_terminal(source_id):
            context.scheduler.trigger(source_id)
    await context.scheduler.wait_idle()
    states = await context.store.get_all()
    return {source_id: state.to_output() for source_id, state in sorted(states.items())}


async def async_main(argv: Optional[list[str]] = None) -> int:
    """Async main entry point"""
    args = build_parser().parse_args(argv)

    from pathlib import Path

    from telemetry_dash.config import find_config_file, load_config
    from telemetry_dash.context import AppContext
    from telemetry_dash.logs import setup_logging

    config_path = Path(args.config) if args.config else find_config_file()
    config = load_config(str(config_path) if config_path else None)

    setup_logging(config.logging, verbose=args.verbose)

    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info(f"Starting telemetry-dash {__version__}")
    logger.info("=" * 50)

    context = AppContext.from_config(config, config_path=config_path)
    await context.start()

    shutdown_event = asyncio.Event()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        if args.once:
            states = await fetch_once(context)
            print(json.dumps(states, indent=2, default=str))
            return 0

        if args.no_web or not config.web.enabled:
            logger.info("Web server disabled, fetching until shutdown")
            await shutdown_event.wait()
            return 0

        import uvicorn

        from telemetry_dash.web.app import create_app

        host = args.web_host or config.web.host
        port = args.web_port or config.web.port
        logger.info(f"Starting web server on {host}:{port}")
        app = create_app(context)

        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=host,
                port=port,
                log_level=log_level.lower(),
                log_config=None,  # Prevent uvicorn from reconfiguring logging
            )
        )
        web_server_task = asyncio.create_task(server.serve())
        try:
            await web_server_task
        except asyncio.CancelledError:
            logger.info("Web server cancelled")
        return 0

    except asyncio.CancelledError:
        logger.info("Main task cancelled")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1
    finally:
        logger.info("Shutting down...")
        await context.shutdown()
        logger.info("Cleanup complete")


def main() -> int:
    """Main entry point - wraps async_main()"""
    return asyncio.run(async_main())


if __name__ == "__main__":
    sys.exit(main())
