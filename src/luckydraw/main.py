#!/usr/bin/env python3
"""
Lucky Draw Application

Main entry point: loads configuration, builds the store, the draw operator
and the FastAPI web server, and runs them until a shutdown signal arrives.
"""

import asyncio
import signal
import sys
import traceback
from pathlib import Path

from dotenv import load_dotenv

# LOG_LEVEL and LOG_FILE from .env must be in place before the first get_logger call
load_dotenv(Path.cwd() / '.env')

from luckydraw.draw.operator import DrawOperator  # noqa: E402
from luckydraw.draw.payment import create_payment_gateway  # noqa: E402
from luckydraw.store import create_store  # noqa: E402
from luckydraw.utils.config import get_config_value, load_config  # noqa: E402
from luckydraw.utils.logger import get_logger  # noqa: E402
from luckydraw.web_server import LuckyDrawWebServer  # noqa: E402

logger = get_logger(__name__)


class LuckyDrawApp:
    """Lucky draw application.

    Responsible for initializing and orchestrating the store, the draw
    operator and the web server. Handles graceful shutdown and logs a short
    startup summary for diagnostics.
    """

    def __init__(self, config=None):
        self.config = config or load_config()
        self.store = None
        self.operator = None
        self.web_server = None
        self.running = True

        logger.info("Lucky Draw Application initialized")

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False

    def _display_config_summary(self):
        """Display key configuration options for diagnostics."""
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)

        store_config = self.config.get('store', {})
        logger.info(f"Store backend: {store_config.get('backend', 'memory')}")
        if store_config.get('backend') == 'supabase':
            logger.info(f"Supabase URL: {store_config.get('supabase_url', 'Not configured')}")

        draw_config = self.config.get('draw', {})
        logger.info(f"Cycle length: {draw_config.get('cycle_length_days', 15)} days")
        logger.info(f"Legacy cycle fallback: {draw_config.get('legacy_cycle_fallback', False)}")

        server_config = self.config.get('server', {})
        logger.info(f"Server Host: {server_config.get('host', '0.0.0.0')}")
        logger.info(f"Server Port: {server_config.get('port', 6080)}")

        logger.info("=" * 60)

    async def initialize(self):
        """Initialize store, operator, and web server instances."""
        logger.info("Initializing Lucky Draw Application")
        self._display_config_summary()

        self.store = create_store(self.config)
        self.operator = DrawOperator(self.store, self.config, create_payment_gateway(self.config))
        await self.operator.start()

        self.web_server = LuckyDrawWebServer(self.config, self.operator)
        logger.info("Application initialization completed")

    async def start(self):
        """Start services and run until a shutdown signal is received."""
        try:
            await self.initialize()

            server_host = get_config_value(self.config, 'server.host', '0.0.0.0')
            server_port = int(get_config_value(self.config, 'server.port', 6080))

            logger.info(f"Starting web server on {server_host}:{server_port}...")
            server_task = asyncio.create_task(self.web_server.start(host=server_host, port=server_port))
            # Give the server a moment to bind; a failed bind finishes the task early
            await asyncio.sleep(0.2)
            if server_task.done() and server_task.exception():
                raise server_task.exception()

            self._display_startup_summary()

            while self.running and not server_task.done():
                await asyncio.sleep(1)

            logger.info("Shutdown signal received, stopping application...")
            server_task.cancel()
        finally:
            await self.stop()

    async def stop(self):
        """Stop all services and cleanup resources."""
        logger.info("Stopping Lucky Draw Application")
        self.running = False

        if self.operator:
            await self.operator.stop()

        if self.web_server:
            try:
                await self.web_server.stop()
                logger.info("Web server stopped")
            except RuntimeError as e:
                logger.error(f"Error stopping web server: {e}")

        if self.store:
            self.store.close()
            logger.info("Store connections closed")

        logger.info("Lucky Draw Application stopped")

    def _display_startup_summary(self):
        server_config = self.config.get('server', {})
        host = server_config.get('host', '0.0.0.0')
        port = server_config.get('port', 6080)

        logger.info("=" * 60)
        logger.info("SERVER ACCESS")
        logger.info("=" * 60)
        logger.info(f"API Endpoints: http://{host}:{port}/api/")
        logger.info(f"WebSocket API: ws://{host}:{port}/ws/lottery")
        logger.info("=" * 60)


async def main():
    """Main entry point for the Lucky Draw Application"""
    app = LuckyDrawApp()

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception as e:
        logger.error(f"Application failed: {e}")
        logger.error(f"Error details: {traceback.format_exc()}")
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
