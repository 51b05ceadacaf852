"""
Main entry point for the RKE1 operator.

Wires the database, the reconciler registry, the controller and the HTTP
API together and runs them until a shutdown signal arrives.
"""

import asyncio
import logging
import signal
from typing import List, Optional

import aiohttp

from api import APIServer, create_app
from config import Config, get_config
from connector import Connector
from controller import Controller
from credentials import CredentialResolver
from db import DatabaseManager
from plugins.reconcilers.base import ReconcilerContext
from plugins.registry import build_registry

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application that orchestrates the controller and the API."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.db: Optional[DatabaseManager] = None
        self.session: Optional[aiohttp.ClientSession] = None
        self.controller: Optional[Controller] = None
        self.api_server: Optional[APIServer] = None
        self.running = False
        self._stopped = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing RKE1 operator")

        registry = build_registry()

        # Initialize database
        db_config = self.config.database
        self.db = DatabaseManager(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )
        await self.db.connect()
        await self.db.initialize_schema()
        logger.info("Database initialized")

        # One session for every Rancher client; calls have no overall timeout
        self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))

        connector = Connector(self.db, CredentialResolver(self.db), self.session)
        context = ReconcilerContext(
            store=self.db,
            connector=connector,
            managed_by=self.config.engine.managed_by_tag,
            kubeconfig_namespace=self.config.engine.default_kubeconfig_namespace,
        )

        self.controller = Controller(
            db_manager=self.db,
            registry=registry,
            context=context,
            config=self.config.controller,
        )

        if self.config.api.enabled:
            self.api_server = APIServer(
                create_app(self.db, registry),
                host=self.config.api.host,
                port=self.config.api.port,
                log_level=self.config.api.log_level.lower(),
            )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting RKE1 operator")

        tasks: List[asyncio.Task] = [asyncio.create_task(self.controller.start())]
        if self.api_server:
            tasks.append(asyncio.create_task(self.api_server.start()))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping RKE1 operator")
        self.running = False

        if self.controller:
            await self.controller.stop()

        if self.api_server:
            await self.api_server.stop()

        if self.session:
            await self.session.close()

        if self.db:
            await self.db.close()

        logger.info("RKE1 operator stopped")


async def main():
    """Main entry point."""
    config = get_config()
    configure_logging(config.api.log_level)
    app = Application(config)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
