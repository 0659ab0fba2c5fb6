"""
Main entry point for the Hub operator.

Connects the store, runs migrations, and starts the controller and the
status API until a shutdown signal arrives.
"""

import asyncio
import logging
import os
import signal
from typing import List, Optional

from api import StatusAPI
from config import Config, get_config
from controller import Controller
from events import EventBus
from hub.reconciler import build_reconciler
from store import ResourceStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_store(config: Config) -> ResourceStore:
    db_config = config.database
    return ResourceStore(
        host=db_config.host,
        port=db_config.port,
        database=db_config.database,
        user=db_config.user,
        password=db_config.password,
        min_pool_size=db_config.min_pool_size,
        max_pool_size=db_config.max_pool_size,
    )


class Application:
    """Main application that wires the store, controller and API."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.store: Optional[ResourceStore] = None
        self.controller: Optional[Controller] = None
        self.event_bus: Optional[EventBus] = None
        self.api: Optional[StatusAPI] = None
        self.running = False
        self._stopping = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing Hub operator")

        self.store = create_store(self.config)
        await self.store.connect()
        await self.store.initialize_schema()

        self.event_bus = EventBus()
        await self.store.listen(self.event_bus)

        self.controller = Controller(
            store=self.store,
            reconciler=build_reconciler(self.store, self.config.hub),
            config=self.config.controller,
            event_bus=self.event_bus,
        )

        if self.config.api.enabled:
            self.api = StatusAPI(
                self.store,
                self.controller,
                host=self.config.api.host,
                port=self.config.api.port,
            )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting Hub operator")

        tasks: List[asyncio.Task] = [asyncio.create_task(self.controller.start())]
        if self.api:
            tasks.append(asyncio.create_task(self.api.start()))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if self._stopping or (not self.running and self.store is None):
            return
        self._stopping = True
        logger.info("Stopping Hub operator")
        self.running = False

        if self.api:
            await self.api.stop()

        if self.controller:
            await self.controller.stop()

        store, self.store = self.store, None
        if store:
            await store.close()

        logger.info("Hub operator stopped")


async def main():
    """Main entry point."""
    app = Application()

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
    asyncio.run(main())


if __name__ == "__main__":
    run()
