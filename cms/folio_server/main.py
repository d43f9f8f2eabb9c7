"""
Folio Server - Main entry point.

This module wires every Folio component around one storage engine:
- Storage engine (in-memory or SQLite)
- Record type services (components, layouts)
- Page publishing and public uri pointers
- Scheduler loop (due schedule entries -> publish)
- Hook dispatch and outbound webhooks

HTTP routing is not part of Folio; embedding applications call the
services on a started Server.

Usage:
    python -m cms.folio_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The storage engine is chosen before start() and never swapped while running
    - The hook registry is frozen before the first request is served
    - All services share one storage engine and one hook dispatcher

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Iterable

import httpx
import json_log_formatter

from .compose.addressing import COMPONENTS, LAYOUTS, PAGES
from .config import ServerConfig
from .notify import HookDispatcher, WebhookNotifier
from .publish import PageService, Site, SiteRegistry, UriService
from .records import ComponentService, HookRegistry, LayoutService
from .schedule import Scheduler
from .storage import StorageEngine, create_storage_engine, validate_storage

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class Server:
    """Folio Server orchestrator.

    Manages the lifecycle of all server components:
    - Storage engine
    - Record, page and uri services
    - Background scheduler

    Attributes:
        config: Server configuration
        hooks: Record type hook registry (frozen on initialize)
        sites: Configured sites
        storage: Storage engine
        components: Component service
        layouts: Layout service
        pages: Page service and publish orchestrator
        uris: Public uri pointer service
        scheduler: Scheduled publishing loop

    Example:
        >>> server = Server(config, hooks=registry, sites=[Site("www", "example.com")])
        >>> await server.initialize()
        >>> await server.pages.publish("example.com/_pages/home")
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        hooks: HookRegistry | None = None,
        sites: Iterable[Site] | None = None,
        webhook_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            hooks: Record type hooks; an empty registry when omitted
            sites: Sites; parsed from config.sites when omitted
            webhook_transport: httpx transport for webhooks (tests)
        """
        self.config = config or ServerConfig.from_env()
        self.hooks = hooks or HookRegistry()
        self.sites = SiteRegistry(
            sites if sites is not None else (Site.from_spec(spec) for spec in self.config.sites)
        )
        self._webhook_transport = webhook_transport
        self._running = False
        self._initialized = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in initialize())
        self.storage: StorageEngine | None = None
        self.dispatcher: HookDispatcher | None = None
        self.notifier: WebhookNotifier | None = None
        self.components: ComponentService | None = None
        self.layouts: LayoutService | None = None
        self.pages: PageService | None = None
        self.uris: UriService | None = None
        self.scheduler: Scheduler | None = None

    @property
    def running(self) -> bool:
        return self._running

    def use_storage(self, engine: StorageEngine) -> None:
        """Plug in a storage engine before the server is initialized.

        Raises:
            RuntimeError: If the server is already initialized or running
            StorageConfigurationError: If engine lacks part of the storage surface
        """
        if self._running or self._initialized:
            raise RuntimeError("Cannot swap the storage engine while the server is in use")
        self.storage = validate_storage(engine)
        logger.info("Storage engine set", extra={"engine": type(engine).__name__})

    async def initialize(self) -> Server:
        """Build every service. Safe to call more than once."""
        if self._initialized:
            return self

        if self.storage is None:
            self.storage = validate_storage(create_storage_engine(self.config.storage))

        if not self.hooks.frozen:
            self.hooks.freeze()

        self.dispatcher = HookDispatcher()
        self.notifier = WebhookNotifier(
            timeout_seconds=self.config.notifications.webhook_timeout_seconds,
            transport=self._webhook_transport,
        )

        shared = dict(
            storage=self.storage,
            hooks=self.hooks,
            dispatcher=self.dispatcher,
            timeouts=self.config.timeouts,
            detect_cycles=self.config.compose.detect_cycles,
        )
        self.components = ComponentService(**shared)
        self.layouts = LayoutService(**shared)
        self.pages = PageService(
            storage=self.storage,
            components=self.components,
            layouts=self.layouts,
            sites=self.sites,
            dispatcher=self.dispatcher,
            notifier=self.notifier,
            timeouts=self.config.timeouts,
        )
        self.uris = UriService(
            storage=self.storage,
            sites=self.sites,
            dispatcher=self.dispatcher,
            notifier=self.notifier,
        )
        self.scheduler = Scheduler(
            storage=self.storage,
            sites=self.sites,
            publishers={
                PAGES: self.pages.publish,
                COMPONENTS: self.components.publish,
                LAYOUTS: self.layouts.publish,
            },
            interval_seconds=self.config.schedule.interval_seconds,
            jitter_seconds=self.config.schedule.jitter_seconds,
        )

        self._initialized = True
        logger.info(
            "Folio services initialized",
            extra={"sites": len(self.sites), "hooks": len(self.hooks)},
        )
        return self

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting Folio server")
        self.config.log_config()

        try:
            await self.initialize()

            if self.config.schedule.enabled:
                await self.scheduler.start()

            self._running = True
            logger.info("Folio server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if self.scheduler is not None and self.scheduler.running:
            await self.scheduler.stop()

        if self.dispatcher is not None:
            await self.dispatcher.drain()

        if self.notifier is not None:
            await self.notifier.close()

        if self._running:
            self._running = False
            logger.info("Folio server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
