"""Main daemon process for the launcher."""

import asyncio
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import psutil
from aiohttp import web
from loguru import logger

from .api import create_api_app
from .bus import EventBus, HISTORY_CHANGED, LAUNCH_COMPLETED, LAUNCH_PRUNED, SEARCH_COMPLETED, get_event_bus
from .config import Config, LoggingConfig
from .dispatcher import LaunchDispatcher
from .history import build_history
from .host import SystemHostActions
from .search import SearchOrchestrator
from .store import DuckDBStore

__version__ = "0.1.0"


class LauncherDaemon:
    """Main daemon coordinating all services."""

    def __init__(self, config: Config, event_bus: Optional[EventBus] = None):
        self.config = config
        self.start_time = datetime.now(timezone.utc)

        # Core services
        self.event_bus = event_bus or get_event_bus()
        self.store = DuckDBStore(config.db_path)
        self.history, self.worker = build_history(
            self.store, config.reconcile, event_bus=self.event_bus
        )
        self.host = SystemHostActions(event_bus=self.event_bus)
        self.orchestrator = SearchOrchestrator(
            self.store, self.history, config=config.search, event_bus=self.event_bus
        )
        self.dispatcher = LaunchDispatcher(
            self.history,
            self.store,
            self.host,
            self.orchestrator.results,
            config=config.launch,
            event_bus=self.event_bus,
        )

        # Statistics
        self.stats = {
            "launch_count": 0,
            "search_count": 0,
            "pruned_count": 0,
            "history_changes": 0,
        }

        # HTTP API
        self.api_app = None
        self.api_runner = None
        self.api_site = None

        self._shutdown = asyncio.Event()

    async def start(self) -> None:
        """Start all daemon services."""
        logger.info("Starting launcher daemon...")

        await self.event_bus.start()

        await self.store.initialize()
        await self.worker.start()
        await self.history.reconcile()
        await self.orchestrator.refresh_apps()

        # Subscribe to events for stats
        self.event_bus.subscribe(LAUNCH_COMPLETED, self._on_launch)
        self.event_bus.subscribe(LAUNCH_PRUNED, self._on_pruned)
        self.event_bus.subscribe(HISTORY_CHANGED, self._on_history_changed)
        self.event_bus.subscribe(SEARCH_COMPLETED, self._on_search)

        await self._start_api()

        logger.info("Launcher daemon started successfully")

    async def stop(self) -> None:
        """Stop all daemon services."""
        logger.info("Stopping launcher daemon...")

        if self.api_site:
            await self.api_site.stop()
            self.api_site = None
        if self.api_runner:
            await self.api_runner.cleanup()
            self.api_runner = None

        # Flush queued uses before the store goes away
        await self.worker.stop()
        await self.store.close()
        await self.event_bus.stop()

        logger.info("Launcher daemon stopped")

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def wait_closed(self) -> None:
        await self._shutdown.wait()

    async def _start_api(self) -> None:
        """Start the HTTP API server."""
        self.api_app = create_api_app(self)
        self.api_runner = web.AppRunner(self.api_app)
        await self.api_runner.setup()

        self.api_site = web.TCPSite(
            self.api_runner,
            self.config.api.host,
            self.config.api.port,
        )
        await self.api_site.start()

        logger.info(f"API server started on {self.config.api_url}")

    async def _on_launch(self, event) -> None:
        self.stats["launch_count"] += 1

    async def _on_pruned(self, event) -> None:
        self.stats["pruned_count"] += 1

    async def _on_history_changed(self, event) -> None:
        self.stats["history_changes"] += 1

    async def _on_search(self, event) -> None:
        self.stats["search_count"] += 1

    def get_status(self) -> dict:
        """Get daemon status and statistics."""
        process = psutil.Process()
        uptime = (datetime.now(timezone.utc) - self.start_time).total_seconds()

        return {
            "status": "running",
            "version": __version__,
            "uptime": f"{uptime:.0f}s",
            "dispatcher_state": self.dispatcher.state.value,
            "stats": {
                **self.stats,
                "history_entries": len(self.history),
                "history_loaded": self.history.is_loaded,
                "indexed_apps": len(self.orchestrator.results.apps),
                "worker": self.worker.get_stats(),
                "memory_mb": process.memory_info().rss / 1024 / 1024,
            },
            "config": {
                "data_dir": str(self.config.data_dir),
                "db_path": str(self.config.db_path),
                "api_url": self.config.api_url,
            },
        }


def setup_logging(config: LoggingConfig, log_dir: Path) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=config.level
    )

    # Also log to file
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "daemon.log",
        rotation=config.rotation,
        retention=config.retention,
        level=config.file_level
    )


async def main(config_path: Optional[str] = None):
    """Main entry point for the daemon."""
    try:
        config = Config.load(Path(config_path) if config_path else None)
    except FileNotFoundError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.logging, config.data_dir / "logs")

    daemon = LauncherDaemon(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, daemon.request_shutdown)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    try:
        await daemon.start()
        await daemon.wait_closed()
    except Exception as e:
        logger.exception(f"Daemon error: {e}")
    finally:
        await daemon.stop()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
