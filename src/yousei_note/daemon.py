#!/usr/bin/env python3
"""Auto-sync daemon for Yousei Note."""

import logging
import signal
import threading
from typing import Optional

from .config import AppPaths, RemoteHttpConfig
from .local_store import LocalStore
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


class SyncDaemon:
    """Keeps the remote HTTP auto-sync timer running until stopped."""

    def __init__(self, paths: AppPaths, log_level: Optional[str] = None):
        """Initialize sync daemon.

        Args:
            paths: Application file locations
            log_level: Log level override
        """
        self.paths = paths
        self.log_level = log_level
        self.store: Optional[LocalStore] = None
        self.remote_config: Optional[RemoteHttpConfig] = None
        self._stop_event = threading.Event()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down gracefully...")
            self.stop()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def initialize(self) -> bool:
        """Load settings and connect to the remote store.

        Returns:
            True if auto sync is running
        """
        setup_logging(level=self.log_level, log_file=self.paths.log_path)
        logger.info("=== Yousei Note Sync Daemon Starting ===")

        self.store = LocalStore(self.paths.local_store_path)
        self.remote_config = RemoteHttpConfig(self.store)

        if not self.remote_config.is_configured():
            logger.error("Remote HTTP storage is not enabled. Run 'yousei enable-remote' first.")
            return False
        if not self.remote_config.auto_init():
            logger.error("Could not connect to the remote HTTP storage")
            return False
        if not self.remote_config.is_auto_syncing():
            logger.error("Auto sync is turned off (auto_sync = false)")
            return False
        return True

    def start(self) -> int:
        """Run until a signal or :meth:`stop` ends the daemon."""
        self._setup_signal_handlers()
        if not self.initialize():
            logger.error("Failed to initialize daemon")
            return 1

        logger.info("Sync daemon started")
        self._stop_event.wait()
        return 0

    def stop(self) -> None:
        logger.info("Stopping sync daemon...")
        if self.remote_config:
            self.remote_config.stop_auto_sync()
        self._stop_event.set()
        logger.info("Sync daemon stopped")


def main():
    """Main entry point for daemon."""
    daemon = SyncDaemon(AppPaths())
    return daemon.start()


if __name__ == '__main__':
    raise SystemExit(main())
