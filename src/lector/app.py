"""Lector - offline-first synced ebook library."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from textual.app import App

from lector.config import AppConfig, load_config
from lector.library.database import Database, get_database
from lector.library.fallback import FallbackCache, ReadingStateStore
from lector.sync.blobs import RemoteBlobStore
from lector.sync.bookmarks import BookmarkManager
from lector.sync.coordinator import LibrarySyncCoordinator
from lector.sync.remote import HttpRemoteStore, RemoteStore
from lector.sync.tracker import ReadingStateTracker
from lector.ui.screens.library_screen import LibraryScreen
from lector.ui.themes import APP_CSS

log = logging.getLogger(__name__)


class Library:
    """Wires the local store, remote transport and sync components together."""

    def __init__(
        self,
        config: AppConfig,
        remote: Optional[RemoteStore] = None,
        db: Optional[Database] = None,
    ) -> None:
        self.config = config
        self.db = db or get_database(config.db_path)
        if remote is None and config.remote_configured:
            remote = HttpRemoteStore(
                config.remote_url,
                api_key=config.remote_api_key,
                poll_interval=config.poll_interval,
            )
        self.remote = remote
        self.states = ReadingStateStore(self.db, FallbackCache(config.fallback_path))
        self.tracker = ReadingStateTracker(
            self.states, remote=remote, flush_delay=config.flush_delay
        )
        self.bookmarks = BookmarkManager(self.db, remote=remote)
        self.blobs = (
            RemoteBlobStore(remote, chunk_size=config.chunk_size) if remote else None
        )
        self.coordinator = LibrarySyncCoordinator(
            self.db,
            self.states,
            self.tracker,
            remote=remote,
            blobs=self.blobs,
            sync_timeout=config.sync_timeout,
        )

    async def start(self) -> None:
        if self.remote is None:
            log.info("No remote store configured, running local-only")
        else:
            log.info("Syncing with %s", self.config.remote_url or type(self.remote).__name__)
        await self.coordinator.start()

    async def close(self) -> None:
        await self.coordinator.stop()
        pending = self.tracker.scheduler.pending_keys()
        if pending:
            log.info("Flushing %d pending reading positions", len(pending))
        await self.tracker.close()
        if self.remote is not None:
            await self.remote.close()


class LectorApp(App):
    """Terminal front end for the synced library."""

    TITLE = "Lector"
    CSS = APP_CSS

    def __init__(
        self, config: AppConfig | None = None, upload_file: str | None = None
    ) -> None:
        super().__init__()
        self.config = config or load_config()
        self.library = Library(self.config)
        self._upload_file = upload_file

    @property
    def coordinator(self) -> LibrarySyncCoordinator:
        return self.library.coordinator

    @property
    def tracker(self) -> ReadingStateTracker:
        return self.library.tracker

    async def on_mount(self) -> None:
        screen = LibraryScreen()
        await self.push_screen(screen)
        await self.library.start()
        if self._upload_file:
            screen.upload_file(self._upload_file)

    async def action_quit(self) -> None:
        await self.library.close()
        self.exit()


def _setup_logging(config: AppConfig) -> None:
    handler = logging.FileHandler(config.log_path, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root = logging.getLogger("lector")
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)


def main() -> None:
    config = load_config()
    _setup_logging(config)

    upload_file: str | None = None
    if len(sys.argv) > 1:
        upload_file = str(Path(sys.argv[1]).expanduser())

    app = LectorApp(config=config, upload_file=upload_file)
    app.run()


if __name__ == "__main__":
    main()
