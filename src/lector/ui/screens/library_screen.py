from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.message import Message
from textual.screen import ModalScreen, Screen
from textual.widgets import (
    Button,
    DataTable,
    DirectoryTree,
    Footer,
    Header,
    Input,
    Label,
    Static,
)

from lector.errors import LectorError
from lector.library.models import DisplayEntry

if TYPE_CHECKING:
    from lector.app import LectorApp


class EpubTree(DirectoryTree):
    """Directory tree showing folders and EPUB files only."""

    def filter_paths(self, paths: Iterable[Path]) -> Iterable[Path]:
        return sorted(
            (p for p in paths if p.is_dir() or p.suffix.lower() == ".epub"),
            key=lambda p: (p.is_file(), p.name.lower()),
        )


class FilePickerScreen(ModalScreen[Path | None]):
    BINDINGS = [Binding("escape", "dismiss(None)", "Cancel")]

    def __init__(self, start: Path | None = None) -> None:
        super().__init__()
        self._start = (start or Path.home()).expanduser()

    def compose(self) -> ComposeResult:
        with Vertical(id="file-picker", classes="dialog"):
            yield Label("Upload an EPUB", classes="dialog-title")
            yield EpubTree(self._start, id="file-tree")

    def on_mount(self) -> None:
        self.query_one(EpubTree).focus()

    @on(DirectoryTree.FileSelected)
    def _picked(self, event: DirectoryTree.FileSelected) -> None:
        self.dismiss(event.path)


class ConfirmScreen(ModalScreen[bool]):
    BINDINGS = [
        Binding("y", "dismiss(True)", "Yes"),
        Binding("n,escape", "dismiss(False)", "No"),
    ]

    def __init__(self, question: str, confirm_label: str = "OK") -> None:
        super().__init__()
        self._question = question
        self._confirm_label = confirm_label

    def compose(self) -> ComposeResult:
        with Vertical(id="confirm", classes="dialog danger"):
            yield Label(self._question, classes="dialog-title")
            with Horizontal(id="confirm-buttons"):
                yield Button(f"{self._confirm_label} (y)", variant="error", id="yes")
                yield Button("Cancel (n)", id="no")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "yes")


class SearchInput(Input):
    """Filter box; Esc hides it and clears the filter."""

    BINDINGS = [Binding("escape", "close", "Close search")]

    class Closed(Message):
        pass

    def action_close(self) -> None:
        self.post_message(self.Closed())


def _progress_label(entry: DisplayEntry) -> str:
    if entry.is_finished:
        return "Finished"
    return f"{entry.progress:.0%}" if entry.progress else ""


class LibraryScreen(Screen):
    BINDINGS = [
        Binding("A", "upload", "Upload", priority=True),
        Binding("D", "delete", "Delete", priority=True),
        Binding("g", "download", "Download"),
        Binding("f", "toggle_finished", "Finished"),
        Binding("K", "move(-1)", "Move up"),
        Binding("J", "move(1)", "Move down"),
        Binding("S", "search", "Search"),
        Binding("q", "app.quit", "Quit"),
    ]

    @property
    def lector(self) -> LectorApp:
        return self.app  # type: ignore[return-value]

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static(id="library-header")
        yield SearchInput(placeholder="Title or author", id="search")
        yield DataTable(id="book-table", cursor_type="row", zebra_stripes=True)
        yield Static(id="sync-status")
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#book-table", DataTable)
        table.add_column("Title", key="title")
        table.add_column("Author", key="author")
        table.add_column("Where", key="where")
        table.add_column("Progress", key="progress")
        table.add_column("Added", key="added")
        self.lector.coordinator.add_listener(self._library_changed)
        self._render_entries()
        self.set_interval(1.0, self._update_status)
        table.focus()

    def on_unmount(self) -> None:
        self.lector.coordinator.remove_listener(self._library_changed)

    def _library_changed(self, entries: list[DisplayEntry]) -> None:
        self._render_entries()

    @property
    def _filter(self) -> str:
        search = self.query_one(SearchInput)
        return search.value.strip() if search.has_class("visible") else ""

    def _render_entries(self) -> None:
        coordinator = self.lector.coordinator
        term = self._filter
        entries = coordinator.search(term) if term else coordinator.entries

        table = self.query_one("#book-table", DataTable)
        row = table.cursor_row
        table.clear()
        for entry in entries:
            meta = entry.metadata
            table.add_row(
                meta.title,
                meta.author,
                "device" if entry.is_downloaded else "cloud",
                _progress_label(entry),
                datetime.fromtimestamp(meta.created_at / 1000).strftime("%Y-%m-%d"),
                key=meta.id,
            )
        if entries:
            table.move_cursor(row=min(row, len(entries) - 1))

        header = self.query_one("#library-header", Static)
        header.set_class(not coordinator.online, "offline")
        header.set_class(coordinator.loading, "loading")
        if coordinator.loading:
            state = "loading"
        elif coordinator.syncing:
            state = "syncing"
        else:
            state = "online" if coordinator.online else "offline"
        shown = f"{len(entries)} of {len(coordinator.entries)}" if term else len(entries)
        header.update(f"Lector  {shown} books  [{state}]")
        self._update_status()

    def _update_status(self, message: str = "") -> None:
        if not message:
            pending = self.lector.tracker.scheduler.pending_keys()
            message = f"{len(pending)} reading positions waiting to sync" if pending else ""
        self.query_one("#sync-status", Static).update(message)

    def _selected(self) -> DisplayEntry | None:
        table = self.query_one("#book-table", DataTable)
        if not table.row_count:
            return None
        key = table.coordinate_to_cell_key(table.cursor_coordinate).row_key
        return self.lector.coordinator.get(str(key.value))

    # ── Search ──────────────────────────────────

    def action_search(self) -> None:
        search = self.query_one(SearchInput)
        search.add_class("visible")
        search.focus()

    @on(Input.Changed, "#search")
    def _search_changed(self) -> None:
        self._render_entries()

    @on(Input.Submitted, "#search")
    def _search_submitted(self) -> None:
        self.query_one("#book-table").focus()

    @on(SearchInput.Closed)
    def _search_closed(self) -> None:
        search = self.query_one(SearchInput)
        search.remove_class("visible")
        search.value = ""
        self.query_one("#book-table").focus()

    # ── Open / Download ─────────────────────────

    @on(DataTable.RowSelected, "#book-table")
    def _row_selected(self, event: DataTable.RowSelected) -> None:
        entry = self.lector.coordinator.get(str(event.row_key.value))
        if entry is not None and entry.is_downloaded:
            self.resume(entry)
        elif entry is not None:
            self.download(entry)

    @work(exclusive=True, group="open")
    async def resume(self, entry: DisplayEntry) -> None:
        location = await self.lector.tracker.open_book(entry.metadata)
        self.notify(
            f"Resume at {location}" if location else "Start from the beginning",
            title=entry.metadata.title,
        )

    def action_download(self) -> None:
        entry = self._selected()
        if entry is not None and not entry.is_downloaded:
            self.download(entry)

    @work(exclusive=True, group="open")
    async def download(self, entry: DisplayEntry) -> None:
        self._update_status(f"Downloading {entry.metadata.title}...")
        try:
            await self.lector.coordinator.download(entry.id)
        except LectorError as e:
            self.notify(str(e), title="Download failed", severity="error")
        else:
            self.notify("Available offline", title=entry.metadata.title)
        finally:
            self._update_status()

    # ── Upload ──────────────────────────────────

    def action_upload(self) -> None:
        def picked(path: Path | None) -> None:
            if path is not None:
                self.upload_file(path)

        self.app.push_screen(FilePickerScreen(), picked)

    @work(group="upload")
    async def upload_file(self, path: str | Path) -> None:
        path = Path(path).expanduser()
        if not path.is_file():
            self.notify(f"No such file: {path}", severity="error")
            return

        def progress(done: int, total: int) -> None:
            self._update_status(f"Uploading {path.name}: chunk {done}/{total}")

        try:
            result = await self.lector.coordinator.upload(path, on_progress=progress)
        except (ValueError, LectorError) as e:
            self.notify(str(e), title="Upload failed", severity="error")
            return
        finally:
            self._update_status()

        if result.uploaded:
            self.notify(f"{result.chunks} chunks stored", title=result.metadata.title)
        else:
            self.notify(
                f"Kept on this device only ({result.error}). It leaves the list at the next sync until uploaded again.",
                title=result.metadata.title,
                severity="warning",
            )

    # ── Delete ──────────────────────────────────

    def action_delete(self) -> None:
        entry = self._selected()
        if entry is None:
            return

        def confirmed(yes: bool | None) -> None:
            if yes:
                self.delete(entry.id)

        self.app.push_screen(
            ConfirmScreen(f'Remove "{entry.metadata.title}" everywhere?', "Delete"),
            confirmed,
        )

    @work(group="delete")
    async def delete(self, book_id: str) -> None:
        result = await self.lector.coordinator.delete(book_id)
        if not result.ok:
            self.notify("; ".join(result.errors), title="Delete incomplete", severity="warning")

    # ── Finished / Order ────────────────────────

    def action_toggle_finished(self) -> None:
        entry = self._selected()
        if entry is not None:
            self.lector.coordinator.toggle_finished(entry.id)

    def action_move(self, delta: int) -> None:
        entry = self._selected()
        if entry is None or self._filter:
            return
        target = self.query_one("#book-table", DataTable).cursor_row + delta
        self.reorder(entry.id, target)

    @work(exclusive=True, group="order")
    async def reorder(self, book_id: str, index: int) -> None:
        failed = await self.lector.coordinator.move(book_id, index)
        last = len(self.lector.coordinator.entries) - 1
        self.query_one("#book-table", DataTable).move_cursor(row=max(0, min(index, last)))
        if failed:
            self.notify(f"Order not saved remotely for {len(failed)} books", severity="warning")
