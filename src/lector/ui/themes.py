"""Textual CSS for lector."""

APP_CSS = """
Screen {
    background: $surface;
}

/* ── Library ───────────────────────────────── */
#library-header {
    dock: top;
    height: 3;
    padding: 1 2;
    background: $primary;
    color: $text;
    text-style: bold;
}

#library-header.offline {
    background: $warning-darken-2;
}

#library-header.loading {
    color: $text-muted;
}

SearchInput {
    dock: top;
    display: none;
    margin: 0 2;
}

SearchInput.visible {
    display: block;
}

#book-table {
    height: 1fr;
}

#sync-status {
    dock: bottom;
    height: 1;
    padding: 0 2;
    background: $surface-darken-1;
    color: $text-muted;
}

/* ── Dialogs ───────────────────────────────── */
FilePickerScreen, ConfirmScreen {
    align: center middle;
}

.dialog {
    background: $surface;
    border: round $primary;
    padding: 1 2;
}

.dialog.danger {
    border: round $error;
}

.dialog-title {
    width: 100%;
    text-align: center;
    text-style: bold;
    margin-bottom: 1;
}

#file-picker {
    width: 80%;
    height: 80%;
}

#file-tree {
    height: 1fr;
}

#confirm {
    width: 64;
    height: auto;
}

#confirm-buttons {
    height: 3;
    align: center middle;
}

#confirm-buttons Button {
    margin: 0 2;
}
"""
