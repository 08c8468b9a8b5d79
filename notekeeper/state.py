"""Canonical in-memory note and folder collections for one session."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from notekeeper.models import Folder, Note

logger = logging.getLogger(__name__)


def _by_name(folders: Iterable[Folder]) -> list[Folder]:
    return sorted(folders, key=lambda f: f.name.casefold())


class DashboardState:
    """Notes and folders owned by a dashboard controller.

    Readers get tuples; the methods below are the only way to change the
    collections.
    """

    def __init__(self) -> None:
        self._notes: list[Note] = []
        self._folders: list[Folder] = []

    @property
    def notes(self) -> tuple[Note, ...]:
        return tuple(self._notes)

    @property
    def folders(self) -> tuple[Folder, ...]:
        return tuple(self._folders)

    def get_note(self, note_id: str) -> Optional[Note]:
        for note in self._notes:
            if note.id == note_id:
                return note
        return None

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        for folder in self._folders:
            if folder.id == folder_id:
                return folder
        return None

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def load_notes(self, notes: Iterable[Note]) -> None:
        self._notes = list(notes)

    def prepend_note(self, note: Note) -> None:
        """Insert a newly created note at the front."""
        self._notes.insert(0, note)

    def replace_note(self, note: Note) -> None:
        """Swap in ``note`` at the position of the note with the same id."""
        self._notes = [note if n.id == note.id else n for n in self._notes]

    def patch_note(self, note_id: str, **fields: Any) -> None:
        """Overwrite selected fields of one note in place."""
        self._notes = [
            n.model_copy(update=fields) if n.id == note_id else n for n in self._notes
        ]

    def remove_note(self, note_id: str) -> None:
        self._notes = [n for n in self._notes if n.id != note_id]

    def unfile_notes(self, folder_id: str) -> int:
        """Clear the folder reference of every note in ``folder_id``."""
        cleared = 0
        notes: list[Note] = []
        for note in self._notes:
            if note.folder_id == folder_id:
                note = note.model_copy(update={"folder_id": None})
                cleared += 1
            notes.append(note)
        self._notes = notes
        return cleared

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def load_folders(self, folders: Iterable[Folder]) -> None:
        self._folders = list(folders)

    def add_folder(self, folder: Folder) -> None:
        self._folders = _by_name([*self._folders, folder])

    def replace_folder(self, folder: Folder) -> None:
        self._folders = _by_name(
            folder if f.id == folder.id else f for f in self._folders
        )

    def remove_folder(self, folder_id: str) -> None:
        self._folders = [f for f in self._folders if f.id != folder_id]

    def clear(self) -> None:
        """Discard everything, as on sign-out."""
        logger.debug(
            "Discarding %d notes and %d folders", len(self._notes), len(self._folders)
        )
        self._notes = []
        self._folders = []
