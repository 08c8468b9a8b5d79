"""Sidebar filter selection.

A selection is one of four cases. Every function here dispatches over all
of them and raises ``TypeError`` for anything else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from notekeeper.models import Folder, Note

FOLDER_PREFIX = "folder:"


@dataclass(frozen=True)
class AllNotes:
    """Every note."""


@dataclass(frozen=True)
class Favorites:
    """Favorited notes only."""


@dataclass(frozen=True)
class Unfiled:
    """Notes without a folder."""


@dataclass(frozen=True)
class ByFolder:
    """Notes filed in one folder."""

    folder_id: str


FilterSelection = Union[AllNotes, Favorites, Unfiled, ByFolder]


def matches_filter(note: Note, selection: FilterSelection) -> bool:
    """Whether ``note`` belongs to the sidebar ``selection``."""
    if isinstance(selection, AllNotes):
        return True
    if isinstance(selection, Favorites):
        return note.is_favorite
    if isinstance(selection, Unfiled):
        return note.folder_id is None
    if isinstance(selection, ByFolder):
        return note.folder_id == selection.folder_id
    raise TypeError(f"Unknown filter selection: {selection!r}")


def filter_title(selection: FilterSelection, folders: Iterable[Folder]) -> str:
    """Heading shown above the notes list."""
    if isinstance(selection, AllNotes):
        return "All Notes"
    if isinstance(selection, Favorites):
        return "Favorites"
    if isinstance(selection, Unfiled):
        return "Unfiled"
    if isinstance(selection, ByFolder):
        for folder in folders:
            if folder.id == selection.folder_id:
                return folder.name
        return "Folder"
    raise TypeError(f"Unknown filter selection: {selection!r}")


def format_filter(selection: FilterSelection) -> str:
    """Wire form: ``all``, ``favorites``, ``unfiled`` or ``folder:<id>``."""
    if isinstance(selection, AllNotes):
        return "all"
    if isinstance(selection, Favorites):
        return "favorites"
    if isinstance(selection, Unfiled):
        return "unfiled"
    if isinstance(selection, ByFolder):
        return f"{FOLDER_PREFIX}{selection.folder_id}"
    raise TypeError(f"Unknown filter selection: {selection!r}")


def parse_filter(text: str) -> FilterSelection:
    """Inverse of :func:`format_filter`. Raises ``ValueError`` on bad input."""
    value = text.strip()
    if value == "all":
        return AllNotes()
    if value == "favorites":
        return Favorites()
    if value == "unfiled":
        return Unfiled()
    if value.startswith(FOLDER_PREFIX):
        folder_id = value[len(FOLDER_PREFIX) :].strip()
        if folder_id:
            return ByFolder(folder_id)
    raise ValueError(f"Invalid filter: {text!r}")
