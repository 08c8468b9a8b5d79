"""Derived dashboard state.

Pure functions over the note and folder collections. Nothing here performs
I/O or caches results; the controller recomputes the view on every change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from notekeeper.filters import AllNotes, FilterSelection, filter_title, matches_filter
from notekeeper.models import Folder, Note


@dataclass(frozen=True)
class ViewQuery:
    """Everything the user has selected to narrow the notes list."""

    selection: FilterSelection = field(default_factory=AllNotes)
    search: str = ""
    tag: Optional[str] = None
    favorites_only: bool = False

    @property
    def has_refinements(self) -> bool:
        """Whether search, tag or the favorites toggle is active."""
        return bool(self.search.strip() or self.tag or self.favorites_only)


@dataclass(frozen=True)
class DashboardView:
    """The notes list plus sidebar totals."""

    title: str
    notes: tuple[Note, ...]
    tags: tuple[str, ...]
    folder_counts: dict[str, int]
    favorites_count: int
    unfiled_count: int
    total_count: int
    selection_count: int
    has_refinements: bool


def matches_search(note: Note, query: str) -> bool:
    """Case-insensitive substring match on title, content, or any tag.

    A blank query matches everything. Otherwise the query is matched as
    typed, surrounding spaces included.
    """
    if not query.strip():
        return True
    q = query.lower()
    return (
        q in note.title.lower()
        or q in note.content.lower()
        or any(q in tag.lower() for tag in note.tags)
    )


def refine(notes: Sequence[Note], query: ViewQuery) -> list[Note]:
    """Apply search, tag, and favorites-only restrictions (logical AND)."""
    return [
        n
        for n in notes
        if (not query.favorites_only or n.is_favorite)
        and (not query.tag or query.tag in n.tags)
        and matches_search(n, query.search)
    ]


def sort_notes(notes: Sequence[Note]) -> list[Note]:
    """Favorites first, then most recently updated. Stable for ties."""
    by_date = sorted(notes, key=lambda n: n.updated_at, reverse=True)
    return sorted(by_date, key=lambda n: not n.is_favorite)


def count_by_folder(notes: Sequence[Note]) -> dict[str, int]:
    """Number of notes filed in each folder; unfiled notes are not counted."""
    counts: dict[str, int] = {}
    for note in notes:
        if note.folder_id is not None:
            counts[note.folder_id] = counts.get(note.folder_id, 0) + 1
    return counts


def count_favorites(notes: Sequence[Note]) -> int:
    return sum(1 for n in notes if n.is_favorite)


def count_unfiled(notes: Sequence[Note]) -> int:
    return sum(1 for n in notes if n.folder_id is None)


def collect_tags(notes: Sequence[Note]) -> list[str]:
    """Sorted distinct tags across ``notes``."""
    return sorted({tag for note in notes for tag in note.tags})


def derive_view(
    notes: Sequence[Note],
    folders: Sequence[Folder],
    query: ViewQuery,
) -> DashboardView:
    """Compute the visible notes and sidebar counts.

    Counts are taken over the whole collection, not the visible subset. The
    tag list comes from the notes in the current selection so that choosing
    a tag never offers tags that cannot match.
    """
    selected = [n for n in notes if matches_filter(n, query.selection)]
    visible = sort_notes(refine(selected, query))
    return DashboardView(
        title=filter_title(query.selection, folders),
        notes=tuple(visible),
        tags=tuple(collect_tags(selected)),
        folder_counts=count_by_folder(notes),
        favorites_count=count_favorites(notes),
        unfiled_count=count_unfiled(notes),
        total_count=len(notes),
        selection_count=len(selected),
        has_refinements=query.has_refinements,
    )
