"""Optimistic mutations against the note and folder collections.

Each user action validates locally, optionally applies its change to the
in-memory state right away, issues the remote write, and then either
reconciles with the returned record or reverts the local change. Expected
failures come back as a :class:`MutationResult`; only defects raise.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Mapping, Optional, TypeVar, Union

from pydantic import ValidationError

from notekeeper.backend import AuthenticationError, BackendError, NotesBackend, NotFoundError
from notekeeper.metrics import MUTATION_DURATION, MUTATIONS, ROLLBACKS
from notekeeper.models import Folder, InputError, Note, NoteInput, validate_folder_name
from notekeeper.state import DashboardState

logger = logging.getLogger(__name__)

T = TypeVar("T")

NoteData = Union[NoteInput, Mapping[str, Any]]


class ErrorKind(str, Enum):
    """Why a mutation did not go through."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    AUTH = "auth"
    REMOTE = "remote"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class MutationResult(Generic[T]):
    """Outcome of a mutation: the resulting entity, or a user-facing message."""

    value: Optional[T] = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> MutationResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> MutationResult[T]:
        return cls(error=message, kind=kind)


def _classify(exc: BackendError) -> ErrorKind:
    if isinstance(exc, AuthenticationError):
        return ErrorKind.AUTH
    if isinstance(exc, NotFoundError):
        return ErrorKind.NOT_FOUND
    return ErrorKind.REMOTE


def _reject(operation: str, kind: ErrorKind, message: str) -> MutationResult[Any]:
    """Fail before any remote call is made."""
    logger.info("%s rejected (%s): %s", operation, kind.value, message)
    MUTATIONS.labels(operation=operation, outcome=kind.value).inc()
    return MutationResult.failure(kind, message)


def _validation_message(exc: ValidationError) -> str:
    """First pydantic error, without the ``Value error,`` prefix."""
    errors = exc.errors()
    if not errors:
        return "Invalid input"
    message = str(errors[0].get("msg", "Invalid input"))
    return message.removeprefix("Value error, ")


async def run_optimistic(
    operation: str,
    remote: Callable[[], Awaitable[T]],
    *,
    apply: Optional[Callable[[], None]] = None,
    revert: Optional[Callable[[], None]] = None,
    reconcile: Optional[Callable[[T], None]] = None,
) -> MutationResult[T]:
    """Run one mutation through the optimistic protocol.

    Args:
        operation: Name used in logs and metrics.
        remote: Issues the remote write and returns its result.
        apply: Local change made before the remote call resolves.
        revert: Undoes ``apply`` when the remote call fails.
        reconcile: Applies the remote result locally on success.

    Returns:
        Success carrying the remote result, or a failure whose kind reflects
        the :class:`BackendError` subclass raised by ``remote``.
    """
    if apply:
        apply()

    start = time.perf_counter()
    try:
        value = await remote()
    except BackendError as exc:
        kind = _classify(exc)
        logger.warning("%s failed: %s", operation, exc)
        if revert:
            revert()
            ROLLBACKS.labels(operation=operation).inc()
            logger.warning("%s rolled back", operation)
        MUTATIONS.labels(operation=operation, outcome=kind.value).inc()
        return MutationResult.failure(kind, str(exc))
    finally:
        MUTATION_DURATION.labels(operation=operation).observe(
            time.perf_counter() - start
        )

    if reconcile:
        reconcile(value)
    MUTATIONS.labels(operation=operation, outcome="ok").inc()
    logger.info("%s succeeded", operation)
    return MutationResult.success(value)


class MutationCoordinator:
    """Routes every note and folder mutation through :func:`run_optimistic`."""

    def __init__(
        self, backend: NotesBackend, state: DashboardState, owner_id: str
    ) -> None:
        if not owner_id:
            raise ValueError("owner_id is required for mutations")
        self._backend = backend
        self._state = state
        self._owner_id = owner_id

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def toggle_favorite(self, note_id: str) -> MutationResult[Note]:
        note = self._state.get_note(note_id)
        if note is None:
            return _reject("toggle_favorite", ErrorKind.NOT_FOUND, "Note not found")

        favorite = not note.is_favorite
        return await run_optimistic(
            "toggle_favorite",
            lambda: self._backend.update_note(
                note_id, self._owner_id, {"is_favorite": favorite}
            ),
            apply=lambda: self._state.patch_note(note_id, is_favorite=favorite),
            revert=lambda: self._state.replace_note(note),
            reconcile=self._state.replace_note,
        )

    async def move_to_folder(
        self, note_id: str, folder_id: Optional[str]
    ) -> MutationResult[Note]:
        """File a note in ``folder_id``, or unfile it when ``None``."""
        note = self._state.get_note(note_id)
        if note is None:
            return _reject("move_to_folder", ErrorKind.NOT_FOUND, "Note not found")
        if folder_id is not None and self._state.get_folder(folder_id) is None:
            return _reject("move_to_folder", ErrorKind.NOT_FOUND, "Folder not found")

        return await run_optimistic(
            "move_to_folder",
            lambda: self._backend.update_note(
                note_id, self._owner_id, {"folder_id": folder_id}
            ),
            apply=lambda: self._state.patch_note(note_id, folder_id=folder_id),
            revert=lambda: self._state.replace_note(note),
            reconcile=self._state.replace_note,
        )

    async def create_note(
        self, data: NoteData, folder_id: Optional[str] = None
    ) -> MutationResult[Note]:
        try:
            note_input = NoteInput.model_validate(data)
        except ValidationError as exc:
            return _reject(
                "create_note", ErrorKind.VALIDATION, _validation_message(exc)
            )
        if folder_id is not None and self._state.get_folder(folder_id) is None:
            return _reject("create_note", ErrorKind.NOT_FOUND, "Folder not found")

        return await run_optimistic(
            "create_note",
            lambda: self._backend.create_note(self._owner_id, note_input, folder_id),
            reconcile=self._state.prepend_note,
        )

    async def update_note(self, note_id: str, data: NoteData) -> MutationResult[Note]:
        """Send only the fields present in ``data``; the rest keep their values."""
        try:
            note_input = NoteInput.model_validate(data)
        except ValidationError as exc:
            return _reject(
                "update_note", ErrorKind.VALIDATION, _validation_message(exc)
            )
        changes = note_input.changes()
        if not changes:
            return _reject("update_note", ErrorKind.VALIDATION, "Nothing to update")
        if self._state.get_note(note_id) is None:
            return _reject("update_note", ErrorKind.NOT_FOUND, "Note not found")

        return await run_optimistic(
            "update_note",
            lambda: self._backend.update_note(note_id, self._owner_id, changes),
            reconcile=self._state.replace_note,
        )

    async def delete_note(
        self, note_id: str, *, confirmed: bool = False
    ) -> MutationResult[None]:
        if not confirmed:
            return _reject("delete_note", ErrorKind.CANCELLED, "Deletion not confirmed")
        if self._state.get_note(note_id) is None:
            return _reject("delete_note", ErrorKind.NOT_FOUND, "Note not found")

        return await run_optimistic(
            "delete_note",
            lambda: self._backend.delete_note(note_id, self._owner_id),
            reconcile=lambda _: self._state.remove_note(note_id),
        )

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(self, name: str) -> MutationResult[Folder]:
        try:
            trimmed = validate_folder_name(name)
        except InputError as exc:
            return _reject("create_folder", ErrorKind.VALIDATION, str(exc))

        return await run_optimistic(
            "create_folder",
            lambda: self._backend.create_folder(self._owner_id, trimmed),
            reconcile=self._state.add_folder,
        )

    async def rename_folder(self, folder_id: str, name: str) -> MutationResult[Folder]:
        try:
            trimmed = validate_folder_name(name)
        except InputError as exc:
            return _reject("rename_folder", ErrorKind.VALIDATION, str(exc))
        if self._state.get_folder(folder_id) is None:
            return _reject("rename_folder", ErrorKind.NOT_FOUND, "Folder not found")

        return await run_optimistic(
            "rename_folder",
            lambda: self._backend.update_folder(folder_id, self._owner_id, trimmed),
            reconcile=self._state.replace_folder,
        )

    async def delete_folder(
        self, folder_id: str, *, confirmed: bool = False
    ) -> MutationResult[None]:
        """Unfile the folder's notes, then delete the folder.

        If unfiling fails nothing changes. If the folder delete fails after
        unfiling succeeded, the notes stay unfiled and the folder stays put;
        the error is returned without any compensating write.
        """
        if not confirmed:
            return _reject(
                "delete_folder", ErrorKind.CANCELLED, "Deletion not confirmed"
            )
        if self._state.get_folder(folder_id) is None:
            return _reject("delete_folder", ErrorKind.NOT_FOUND, "Folder not found")

        unfiled = await run_optimistic(
            "clear_folder_reference",
            lambda: self._backend.clear_folder_reference(folder_id, self._owner_id),
            reconcile=lambda _: self._state.unfile_notes(folder_id),
        )
        if not unfiled.ok:
            return unfiled

        result = await run_optimistic(
            "delete_folder",
            lambda: self._backend.delete_folder(folder_id, self._owner_id),
            reconcile=lambda _: self._state.remove_folder(folder_id),
        )
        if not result.ok:
            logger.warning(
                "Folder %s kept after its notes were unfiled: %s",
                folder_id,
                result.error,
            )
        return result
