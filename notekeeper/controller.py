"""Session-scoped dashboard controller.

Owns the note and folder collections for one signed-in user, loads them on
start, routes user actions to the :class:`MutationCoordinator`, and derives
the view after every change.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Optional

from notekeeper.backend import BackendError, NotesBackend
from notekeeper.filters import AllNotes, ByFolder, FilterSelection
from notekeeper.metrics import LOAD_FAILURES
from notekeeper.models import Folder, Note, User
from notekeeper.mutations import ErrorKind, MutationCoordinator, MutationResult, NoteData
from notekeeper.state import DashboardState
from notekeeper.views import DashboardView, ViewQuery, derive_view

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    READY = "ready"


class SessionNotReadyError(RuntimeError):
    """A mutation was attempted before the dashboard finished loading."""


class DashboardController:
    """Dashboard for one access token."""

    def __init__(self, backend: NotesBackend, access_token: str) -> None:
        self._backend = backend
        self._access_token = access_token
        self._state = DashboardState()
        self._coordinator: Optional[MutationCoordinator] = None
        self._user: Optional[User] = None
        self._selection: FilterSelection = AllNotes()
        self.session_state = SessionState.UNAUTHENTICATED

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def notes(self) -> tuple[Note, ...]:
        return self._state.notes

    @property
    def folders(self) -> tuple[Folder, ...]:
        return self._state.folders

    @property
    def selection(self) -> FilterSelection:
        return self._selection

    @property
    def ready(self) -> bool:
        return self.session_state is SessionState.READY

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Resolve the user and load both collections concurrently.

        Returns ``False`` and stays unauthenticated when there is no session.
        A collection that fails to load is left empty.
        """
        self.session_state = SessionState.LOADING
        try:
            user = await self._backend.get_current_user(self._access_token)
        except BackendError as e:
            logger.warning("Session lookup failed: %s", e)
            user = None
        if user is None:
            self._end_session()
            return False

        self._user = user
        notes, folders = await asyncio.gather(
            self._load("notes", self._backend.list_notes(user.id)),
            self._load("folders", self._backend.list_folders(user.id)),
        )
        self._state.load_notes(notes)
        self._state.load_folders(folders)
        self._coordinator = MutationCoordinator(self._backend, self._state, user.id)
        self.session_state = SessionState.READY
        logger.info(
            "Dashboard ready for %s: %d notes, %d folders",
            user.email,
            len(notes),
            len(folders),
        )
        return True

    async def verify(self) -> bool:
        """Re-check the session of a loaded dashboard.

        A session that expired, was revoked, or now resolves to another user
        ends the dashboard, exactly like an auth failure during a mutation.
        """
        if not self.ready or self._user is None:
            return False
        try:
            user = await self._backend.get_current_user(self._access_token)
        except BackendError as e:
            logger.warning("Session check failed: %s", e)
            user = None
        if user is None or user.id != self._user.id:
            logger.info("Session for %s is no longer valid", self._user.email)
            self._end_session()
            return False
        return True

    async def sign_out(self) -> None:
        """End the remote session and discard local state."""
        try:
            await self._backend.sign_out(self._access_token)
        except BackendError as e:
            logger.warning("Sign-out failed remotely: %s", e)
        self._end_session()

    async def _load(self, collection: str, request: Awaitable[list]) -> list:
        try:
            return list(await request)
        except BackendError as e:
            logger.error("Error fetching %s: %s", collection, e)
            LOAD_FAILURES.labels(collection=collection).inc()
            return []

    def _end_session(self) -> None:
        self._state.clear()
        self._coordinator = None
        self._user = None
        self._selection = AllNotes()
        self.session_state = SessionState.UNAUTHENTICATED

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def select(self, selection: FilterSelection) -> None:
        self._selection = selection

    def view(
        self, search: str = "", tag: Optional[str] = None, favorites_only: bool = False
    ) -> DashboardView:
        query = ViewQuery(
            selection=self._selection,
            search=search,
            tag=tag,
            favorites_only=favorites_only,
        )
        return derive_view(self._state.notes, self._state.folders, query)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def save_note(
        self, data: NoteData, note_id: Optional[str] = None
    ) -> MutationResult[Note]:
        """Update ``note_id`` or create a new note.

        New notes land in the selected folder when one is selected.
        """
        coordinator = self._require_ready()
        if note_id is not None:
            return self._track(await coordinator.update_note(note_id, data))
        folder_id = (
            self._selection.folder_id if isinstance(self._selection, ByFolder) else None
        )
        return self._track(await coordinator.create_note(data, folder_id))

    async def delete_note(
        self, note_id: str, *, confirmed: bool = False
    ) -> MutationResult[None]:
        coordinator = self._require_ready()
        return self._track(await coordinator.delete_note(note_id, confirmed=confirmed))

    async def toggle_favorite(self, note_id: str) -> MutationResult[Note]:
        coordinator = self._require_ready()
        return self._track(await coordinator.toggle_favorite(note_id))

    async def move_to_folder(
        self, note_id: str, folder_id: Optional[str]
    ) -> MutationResult[Note]:
        coordinator = self._require_ready()
        return self._track(await coordinator.move_to_folder(note_id, folder_id))

    async def create_folder(self, name: str) -> MutationResult[Folder]:
        coordinator = self._require_ready()
        return self._track(await coordinator.create_folder(name))

    async def rename_folder(self, folder_id: str, name: str) -> MutationResult[Folder]:
        coordinator = self._require_ready()
        return self._track(await coordinator.rename_folder(folder_id, name))

    async def delete_folder(
        self, folder_id: str, *, confirmed: bool = False
    ) -> MutationResult[None]:
        coordinator = self._require_ready()
        result = self._track(
            await coordinator.delete_folder(folder_id, confirmed=confirmed)
        )
        if result.ok and self._selection == ByFolder(folder_id):
            self._selection = AllNotes()
        return result

    def _require_ready(self) -> MutationCoordinator:
        if self.session_state is not SessionState.READY or self._coordinator is None:
            raise SessionNotReadyError(
                f"Dashboard is {self.session_state.value}, not ready"
            )
        return self._coordinator

    def _track(self, result: MutationResult) -> MutationResult:
        """Drop back to unauthenticated when the backend refused the session."""
        if result.kind is ErrorKind.AUTH:
            logger.warning("Session lost: %s", result.error)
            self._end_session()
        return result
