"""Contract for the remote data and auth service.

Every write is scoped to an owner id. Expected failures (rejected writes,
missing rows, bad credentials) are raised as :class:`BackendError`
subclasses; anything else is a defect.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from notekeeper.models import AuthSession, Credentials, Folder, Note, NoteInput, User


class BackendError(Exception):
    """A remote read or write was rejected. ``str(exc)`` is user-facing."""


class AuthenticationError(BackendError):
    """No valid session, or credentials were refused."""


class NotFoundError(BackendError):
    """The row does not exist or is not owned by the caller."""


class NotesBackend(Protocol):
    """Operations the dashboard needs from the data service."""

    async def get_current_user(self, access_token: str) -> Optional[User]: ...

    async def sign_up(self, credentials: Credentials) -> AuthSession: ...

    async def sign_in(self, credentials: Credentials) -> AuthSession: ...

    async def sign_out(self, access_token: str) -> None: ...

    async def list_notes(self, owner_id: str) -> list[Note]:
        """Notes ordered by ``updated_at`` descending."""
        ...

    async def list_folders(self, owner_id: str) -> list[Folder]:
        """Folders ordered by name ascending."""
        ...

    async def create_note(
        self, owner_id: str, note_input: NoteInput, folder_id: Optional[str] = None
    ) -> Note: ...

    async def update_note(
        self, note_id: str, owner_id: str, fields: dict[str, Any]
    ) -> Note: ...

    async def delete_note(self, note_id: str, owner_id: str) -> None: ...

    async def create_folder(self, owner_id: str, name: str) -> Folder: ...

    async def update_folder(self, folder_id: str, owner_id: str, name: str) -> Folder: ...

    async def delete_folder(self, folder_id: str, owner_id: str) -> None: ...

    async def clear_folder_reference(self, folder_id: str, owner_id: str) -> None:
        """Set ``folder_id`` to null on every note in the folder."""
        ...
