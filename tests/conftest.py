"""Shared fixtures: an in-memory backend and note/folder factories."""

from __future__ import annotations

import itertools
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional

import pytest

from notekeeper.backend import AuthenticationError, BackendError, NotFoundError
from notekeeper.models import AuthSession, Credentials, Folder, Note, NoteInput, User

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def at(minutes: int) -> datetime:
    """Timestamp ``minutes`` after T0."""
    return T0 + timedelta(minutes=minutes)


class FakeBackend:
    """In-memory stand-in for the data service.

    Set ``fail[<method name>]`` to a :class:`BackendError` to make that call
    fail. ``calls`` records every method invoked, in order.
    """

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.passwords: dict[str, str] = {}
        self.sessions: dict[str, User] = {}
        self.notes: dict[str, Note] = {}
        self.folders: dict[str, Folder] = {}
        self.fail: dict[str, Exception] = {}
        self.calls: list[str] = []
        self._clock = itertools.count(1000)

    def _now(self) -> datetime:
        return at(next(self._clock))

    def _check(self, method: str) -> None:
        self.calls.append(method)
        if method in self.fail:
            raise self.fail[method]

    def remote_writes(self) -> list[str]:
        reads = {"get_current_user", "list_notes", "list_folders"}
        return [c for c in self.calls if c not in reads]

    # --- seeding helpers ---

    def add_user(self, email: str = "ada@example.com") -> tuple[str, User]:
        user = User(id=str(uuid.uuid4()), email=email, created_at=T0)
        self.users[user.id] = user
        token = f"token-{user.id}"
        self.sessions[token] = user
        return token, user

    def seed_folder(self, owner: User, name: str, folder_id: Optional[str] = None) -> Folder:
        folder = Folder(
            id=folder_id or str(uuid.uuid4()),
            user_id=owner.id,
            name=name,
            created_at=T0,
            updated_at=T0,
        )
        self.folders[folder.id] = folder
        return folder

    def seed_note(self, owner: User, **fields: Any) -> Note:
        fields.setdefault("id", str(uuid.uuid4()))
        fields.setdefault("title", "Note")
        fields.setdefault("created_at", T0)
        fields.setdefault("updated_at", T0)
        note = Note(user_id=owner.id, **fields)
        self.notes[note.id] = note
        return note

    # --- auth ---

    async def get_current_user(self, access_token: str) -> Optional[User]:
        self._check("get_current_user")
        return self.sessions.get(access_token)

    async def sign_up(self, credentials: Credentials) -> AuthSession:
        self._check("sign_up")
        if any(u.email == credentials.email for u in self.users.values()):
            raise AuthenticationError("User already registered")
        token, user = self.add_user(credentials.email)
        self.passwords[user.id] = credentials.password
        return AuthSession(access_token=token, user=user, expires_at=at(10_000))

    async def sign_in(self, credentials: Credentials) -> AuthSession:
        self._check("sign_in")
        for user in self.users.values():
            if (
                user.email == credentials.email
                and self.passwords.get(user.id) == credentials.password
            ):
                token = f"token-{uuid.uuid4()}"
                self.sessions[token] = user
                return AuthSession(access_token=token, user=user, expires_at=at(10_000))
        raise AuthenticationError("Invalid login credentials")

    async def sign_out(self, access_token: str) -> None:
        self._check("sign_out")
        self.sessions.pop(access_token, None)

    # --- reads ---

    async def list_notes(self, owner_id: str) -> list[Note]:
        self._check("list_notes")
        owned = [n for n in self.notes.values() if n.user_id == owner_id]
        return sorted(owned, key=lambda n: n.updated_at, reverse=True)

    async def list_folders(self, owner_id: str) -> list[Folder]:
        self._check("list_folders")
        owned = [f for f in self.folders.values() if f.user_id == owner_id]
        return sorted(owned, key=lambda f: f.name)

    # --- notes ---

    def _owned_folder(self, folder_id: str, owner_id: str) -> Folder:
        folder = self.folders.get(folder_id)
        if folder is None or folder.user_id != owner_id:
            raise NotFoundError("Folder not found")
        return folder

    async def create_note(
        self, owner_id: str, note_input: NoteInput, folder_id: Optional[str] = None
    ) -> Note:
        self._check("create_note")
        if folder_id is not None:
            self._owned_folder(folder_id, owner_id)
        now = self._now()
        note = Note(
            id=str(uuid.uuid4()),
            user_id=owner_id,
            title=note_input.title,
            content=note_input.content,
            tags=note_input.tags,
            is_favorite=bool(note_input.is_favorite),
            folder_id=folder_id,
            created_at=now,
            updated_at=now,
        )
        self.notes[note.id] = note
        return note

    async def update_note(self, note_id: str, owner_id: str, fields: dict[str, Any]) -> Note:
        self._check("update_note")
        note = self.notes.get(note_id)
        if note is None or note.user_id != owner_id:
            raise NotFoundError("Note not found")
        if fields.get("folder_id") is not None:
            self._owned_folder(fields["folder_id"], owner_id)
        update = dict(fields)
        if {"title", "content", "tags"} & set(fields):
            update["updated_at"] = self._now()
        note = Note.model_validate({**note.model_dump(), **update})
        self.notes[note_id] = note
        return note

    async def delete_note(self, note_id: str, owner_id: str) -> None:
        self._check("delete_note")
        note = self.notes.get(note_id)
        if note is None or note.user_id != owner_id:
            raise NotFoundError("Note not found")
        del self.notes[note_id]

    # --- folders ---

    async def create_folder(self, owner_id: str, name: str) -> Folder:
        self._check("create_folder")
        now = self._now()
        folder = Folder(
            id=str(uuid.uuid4()), user_id=owner_id, name=name, created_at=now, updated_at=now
        )
        self.folders[folder.id] = folder
        return folder

    async def update_folder(self, folder_id: str, owner_id: str, name: str) -> Folder:
        self._check("update_folder")
        folder = self._owned_folder(folder_id, owner_id)
        folder = folder.model_copy(update={"name": name, "updated_at": self._now()})
        self.folders[folder_id] = folder
        return folder

    async def clear_folder_reference(self, folder_id: str, owner_id: str) -> None:
        self._check("clear_folder_reference")
        for note_id, note in list(self.notes.items()):
            if note.folder_id == folder_id and note.user_id == owner_id:
                self.notes[note_id] = note.model_copy(update={"folder_id": None})

    async def delete_folder(self, folder_id: str, owner_id: str) -> None:
        self._check("delete_folder")
        self._owned_folder(folder_id, owner_id)
        if any(n.folder_id == folder_id for n in self.notes.values()):
            raise BackendError("Folder still referenced by notes")
        del self.folders[folder_id]


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def make_note() -> Callable[..., Note]:
    """Build a standalone Note; ``updated`` is minutes after T0."""

    def _make(
        title: str = "Note",
        *,
        updated: int = 0,
        favorite: bool = False,
        folder: Optional[str] = None,
        tags: Optional[list[str]] = None,
        content: str = "",
        note_id: Optional[str] = None,
    ) -> Note:
        return Note(
            id=note_id or title,
            user_id="user-1",
            title=title,
            content=content,
            tags=tags or [],
            is_favorite=favorite,
            folder_id=folder,
            created_at=T0,
            updated_at=at(updated),
        )

    return _make


@pytest.fixture()
def make_folder() -> Callable[..., Folder]:
    def _make(folder_id: str, name: Optional[str] = None) -> Folder:
        return Folder(
            id=folder_id,
            user_id="user-1",
            name=name or folder_id,
            created_at=T0,
            updated_at=T0,
        )

    return _make
