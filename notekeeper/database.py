"""PostgreSQL backend for notes, folders, and sign-in sessions.

Uses SQLAlchemy async engine with asyncpg driver. Every query on ``notes``
and ``folders`` is filtered by ``user_id``. PostgreSQL being unavailable is
non-fatal at startup; calls then fail with :class:`BackendError`.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from notekeeper.backend import AuthenticationError, BackendError, NotFoundError
from notekeeper.models import AuthSession, Credentials, Folder, Note, NoteInput, User

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 240_000
DEFAULT_SESSION_TTL = timedelta(days=7)

# Columns a note update may touch. Content edits bump updated_at; favorite
# and folder changes do not, so filing a note keeps its place in the list.
_NOTE_FIELDS = ("title", "content", "tags", "is_favorite", "folder_id")
_CONTENT_FIELDS = {"title", "content", "tags"}

_NOTE_COLUMNS = (
    "id, user_id, title, content, tags, is_favorite, folder_id, created_at, updated_at"
)
_FOLDER_COLUMNS = "id, user_id, name, created_at, updated_at"


_CREATE_TABLE_STMTS = [
    """CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY,
        email VARCHAR(320) NOT NULL UNIQUE,
        password_hash VARCHAR(255) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )""",
    """CREATE TABLE IF NOT EXISTS auth_sessions (
        token VARCHAR(128) PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        expires_at TIMESTAMPTZ NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS folders (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        name VARCHAR(100) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )""",
    """CREATE TABLE IF NOT EXISTS notes (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        title TEXT NOT NULL DEFAULT 'Untitled',
        content TEXT NOT NULL DEFAULT '',
        tags JSONB NOT NULL DEFAULT '[]'::jsonb,
        is_favorite BOOLEAN NOT NULL DEFAULT FALSE,
        folder_id UUID REFERENCES folders(id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )""",
    "CREATE INDEX IF NOT EXISTS idx_notes_user_updated ON notes(user_id, updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_notes_folder ON notes(folder_id)",
    "CREATE INDEX IF NOT EXISTS idx_folders_user ON folders(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_auth_sessions_user ON auth_sessions(user_id)",
]


def _to_uuid(value: str, label: str = "Record") -> uuid.UUID:
    """Parse an id; malformed ids are treated as missing rows."""
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError):
        raise NotFoundError(f"{label} not found") from None


def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    """PBKDF2-SHA256 hash in ``iterations$salt$digest`` form."""
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ITERATIONS)
    return f"{PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        iterations, salt_hex, digest_hex = stored.split("$")
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode(), bytes.fromhex(salt_hex), int(iterations)
        )
    except ValueError:
        return False
    return hmac.compare_digest(digest.hex(), digest_hex)


def _note_from_row(row: Mapping[str, Any]) -> Note:
    tags = row["tags"]
    if isinstance(tags, str):
        tags = json.loads(tags)
    return Note(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        title=row["title"],
        content=row["content"],
        tags=tuple(tags or ()),
        is_favorite=row["is_favorite"],
        folder_id=str(row["folder_id"]) if row["folder_id"] else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _folder_from_row(row: Mapping[str, Any]) -> Folder:
    return Folder(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        name=row["name"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _user_from_row(row: Mapping[str, Any]) -> User:
    return User(id=str(row["id"]), email=row["email"], created_at=row["created_at"])


class Database:
    """Async PostgreSQL implementation of :class:`~notekeeper.backend.NotesBackend`."""

    def __init__(
        self, database_url: str, session_ttl: timedelta = DEFAULT_SESSION_TTL
    ) -> None:
        self._url = database_url
        self._session_ttl = session_ttl
        self._engine: Optional[AsyncEngine] = None

    @property
    def available(self) -> bool:
        """Whether the PostgreSQL connection is active."""
        return self._engine is not None

    async def init(self) -> None:
        """Create engine, connection pool, and tables.

        Non-fatal if PostgreSQL is unavailable.
        """
        try:
            self._engine = create_async_engine(self._url, pool_size=5, max_overflow=10)
            async with self._engine.begin() as conn:
                for stmt in _CREATE_TABLE_STMTS:
                    await conn.execute(text(stmt))
            logger.info("PostgreSQL connected — tables ready")
        except Exception as e:
            logger.warning("PostgreSQL unavailable, backend disabled: %s", e)
            self._engine = None

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None

    def _require_engine(self) -> AsyncEngine:
        if not self._engine:
            raise BackendError("Data service unavailable")
        return self._engine

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def get_current_user(self, access_token: str) -> Optional[User]:
        if not access_token:
            return None
        engine = self._require_engine()
        try:
            async with engine.connect() as conn:
                result = await conn.execute(
                    text(
                        "SELECT u.id, u.email, u.created_at "
                        "FROM auth_sessions s JOIN users u ON u.id = s.user_id "
                        "WHERE s.token = :token AND s.expires_at > NOW()"
                    ),
                    {"token": access_token},
                )
                row = result.mappings().first()
        except SQLAlchemyError as e:
            logger.warning("Failed to look up session: %s", e)
            raise BackendError("Could not verify session") from e
        return _user_from_row(row) if row else None

    async def sign_up(self, credentials: Credentials) -> AuthSession:
        engine = self._require_engine()
        user_id = uuid.uuid4()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    text(
                        "INSERT INTO users (id, email, password_hash, created_at) "
                        "VALUES (:id, :email, :hash, NOW()) "
                        "RETURNING id, email, created_at"
                    ),
                    {
                        "id": user_id,
                        "email": credentials.email,
                        "hash": hash_password(credentials.password),
                    },
                )
                user = _user_from_row(result.mappings().one())
                session = await self._issue_session(conn, user)
        except IntegrityError as e:
            raise AuthenticationError("User already registered") from e
        except SQLAlchemyError as e:
            logger.warning("Failed to sign up %s: %s", credentials.email, e)
            raise BackendError("Could not create account") from e
        logger.info("Signed up %s", user.email)
        return session

    async def sign_in(self, credentials: Credentials) -> AuthSession:
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    text(
                        "SELECT id, email, password_hash, created_at "
                        "FROM users WHERE email = :email"
                    ),
                    {"email": credentials.email},
                )
                row = result.mappings().first()
                if not row or not verify_password(
                    credentials.password, row["password_hash"]
                ):
                    raise AuthenticationError("Invalid login credentials")
                session = await self._issue_session(conn, _user_from_row(row))
        except SQLAlchemyError as e:
            logger.warning("Failed to sign in %s: %s", credentials.email, e)
            raise BackendError("Could not sign in") from e
        logger.info("Signed in %s", session.user.email)
        return session

    async def sign_out(self, access_token: str) -> None:
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                await conn.execute(
                    text("DELETE FROM auth_sessions WHERE token = :token"),
                    {"token": access_token},
                )
        except SQLAlchemyError as e:
            logger.warning("Failed to sign out: %s", e)
            raise BackendError("Could not sign out") from e

    async def _issue_session(self, conn: AsyncConnection, user: User) -> AuthSession:
        token = secrets.token_urlsafe(32)
        expires_at = datetime.now(UTC) + self._session_ttl
        await conn.execute(
            text(
                "INSERT INTO auth_sessions (token, user_id, created_at, expires_at) "
                "VALUES (:token, :uid, NOW(), :expires_at)"
            ),
            {"token": token, "uid": _to_uuid(user.id, "User"), "expires_at": expires_at},
        )
        return AuthSession(access_token=token, user=user, expires_at=expires_at)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_notes(self, owner_id: str) -> list[Note]:
        engine = self._require_engine()
        try:
            async with engine.connect() as conn:
                result = await conn.execute(
                    text(
                        f"SELECT {_NOTE_COLUMNS} FROM notes "
                        "WHERE user_id = :uid ORDER BY updated_at DESC"
                    ),
                    {"uid": _to_uuid(owner_id, "User")},
                )
                return [_note_from_row(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            logger.warning("Failed to list notes: %s", e)
            raise BackendError("Could not load notes") from e

    async def list_folders(self, owner_id: str) -> list[Folder]:
        engine = self._require_engine()
        try:
            async with engine.connect() as conn:
                result = await conn.execute(
                    text(
                        f"SELECT {_FOLDER_COLUMNS} FROM folders "
                        "WHERE user_id = :uid ORDER BY name ASC"
                    ),
                    {"uid": _to_uuid(owner_id, "User")},
                )
                return [_folder_from_row(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            logger.warning("Failed to list folders: %s", e)
            raise BackendError("Could not load folders") from e

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def _check_folder(
        self, conn: AsyncConnection, folder_id: str, uid: uuid.UUID
    ) -> uuid.UUID:
        """Verify the folder exists and belongs to ``uid``."""
        fid = _to_uuid(folder_id, "Folder")
        result = await conn.execute(
            text("SELECT id FROM folders WHERE id = :fid AND user_id = :uid"),
            {"fid": fid, "uid": uid},
        )
        if result.first() is None:
            raise NotFoundError("Folder not found")
        return fid

    async def create_note(
        self, owner_id: str, note_input: NoteInput, folder_id: Optional[str] = None
    ) -> Note:
        engine = self._require_engine()
        uid = _to_uuid(owner_id, "User")
        try:
            async with engine.begin() as conn:
                fid = await self._check_folder(conn, folder_id, uid) if folder_id else None
                result = await conn.execute(
                    text(
                        "INSERT INTO notes (id, user_id, title, content, tags, "
                        "is_favorite, folder_id, created_at, updated_at) "
                        "VALUES (:id, :uid, :title, :content, CAST(:tags AS JSONB), "
                        ":is_favorite, :fid, NOW(), NOW()) "
                        f"RETURNING {_NOTE_COLUMNS}"
                    ),
                    {
                        "id": uuid.uuid4(),
                        "uid": uid,
                        "title": note_input.title,
                        "content": note_input.content,
                        "tags": json.dumps(note_input.tags),
                        "is_favorite": bool(note_input.is_favorite),
                        "fid": fid,
                    },
                )
                note = _note_from_row(result.mappings().one())
        except SQLAlchemyError as e:
            logger.warning("Failed to create note: %s", e)
            raise BackendError("Could not create note") from e
        logger.info("Created note %s", note.id)
        return note

    async def update_note(
        self, note_id: str, owner_id: str, fields: dict[str, Any]
    ) -> Note:
        unknown = set(fields) - set(_NOTE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update note fields: {sorted(unknown)}")
        if not fields:
            raise ValueError("No note fields to update")

        engine = self._require_engine()
        nid = _to_uuid(note_id, "Note")
        uid = _to_uuid(owner_id, "User")
        params: dict[str, Any] = {"nid": nid, "uid": uid}
        assignments: list[str] = []
        for name in _NOTE_FIELDS:
            if name not in fields:
                continue
            value = fields[name]
            if name == "tags":
                assignments.append("tags = CAST(:tags AS JSONB)")
                value = json.dumps(list(value))
            else:
                assignments.append(f"{name} = :{name}")
            params[name] = value
        if _CONTENT_FIELDS & set(fields):
            assignments.append("updated_at = NOW()")

        try:
            async with engine.begin() as conn:
                if fields.get("folder_id") is not None:
                    params["folder_id"] = await self._check_folder(
                        conn, fields["folder_id"], uid
                    )
                result = await conn.execute(
                    text(
                        f"UPDATE notes SET {', '.join(assignments)} "
                        "WHERE id = :nid AND user_id = :uid "
                        f"RETURNING {_NOTE_COLUMNS}"
                    ),
                    params,
                )
                row = result.mappings().first()
        except SQLAlchemyError as e:
            logger.warning("Failed to update note %s: %s", note_id, e)
            raise BackendError("Could not update note") from e
        if row is None:
            raise NotFoundError("Note not found")
        return _note_from_row(row)

    async def delete_note(self, note_id: str, owner_id: str) -> None:
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    text("DELETE FROM notes WHERE id = :nid AND user_id = :uid"),
                    {"nid": _to_uuid(note_id, "Note"), "uid": _to_uuid(owner_id, "User")},
                )
        except SQLAlchemyError as e:
            logger.warning("Failed to delete note %s: %s", note_id, e)
            raise BackendError("Could not delete note") from e
        if result.rowcount == 0:
            raise NotFoundError("Note not found")
        logger.info("Deleted note %s", note_id)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(self, owner_id: str, name: str) -> Folder:
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    text(
                        "INSERT INTO folders (id, user_id, name, created_at, updated_at) "
                        "VALUES (:id, :uid, :name, NOW(), NOW()) "
                        f"RETURNING {_FOLDER_COLUMNS}"
                    ),
                    {"id": uuid.uuid4(), "uid": _to_uuid(owner_id, "User"), "name": name},
                )
                folder = _folder_from_row(result.mappings().one())
        except SQLAlchemyError as e:
            logger.warning("Failed to create folder: %s", e)
            raise BackendError("Could not create folder") from e
        logger.info("Created folder %s", folder.id)
        return folder

    async def update_folder(self, folder_id: str, owner_id: str, name: str) -> Folder:
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    text(
                        "UPDATE folders SET name = :name, updated_at = NOW() "
                        "WHERE id = :fid AND user_id = :uid "
                        f"RETURNING {_FOLDER_COLUMNS}"
                    ),
                    {
                        "name": name,
                        "fid": _to_uuid(folder_id, "Folder"),
                        "uid": _to_uuid(owner_id, "User"),
                    },
                )
                row = result.mappings().first()
        except SQLAlchemyError as e:
            logger.warning("Failed to rename folder %s: %s", folder_id, e)
            raise BackendError("Could not rename folder") from e
        if row is None:
            raise NotFoundError("Folder not found")
        return _folder_from_row(row)

    async def clear_folder_reference(self, folder_id: str, owner_id: str) -> None:
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    text(
                        "UPDATE notes SET folder_id = NULL "
                        "WHERE folder_id = :fid AND user_id = :uid"
                    ),
                    {
                        "fid": _to_uuid(folder_id, "Folder"),
                        "uid": _to_uuid(owner_id, "User"),
                    },
                )
        except SQLAlchemyError as e:
            logger.warning("Failed to unfile notes of folder %s: %s", folder_id, e)
            raise BackendError("Could not update notes") from e
        logger.info("Unfiled %d notes from folder %s", result.rowcount, folder_id)

    async def delete_folder(self, folder_id: str, owner_id: str) -> None:
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    text("DELETE FROM folders WHERE id = :fid AND user_id = :uid"),
                    {
                        "fid": _to_uuid(folder_id, "Folder"),
                        "uid": _to_uuid(owner_id, "User"),
                    },
                )
        except SQLAlchemyError as e:
            logger.warning("Failed to delete folder %s: %s", folder_id, e)
            raise BackendError("Could not delete folder") from e
        if result.rowcount == 0:
            raise NotFoundError("Folder not found")
        logger.info("Deleted folder %s", folder_id)
