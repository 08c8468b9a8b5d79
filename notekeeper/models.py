"""Pydantic models for notes, folders, and the signed-in user."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_TAGS_PER_NOTE = 10
MAX_FOLDER_NAME_LENGTH = 100
MIN_PASSWORD_LENGTH = 6
UNTITLED = "Untitled"
PREVIEW_LENGTH = 120

_BOLD_RE = re.compile(r"\*\*(.*?)\*\*")
_ITALIC_RE = re.compile(r"\*(.*?)\*")
_BULLET_RE = re.compile(r"^[-*]\s", re.MULTILINE)
_NUMBERED_RE = re.compile(r"^\d+\.\s", re.MULTILINE)


class InputError(ValueError):
    """Raised when user input is rejected before reaching the backend."""


class User(BaseModel):
    """The authenticated account."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    created_at: datetime


class AuthSession(BaseModel):
    """An access token issued by sign-in or sign-up."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    user: User
    expires_at: datetime


class Credentials(BaseModel):
    """Email and password submitted to sign in."""

    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class SignUpCredentials(Credentials):
    """Credentials for a new account; passwords must be at least 6 characters."""

    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)


class Folder(BaseModel):
    """A named container notes may optionally reference."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    name: str
    created_at: datetime
    updated_at: datetime


class Note(BaseModel):
    """A single note as stored by the backend.

    ``folder_id`` of ``None`` means the note is unfiled.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    title: str
    content: str = ""
    tags: tuple[str, ...] = ()
    is_favorite: bool = False
    folder_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class NoteInput(BaseModel):
    """Fields a user may submit when creating or editing a note.

    Server-assigned fields (id, owner, timestamps) are deliberately absent.
    Construction applies the editor rules: the title is trimmed and defaults
    to ``"Untitled"``; tags are trimmed, lowercased, and deduplicated.
    """

    title: str = UNTITLED
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    is_favorite: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def _default_title(cls, value: str) -> str:
        return value.strip() or UNTITLED

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        tags = normalize_tags(value)
        if len(tags) > MAX_TAGS_PER_NOTE:
            raise ValueError(f"A note can have at most {MAX_TAGS_PER_NOTE} tags")
        return tags

    def changes(self) -> dict[str, object]:
        """Fields the caller actually supplied; anything left out is untouched."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


def normalize_tags(tags: list[str]) -> list[str]:
    """Trim, lowercase, drop empties, and dedupe keeping first occurrence."""
    seen: list[str] = []
    for raw in tags:
        tag = raw.strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def add_tag(tags: list[str], raw: str) -> list[str]:
    """Return ``tags`` with ``raw`` appended, as the note editor does.

    Empty input, duplicates, and additions past the tag limit leave the
    list unchanged.
    """
    tag = raw.strip().lower()
    if not tag or tag in tags or len(tags) >= MAX_TAGS_PER_NOTE:
        return list(tags)
    return [*tags, tag]


def validate_folder_name(name: str) -> str:
    """Return the trimmed folder name or raise :class:`InputError`."""
    trimmed = name.strip()
    if not trimmed:
        raise InputError("Folder name cannot be empty")
    if len(trimmed) > MAX_FOLDER_NAME_LENGTH:
        raise InputError(
            f"Folder name cannot exceed {MAX_FOLDER_NAME_LENGTH} characters"
        )
    return trimmed


def preview(content: str, max_length: int = PREVIEW_LENGTH) -> str:
    """Plain-text preview of a note body with simple markdown stripped."""
    text = _BOLD_RE.sub(r"\1", content)
    text = _ITALIC_RE.sub(r"\1", text)
    text = _BULLET_RE.sub("", text)
    text = _NUMBERED_RE.sub("", text)
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text
