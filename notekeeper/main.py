"""FastAPI application for Notekeeper.

Endpoints:
  POST   /auth/sign-up        — Create an account and get an access token
  POST   /auth/sign-in        — Exchange credentials for an access token
  POST   /auth/sign-out       — End the session
  GET    /dashboard           — Visible notes and sidebar counts
  PUT    /dashboard/filter    — Select all / favorites / unfiled / folder:<id>
  POST   /notes               — Create a note
  PUT    /notes/{id}          — Edit a note
  DELETE /notes/{id}          — Delete a note (requires ?confirm=true)
  POST   /notes/{id}/favorite — Toggle the favorite flag
  PUT    /notes/{id}/folder   — Move a note to a folder, or unfile it
  POST   /folders             — Create a folder
  PATCH  /folders/{id}        — Rename a folder
  DELETE /folders/{id}        — Delete a folder (requires ?confirm=true)
  GET    /health              — Service and database status
  GET    /metrics             — Prometheus metrics
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from notekeeper.backend import AuthenticationError, BackendError, NotesBackend
from notekeeper.config import settings
from notekeeper.controller import DashboardController
from notekeeper.database import Database
from notekeeper.filters import format_filter, parse_filter
from notekeeper.metrics import ACTIVE_SESSIONS, HTTP_DURATION, HTTP_REQUESTS
from notekeeper.models import (
    AuthSession,
    Credentials,
    Folder,
    Note,
    NoteInput,
    SignUpCredentials,
)
from notekeeper.mutations import ErrorKind, MutationResult
from notekeeper.views import DashboardView

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)

# --- Global instances ---
db = Database(
    settings.database_url, session_ttl=timedelta(hours=settings.session_ttl_hours)
)
backend: NotesBackend = db
controllers: dict[str, DashboardController] = {}
# Monotonic time each token last made a request
last_seen: dict[str, float] = {}

# Endpoints excluded from HTTP metrics
_METRICS_EXCLUDE = {"/metrics", "/openapi.json", "/docs", "/redoc"}

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.AUTH: 401,
    ErrorKind.CANCELLED: 409,
    ErrorKind.REMOTE: 502,
}


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record HTTP request count and duration for Prometheus."""

    async def dispatch(self, request: Request, call_next):
        """Wrap each request with timing and counting."""
        path = request.url.path
        if path in _METRICS_EXCLUDE:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        # Route templates keep note and folder ids out of the labels
        route = request.scope.get("route")
        endpoint = getattr(route, "path", path)
        HTTP_REQUESTS.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        HTTP_DURATION.labels(endpoint=endpoint).observe(elapsed)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: connect to PostgreSQL. Shutdown: drop sessions, close pool."""
    logger.info("Connecting to PostgreSQL...")
    await db.init()
    yield
    controllers.clear()
    last_seen.clear()
    ACTIVE_SESSIONS.set(0)
    await db.close()
    logger.info("Notekeeper shut down.")


app = FastAPI(title="Notekeeper", version="1.0.0", lifespan=lifespan)

app.add_middleware(MetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Request / Response models ---


class AuthResponse(BaseModel):
    """Token issued on sign-in or sign-up."""

    access_token: str
    token_type: str = "bearer"
    user_id: str
    email: str


class FilterRequest(BaseModel):
    """Sidebar selection in wire form."""

    filter: str


class MoveRequest(BaseModel):
    """Target folder for a note; null unfiles it."""

    folder_id: Optional[str] = None


class FolderRequest(BaseModel):
    """Folder create / rename body."""

    name: str


class DashboardResponse(BaseModel):
    """Derived dashboard state for the presentation layer."""

    title: str
    filter: str
    email: str
    notes: list[Note]
    folders: list[Folder]
    tags: list[str]
    folder_counts: dict[str, int]
    favorites_count: int
    unfiled_count: int
    total_count: int
    selection_count: int
    has_refinements: bool


# --- Helpers ---


def _auth_response(session: AuthSession) -> AuthResponse:
    return AuthResponse(
        access_token=session.access_token,
        user_id=session.user.id,
        email=session.user.email,
    )


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Not authenticated")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return token


def _drop(token: str) -> None:
    controllers.pop(token, None)
    last_seen.pop(token, None)
    ACTIVE_SESSIONS.set(len(controllers))


def _evict_idle(now: float) -> None:
    """Forget dashboards idle for longer than any session can live."""
    cutoff = now - settings.session_ttl_hours * 3600
    for token in [t for t, seen in last_seen.items() if seen < cutoff]:
        logger.info("Evicting idle dashboard")
        _drop(token)


async def get_controller(
    authorization: Optional[str] = Header(default=None),
) -> DashboardController:
    """Return the loaded dashboard for the caller's token.

    The dashboard is loaded on first use and the session is re-checked on
    every later request, so expired or revoked tokens get 401.
    """
    token = _bearer_token(authorization)
    now = time.monotonic()
    _evict_idle(now)

    controller = controllers.get(token)
    if controller is not None and not await controller.verify():
        _drop(token)
        raise HTTPException(status_code=401, detail="Not authenticated")
    if controller is None:
        controller = DashboardController(backend, token)
        if not await controller.start():
            raise HTTPException(status_code=401, detail="Not authenticated")
        controllers[token] = controller
    last_seen[token] = now
    ACTIVE_SESSIONS.set(len(controllers))
    return controller


def _unwrap(result: MutationResult[Any]) -> Any:
    """Return the mutation value or raise the matching HTTP error."""
    if result.ok:
        return result.value
    status = _STATUS_BY_KIND.get(result.kind, 400) if result.kind else 400
    raise HTTPException(status_code=status, detail=result.error)


def _dashboard(controller: DashboardController, view: DashboardView) -> DashboardResponse:
    return DashboardResponse(
        title=view.title,
        filter=format_filter(controller.selection),
        email=controller.user.email if controller.user else "",
        notes=list(view.notes),
        folders=list(controller.folders),
        tags=list(view.tags),
        folder_counts=view.folder_counts,
        favorites_count=view.favorites_count,
        unfiled_count=view.unfiled_count,
        total_count=view.total_count,
        selection_count=view.selection_count,
        has_refinements=view.has_refinements,
    )


# --- Auth endpoints ---


@app.post("/auth/sign-up", response_model=AuthResponse, status_code=201)
async def sign_up(credentials: SignUpCredentials) -> AuthResponse:
    """Create an account and sign in."""
    try:
        session = await backend.sign_up(credentials)
    except AuthenticationError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except BackendError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return _auth_response(session)


@app.post("/auth/sign-in", response_model=AuthResponse)
async def sign_in(credentials: Credentials) -> AuthResponse:
    """Exchange email and password for an access token."""
    try:
        session = await backend.sign_in(credentials)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except BackendError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return _auth_response(session)


@app.post("/auth/sign-out", status_code=204)
async def sign_out(authorization: Optional[str] = Header(default=None)) -> Response:
    """End the session and discard the loaded dashboard."""
    token = _bearer_token(authorization)
    last_seen.pop(token, None)
    controller = controllers.pop(token, None) or DashboardController(backend, token)
    await controller.sign_out()
    ACTIVE_SESSIONS.set(len(controllers))
    return Response(status_code=204)


# --- Dashboard endpoints ---


@app.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    search: str = "",
    tag: Optional[str] = None,
    favorites_only: bool = False,
    controller: DashboardController = Depends(get_controller),
) -> DashboardResponse:
    """Visible notes for the current selection plus sidebar totals."""
    view = controller.view(search=search, tag=tag, favorites_only=favorites_only)
    return _dashboard(controller, view)


@app.put("/dashboard/filter", response_model=DashboardResponse)
async def select_filter(
    request: FilterRequest,
    controller: DashboardController = Depends(get_controller),
) -> DashboardResponse:
    """Change the sidebar selection."""
    try:
        selection = parse_filter(request.filter)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    controller.select(selection)
    return _dashboard(controller, controller.view())


# --- Note endpoints ---


@app.post("/notes", response_model=Note, status_code=201)
async def create_note(
    note_input: NoteInput,
    controller: DashboardController = Depends(get_controller),
) -> Note:
    """Create a note in the selected folder, if any."""
    return _unwrap(await controller.save_note(note_input))


@app.put("/notes/{note_id}", response_model=Note)
async def update_note(
    note_id: str,
    note_input: NoteInput,
    controller: DashboardController = Depends(get_controller),
) -> Note:
    """Update the title, content, tags or favorite flag present in the body."""
    return _unwrap(await controller.save_note(note_input, note_id=note_id))


@app.delete("/notes/{note_id}", status_code=204)
async def delete_note(
    note_id: str,
    confirm: bool = False,
    controller: DashboardController = Depends(get_controller),
) -> Response:
    """Delete a note. Without ``confirm=true`` nothing is sent to the backend."""
    _unwrap(await controller.delete_note(note_id, confirmed=confirm))
    return Response(status_code=204)


@app.post("/notes/{note_id}/favorite", response_model=Note)
async def toggle_favorite(
    note_id: str,
    controller: DashboardController = Depends(get_controller),
) -> Note:
    """Flip the favorite flag."""
    return _unwrap(await controller.toggle_favorite(note_id))


@app.put("/notes/{note_id}/folder", response_model=Note)
async def move_note(
    note_id: str,
    request: MoveRequest,
    controller: DashboardController = Depends(get_controller),
) -> Note:
    """File the note in a folder, or unfile it with ``folder_id: null``."""
    return _unwrap(await controller.move_to_folder(note_id, request.folder_id))


# --- Folder endpoints ---


@app.post("/folders", response_model=Folder, status_code=201)
async def create_folder(
    request: FolderRequest,
    controller: DashboardController = Depends(get_controller),
) -> Folder:
    """Create a folder; the name is trimmed."""
    return _unwrap(await controller.create_folder(request.name))


@app.patch("/folders/{folder_id}", response_model=Folder)
async def rename_folder(
    folder_id: str,
    request: FolderRequest,
    controller: DashboardController = Depends(get_controller),
) -> Folder:
    """Rename a folder."""
    return _unwrap(await controller.rename_folder(folder_id, request.name))


@app.delete("/folders/{folder_id}", status_code=204)
async def delete_folder(
    folder_id: str,
    confirm: bool = False,
    controller: DashboardController = Depends(get_controller),
) -> Response:
    """Unfile the folder's notes and delete it."""
    _unwrap(await controller.delete_folder(folder_id, confirmed=confirm))
    return Response(status_code=204)


# --- Service endpoints ---


@app.get("/health")
async def health() -> dict[str, Any]:
    """Report whether the database backend is connected."""
    return {
        "service": "healthy" if db.available else "degraded",
        "database": "connected" if db.available else "unavailable",
        "active_sessions": len(controllers),
    }


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
