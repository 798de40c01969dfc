"""FastAPI application serving the Study Portal pages and admin API."""

from __future__ import annotations

import contextvars
import logging
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, TypeVar

from fastapi import FastAPI, HTTPException, Request
from fastapi import status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..services.auth import (
    SESSION_COOKIE,
    AuthService,
    AuthUser,
    AuthenticationError,
    PermissionDenied,
    SessionSigner,
    can_assign_role,
    can_create_batch,
    can_delete_content,
    can_manage_batch,
    can_manage_users,
    require,
)
from ..services.backup import BackupNotFound, BackupService
from ..services.events import emit_db_event, emit_structured_event
from ..services.gate import (
    ADS_COOKIE,
    KEY_GENERATION_PATH,
    VERIFIED_COOKIE,
    AccessState,
    RouteGuard,
    build_flag_cookie,
    format_duration_label,
)
from ..services.settings import (
    ALLOWED_DURATIONS,
    OPERATOR_INSTRUCTIONS,
    GateConfig,
    GateSettingsStore,
    duration_options,
)
from ..services.state import ContentSnapshot, PortalState
from ..services.storage import (
    BatchNode,
    ContentRepository,
    IntegrityViolation,
    PersistenceError,
    UserProfileRecord,
)
from . import pages

T = TypeVar("T")

_STATIC_ROOT = Path(__file__).parent / "static"


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "study_portal_request_id",
    default=None,
)
_ACTOR_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "study_portal_actor",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _format_actor_label(role: str, detail: Optional[str] = None) -> str:
    base = role.strip() if role else "actor"
    if detail is None:
        return base
    suffix = str(detail).strip()
    return f"{base}:{suffix}" if suffix else base


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    actor = _ACTOR_VAR.get()
    if actor:
        context["actor"] = str(actor)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        method = scope.get("method")
        actor_hint = _format_actor_label("request", method.upper() if isinstance(method, str) else None)
        request_token = _REQUEST_ID_VAR.set(request_id)
        actor_token = _ACTOR_VAR.set(actor_hint)
        try:
            await self.app(scope, receive, send)
        finally:
            _ACTOR_VAR.reset(actor_token)
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("study_portal.web.events"), {})


def _emit_debug_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    emit_structured_event(
        event_type,
        message,
        payload=payload,
        context=context,
        correlation=_collect_correlation_context(),
        duration_ms=duration_ms,
        level=level,
        logger=EVENT_LOGGER,
    )


def _emit_db_event(
    action: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.DEBUG,
) -> None:
    emit_db_event(
        action,
        payload=payload,
        context=context,
        correlation=_collect_correlation_context(),
        duration_ms=duration_ms,
        level=level,
        logger=EVENT_LOGGER,
    )


def _log_event(message: str, **context: Any) -> None:
    _emit_debug_event("APP_EVENT", message, context=context)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _serialize_batch_node(node: BatchNode) -> Dict[str, Any]:
    return {
        **asdict(node.batch),
        "subjects": [
            {
                **asdict(subject.subject),
                "chapters": [
                    {
                        **asdict(chapter.chapter),
                        "lectures": [asdict(lecture) for lecture in chapter.lectures],
                    }
                    for chapter in subject.chapters
                ],
            }
            for subject in node.subjects
        ],
    }


def _serialize_user(record: UserProfileRecord | AuthUser) -> Dict[str, Any]:
    return {
        "id": record.id,
        "email": record.email,
        "role": record.role,
        "assigned_batches": list(record.assigned_batches),
    }


def _serialize_settings(settings: GateConfig) -> Dict[str, Any]:
    return {
        "settings": asdict(settings),
        "duration_label": settings.duration_label,
        "duration_options": duration_options(),
        "instructions": list(OPERATOR_INSTRUCTIONS),
    }


class LoginPayload(BaseModel):
    email: str
    password: str


class BatchCreatePayload(BaseModel):
    name: str
    description: str = ""


class SubjectCreatePayload(BaseModel):
    batch_id: int
    name: str
    color: str = "bg-blue-500"


class ChapterCreatePayload(BaseModel):
    subject_id: int
    title: str


class LectureCreatePayload(BaseModel):
    chapter_id: int
    title: str
    video_url: str
    video_type: Literal["youtube", "direct"] = "youtube"
    notes_url: Optional[str] = None
    dpp_url: Optional[str] = None


class LiveClassCreatePayload(BaseModel):
    title: str
    batch_id: int
    subject_id: int
    chapter_id: int
    scheduled_at: str
    live_url: str


class LiveClassStatusPayload(BaseModel):
    status: Literal["scheduled", "live", "completed"]


class UserCreatePayload(BaseModel):
    email: str
    password: str
    role: Literal["super_admin", "admin", "uploader"] = "uploader"
    assigned_batches: List[int] = Field(default_factory=list)


class SettingsPayload(BaseModel):
    access_duration: int
    server1_url: str
    server2_url: str
    linkshortify_enabled: bool = True


class RestorePayload(BaseModel):
    backup_date: str


def create_app(
    repository: ContentRepository,
    *,
    config: AppConfig,
    root_path: str | None = None,
    state: Optional[PortalState] = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    normalized_root = _normalize_root_path(root_path)
    app = FastAPI(
        title="Study Portal",
        description="Batches, lectures and live classes behind an access gate",
        root_path=normalized_root,
    )

    def _repository_event_emitter(event_type: str, message: str, **kwargs: Any) -> None:
        if event_type == "DB_QUERY":
            _emit_db_event(message, **kwargs)
        else:
            _emit_debug_event(event_type, message, **kwargs)

    repository.configure_event_emitter(_repository_event_emitter)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            {"detail": exc.detail, "message": exc.detail},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    app.mount(
        "/static",
        StaticFiles(directory=_STATIC_ROOT, check_dir=False),
        name="assets",
    )

    portal_state = state if state is not None else PortalState(repository)
    settings_store = GateSettingsStore(repository)
    auth_service = AuthService(repository, SessionSigner(config.secret_key))
    backup_service = BackupService(repository)
    app.state.portal = portal_state
    app.state.settings_store = settings_store
    app.state.auth_service = auth_service
    app.state.backup_service = backup_service

    template = pages.load_template()

    def _root(request: Request) -> str:
        scope_root = request.scope.get("root_path")
        if isinstance(scope_root, str) and scope_root:
            return _normalize_root_path(scope_root)
        return normalized_root

    def _document(request: Request, title: str, body: str, **kwargs: Any) -> HTMLResponse:
        root = _root(request)
        return HTMLResponse(pages.render_document(template, title, body, root_path=root, **kwargs))

    def _load_gate_settings() -> GateConfig:
        try:
            return settings_store.load()
        except PersistenceError as error:
            LOGGER.debug("Gate settings unavailable, using defaults: %s", error)
            return GateConfig()

    def _current_snapshot() -> ContentSnapshot:
        try:
            return portal_state.content.ensure_loaded()
        except PersistenceError as error:
            LOGGER.error("Could not load content: %s", error)
            return portal_state.content.snapshot

    def _guarded_page(
        request: Request,
        title: str,
        render_body: Callable[[ContentSnapshot, str], str],
    ) -> HTMLResponse | RedirectResponse:
        root = _root(request)
        redirects: List[str] = []
        guard = RouteGuard(
            request.headers.get("cookie"),
            navigate=redirects.append,
            ad_script_url=config.ad_script_url,
            path=request.url.path,
        )
        with guard:
            if guard.state is AccessState.DENIED:
                return RedirectResponse(
                    f"{root}{redirects[0]}", status_code=status.HTTP_303_SEE_OTHER
                )
            body = render_body(_current_snapshot(), root)
            head = guard.document.render()
            markup = guard.render(body)
        return _document(request, title, markup, head=head)

    # ------------------------------------------------------------------
    # Sessions and permissions
    # ------------------------------------------------------------------
    def _require_user(request: Request) -> AuthUser:
        token = request.cookies.get(SESSION_COOKIE)
        try:
            user = auth_service.resolve_token(token)
        except AuthenticationError as error:
            if token:
                portal_state.identity.sign_out(token)
            raise HTTPException(status_code=401, detail=str(error)) from error
        except PersistenceError as error:
            raise HTTPException(status_code=500, detail="Could not verify session") from error
        if portal_state.identity.get(token) is None:
            portal_state.identity.sign_in(token, user)
        _ACTOR_VAR.set(_format_actor_label("user", user.email))
        return user

    def _check(allowed: bool, action: str) -> None:
        try:
            require(allowed, action)
        except PermissionDenied as error:
            _log_event("Permission denied", action=action)
            raise HTTPException(status_code=403, detail=str(error)) from error

    def _persist(write: Callable[[], T], *, failure: str) -> T:
        try:
            return portal_state.content.mutate(write)
        except IntegrityViolation as error:
            raise HTTPException(status_code=400, detail=f"{failure}: {error}") from error
        except PersistenceError as error:
            LOGGER.error("%s: %s", failure, error)
            raise HTTPException(status_code=500, detail=failure) from error

    # ------------------------------------------------------------------
    # Public pages
    # ------------------------------------------------------------------
    @app.get("/", response_class=HTMLResponse)
    async def home(request: Request):
        return _guarded_page(
            request, "Home", lambda snapshot, root: pages.render_home(snapshot, root_path=root)
        )

    @app.get("/batches", response_class=HTMLResponse)
    async def batches_page(request: Request):
        return _guarded_page(
            request,
            "Batches",
            lambda snapshot, root: pages.render_batches(snapshot, root_path=root),
        )

    @app.get("/batch/{batch_id}", response_class=HTMLResponse)
    async def batch_page(request: Request, batch_id: int):
        def _render(snapshot: ContentSnapshot, root: str) -> str:
            node = snapshot.find_batch(batch_id)
            if node is None:
                return pages.render_not_found("Batch", root_path=root)
            return pages.render_batch(node)

        return _guarded_page(request, "Batch", _render)

    @app.get("/live-classes", response_class=HTMLResponse)
    async def live_classes_page(request: Request):
        def _render(snapshot: ContentSnapshot, root: str) -> str:
            names = {node.batch.id: node.batch.name for node in snapshot.batches}
            return pages.render_live_classes(snapshot.live_classes, names)

        return _guarded_page(request, "Live classes", _render)

    # ------------------------------------------------------------------
    # Key generation flow
    # ------------------------------------------------------------------
    @app.get(KEY_GENERATION_PATH, response_class=HTMLResponse)
    async def key_generation(request: Request) -> HTMLResponse:
        settings = _load_gate_settings()
        return _document(
            request,
            "Get access",
            pages.render_key_generation(settings, root_path=_root(request)),
        )

    @app.get(KEY_GENERATION_PATH + "/server/{server}", response_class=HTMLResponse)
    async def key_generation_server(request: Request, server: int) -> HTMLResponse:
        if server not in (1, 2):
            raise HTTPException(status_code=404, detail="Unknown server")
        settings = _load_gate_settings()
        original_url = settings.server1_url if server == 1 else settings.server2_url
        target = f"{_root(request)}/set-verified.html?duration={settings.access_duration}"
        _log_event("Verification server chosen", server=server)
        return _document(
            request,
            f"Server {server}",
            pages.render_server_redirect(server, original_url, target),
            refresh=(pages.SERVER_REDIRECT_DELAY_SECONDS, target),
        )

    @app.get(KEY_GENERATION_PATH + "/ads", response_class=HTMLResponse)
    async def key_generation_ads(request: Request) -> HTMLResponse:
        settings = _load_gate_settings()
        target = f"{_root(request)}/"
        response = _document(
            request,
            "Ads enabled",
            pages.render_ads_redirect(settings.duration_label, target),
            refresh=(pages.ADS_REDIRECT_DELAY_SECONDS, target),
        )
        response.headers.append("set-cookie", build_flag_cookie(ADS_COOKIE, settings.access_duration))
        _log_event("Ads access granted", duration=settings.access_duration)
        return response

    @app.get("/set-verified.html")
    async def set_verified(request: Request, duration: Optional[str] = None) -> RedirectResponse:
        seconds: Optional[int] = None
        if duration is not None:
            try:
                seconds = int(duration)
            except ValueError:
                seconds = None
        if seconds is None or seconds <= 0:
            seconds = _load_gate_settings().access_duration
        response = RedirectResponse(f"{_root(request)}/", status_code=status.HTTP_303_SEE_OTHER)
        response.headers.append("set-cookie", build_flag_cookie(VERIFIED_COOKIE, seconds))
        _log_event("Verified access granted", duration=seconds)
        return response

    # ------------------------------------------------------------------
    # Auth API
    # ------------------------------------------------------------------
    @app.post("/api/auth/login")
    async def login(payload: LoginPayload) -> JSONResponse:
        try:
            user = auth_service.authenticate(payload.email, payload.password)
        except AuthenticationError as error:
            raise HTTPException(status_code=401, detail=str(error)) from error
        token = auth_service.signer.issue(user)
        portal_state.identity.sign_in(token, user)
        response = JSONResponse({"user": _serialize_user(user), "message": "Signed in"})
        response.set_cookie(
            SESSION_COOKIE,
            token,
            max_age=auth_service.signer.max_age,
            httponly=True,
            samesite="lax",
            path="/",
        )
        return response

    @app.post("/api/auth/logout")
    async def logout(request: Request) -> JSONResponse:
        token = request.cookies.get(SESSION_COOKIE)
        if token:
            portal_state.identity.sign_out(token)
        response = JSONResponse({"message": "Signed out"})
        response.delete_cookie(SESSION_COOKIE, path="/")
        return response

    @app.get("/api/auth/me")
    async def me(request: Request) -> Dict[str, Any]:
        user = _require_user(request)
        return {"user": _serialize_user(user)}

    # ------------------------------------------------------------------
    # Content API
    # ------------------------------------------------------------------
    @app.get("/api/batches")
    async def list_batches() -> Dict[str, Any]:
        snapshot = _current_snapshot()
        return {
            "batches": [_serialize_batch_node(node) for node in snapshot.batches],
            "version": snapshot.version,
        }

    @app.post("/api/batches", status_code=status.HTTP_201_CREATED)
    async def create_batch(request: Request, payload: BatchCreatePayload) -> Dict[str, Any]:
        user = _require_user(request)
        _check(can_create_batch(user), "create batches")
        name = payload.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="Batch name is required")
        _log_event("Creating batch", name=name)
        batch_id = _persist(
            lambda: repository.add_batch(name, payload.description.strip()),
            failure="Failed to create batch",
        )
        node = portal_state.content.snapshot.find_batch(batch_id)
        batch = _serialize_batch_node(node) if node else {"id": batch_id, "name": name}
        return {"batch": batch, "message": "Batch created successfully"}

    @app.delete("/api/batches/{batch_id}")
    async def delete_batch(request: Request, batch_id: int) -> Dict[str, Any]:
        user = _require_user(request)
        _check(can_create_batch(user), "delete batches")
        removed = _persist(lambda: repository.remove_batch(batch_id), failure="Failed to delete batch")
        if not removed:
            raise HTTPException(status_code=404, detail="Batch not found")
        _log_event("Deleted batch", batch_id=batch_id)
        return {"message": "Batch deleted successfully"}

    @app.post("/api/subjects", status_code=status.HTTP_201_CREATED)
    async def create_subject(request: Request, payload: SubjectCreatePayload) -> Dict[str, Any]:
        user = _require_user(request)
        _check(can_create_batch(user), "create subjects")
        name = payload.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="Subject name is required")
        if repository.get_batch(payload.batch_id) is None:
            raise HTTPException(status_code=404, detail="Batch not found")
        subject_id = _persist(
            lambda: repository.add_subject(payload.batch_id, name, payload.color.strip()),
            failure="Failed to create subject",
        )
        record = repository.get_subject(subject_id)
        return {
            "subject": asdict(record) if record else {"id": subject_id},
            "message": "Subject created successfully",
        }

    @app.delete("/api/subjects/{subject_id}")
    async def delete_subject(request: Request, subject_id: int) -> Dict[str, Any]:
        user = _require_user(request)
        _check(can_create_batch(user), "delete subjects")
        removed = _persist(
            lambda: repository.remove_subject(subject_id), failure="Failed to delete subject"
        )
        if not removed:
            raise HTTPException(status_code=404, detail="Subject not found")
        return {"message": "Subject deleted successfully"}

    @app.post("/api/chapters", status_code=status.HTTP_201_CREATED)
    async def create_chapter(request: Request, payload: ChapterCreatePayload) -> Dict[str, Any]:
        user = _require_user(request)
        subject = repository.get_subject(payload.subject_id)
        if subject is None:
            raise HTTPException(status_code=404, detail="Subject not found")
        _check(can_manage_batch(user, subject.batch_id), "manage this batch")
        title = payload.title.strip()
        if not title:
            raise HTTPException(status_code=400, detail="Chapter title is required")
        chapter_id = _persist(
            lambda: repository.add_chapter(subject.id, title),
            failure="Failed to create chapter",
        )
        record = repository.get_chapter(chapter_id)
        return {
            "chapter": asdict(record) if record else {"id": chapter_id},
            "message": "Chapter created successfully",
        }

    @app.delete("/api/chapters/{chapter_id}")
    async def delete_chapter(request: Request, chapter_id: int) -> Dict[str, Any]:
        user = _require_user(request)
        _check(can_delete_content(user), "delete chapters")
        removed = _persist(
            lambda: repository.remove_chapter(chapter_id), failure="Failed to delete chapter"
        )
        if not removed:
            raise HTTPException(status_code=404, detail="Chapter not found")
        return {"message": "Chapter deleted successfully"}

    @app.post("/api/lectures", status_code=status.HTTP_201_CREATED)
    async def create_lecture(request: Request, payload: LectureCreatePayload) -> Dict[str, Any]:
        user = _require_user(request)
        chapter = repository.get_chapter(payload.chapter_id)
        if chapter is None:
            raise HTTPException(status_code=404, detail="Chapter not found")
        subject = repository.get_subject(chapter.subject_id)
        if subject is None:
            raise HTTPException(status_code=404, detail="Subject not found")
        _check(can_manage_batch(user, subject.batch_id), "manage this batch")
        title = payload.title.strip()
        video_url = payload.video_url.strip()
        if not title or not video_url:
            raise HTTPException(status_code=400, detail="Lecture title and video URL are required")
        lecture_id = _persist(
            lambda: repository.add_lecture(
                chapter.id,
                title,
                video_url,
                video_type=payload.video_type,
                notes_url=(payload.notes_url or "").strip() or None,
                dpp_url=(payload.dpp_url or "").strip() or None,
                uploaded_by=user.email,
            ),
            failure="Failed to upload lecture",
        )
        _log_event("Lecture uploaded", lecture_id=lecture_id, chapter_id=chapter.id)
        record = repository.get_lecture(lecture_id)
        return {
            "lecture": asdict(record) if record else {"id": lecture_id},
            "message": "Lecture uploaded successfully",
        }

    @app.delete("/api/lectures/{lecture_id}")
    async def delete_lecture(request: Request, lecture_id: int) -> Dict[str, Any]:
        user = _require_user(request)
        _check(can_delete_content(user), "delete lectures")
        removed = _persist(
            lambda: repository.remove_lecture(lecture_id), failure="Failed to delete lecture"
        )
        if not removed:
            raise HTTPException(status_code=404, detail="Lecture not found")
        return {"message": "Lecture deleted successfully"}

    @app.get("/api/live-classes")
    async def list_live_classes() -> Dict[str, Any]:
        snapshot = _current_snapshot()
        return {"live_classes": [asdict(item) for item in snapshot.live_classes]}

    @app.post("/api/live-classes", status_code=status.HTTP_201_CREATED)
    async def create_live_class(request: Request, payload: LiveClassCreatePayload) -> Dict[str, Any]:
        user = _require_user(request)
        _check(user.is_admin, "schedule live classes")
        title = payload.title.strip()
        if not title or not payload.live_url.strip():
            raise HTTPException(status_code=400, detail="Title and live URL are required")
        live_class_id = _persist(
            lambda: repository.add_live_class(
                title=title,
                batch_id=payload.batch_id,
                subject_id=payload.subject_id,
                chapter_id=payload.chapter_id,
                scheduled_at=payload.scheduled_at.strip(),
                live_url=payload.live_url.strip(),
            ),
            failure="Failed to schedule live class",
        )
        record = repository.get_live_class(live_class_id)
        return {
            "live_class": asdict(record) if record else {"id": live_class_id},
            "message": "Live class scheduled successfully",
        }

    @app.put("/api/live-classes/{live_class_id}/status")
    async def update_live_class_status(
        request: Request, live_class_id: int, payload: LiveClassStatusPayload
    ) -> Dict[str, Any]:
        user = _require_user(request)
        _check(user.is_admin, "manage live classes")
        updated = _persist(
            lambda: repository.update_live_class_status(live_class_id, payload.status),
            failure="Failed to update live class",
        )
        if not updated:
            raise HTTPException(status_code=404, detail="Live class not found")
        return {"status": payload.status, "message": f"Live class marked {payload.status}"}

    @app.delete("/api/live-classes/{live_class_id}")
    async def delete_live_class(request: Request, live_class_id: int) -> Dict[str, Any]:
        user = _require_user(request)
        _check(user.is_admin, "manage live classes")
        removed = _persist(
            lambda: repository.remove_live_class(live_class_id),
            failure="Failed to delete live class",
        )
        if not removed:
            raise HTTPException(status_code=404, detail="Live class not found")
        return {"message": "Live class deleted successfully"}

    # ------------------------------------------------------------------
    # Users API
    # ------------------------------------------------------------------
    @app.get("/api/users")
    async def list_users(request: Request) -> Dict[str, Any]:
        user = _require_user(request)
        _check(can_manage_users(user), "manage users")
        return {"users": [_serialize_user(record) for record in repository.list_users()]}

    @app.post("/api/users", status_code=status.HTTP_201_CREATED)
    async def create_user(request: Request, payload: UserCreatePayload) -> Dict[str, Any]:
        actor = _require_user(request)
        _check(can_manage_users(actor), "manage users")
        _check(can_assign_role(actor, payload.role), f"create {payload.role} accounts")
        email = payload.email.strip().lower()
        if not email or not payload.password:
            raise HTTPException(status_code=400, detail="Email and password are required")
        try:
            user_id = auth_service.create_user(
                email,
                payload.password,
                payload.role,
                assigned_batches=payload.assigned_batches,
            )
        except IntegrityViolation as error:
            raise HTTPException(status_code=400, detail="A user with this email already exists") from error
        except PersistenceError as error:
            raise HTTPException(status_code=500, detail="Failed to create user") from error
        _log_event("User created", user_id=user_id, role=payload.role)
        record = repository.get_user(user_id)
        return {
            "user": _serialize_user(record) if record else {"id": user_id, "email": email},
            "message": "User created successfully",
        }

    @app.delete("/api/users/{user_id}")
    async def delete_user(request: Request, user_id: int) -> Dict[str, Any]:
        actor = _require_user(request)
        try:
            removed = auth_service.delete_user(actor, user_id)
        except PermissionDenied as error:
            raise HTTPException(status_code=403, detail=str(error)) from error
        except PersistenceError as error:
            raise HTTPException(status_code=500, detail="Failed to delete user") from error
        if not removed:
            raise HTTPException(status_code=404, detail="User not found")
        portal_state.identity.sign_out_user(user_id)
        return {"message": "User deleted successfully"}

    # ------------------------------------------------------------------
    # Gate settings API
    # ------------------------------------------------------------------
    @app.get("/api/settings/monetization")
    async def get_gate_settings(request: Request) -> Dict[str, Any]:
        user = _require_user(request)
        _check(user.is_admin, "edit gate settings")
        return _serialize_settings(_load_gate_settings())

    @app.put("/api/settings/monetization")
    async def update_gate_settings(request: Request, payload: SettingsPayload) -> Dict[str, Any]:
        user = _require_user(request)
        _check(user.is_admin, "edit gate settings")
        if payload.access_duration not in ALLOWED_DURATIONS:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Access duration must be one of {sorted(ALLOWED_DURATIONS)}",
            )
        settings = GateConfig(
            access_duration=payload.access_duration,
            server1_url=payload.server1_url.strip(),
            server2_url=payload.server2_url.strip(),
            linkshortify_enabled=payload.linkshortify_enabled,
        )
        try:
            settings_store.save(settings)
        except PersistenceError as error:
            LOGGER.error("Failed to save gate settings: %s", error)
            raise HTTPException(status_code=500, detail="Failed to save settings") from error
        _log_event(
            "Gate settings updated",
            duration=format_duration_label(settings.access_duration),
        )
        return {**_serialize_settings(settings), "message": "Settings saved successfully"}

    # ------------------------------------------------------------------
    # Backups API
    # ------------------------------------------------------------------
    @app.get("/api/backups")
    async def list_backups(request: Request) -> Dict[str, Any]:
        user = _require_user(request)
        _check(user.is_admin, "manage backups")
        return {"backups": backup_service.list_backups()}

    @app.post("/api/backups", status_code=status.HTTP_201_CREATED)
    async def create_backup(request: Request) -> Dict[str, Any]:
        user = _require_user(request)
        _check(user.is_admin, "manage backups")
        try:
            summary = backup_service.create_backup()
        except PersistenceError as error:
            LOGGER.error("Backup failed: %s", error)
            raise HTTPException(status_code=500, detail="Backup failed") from error
        return {"backup": summary, "message": "Backup created successfully"}

    @app.post("/api/backups/restore")
    async def restore_backup(request: Request, payload: RestorePayload) -> Dict[str, Any]:
        user = _require_user(request)
        _check(user.is_admin, "manage backups")
        try:
            counts = _persist(
                lambda: backup_service.restore_from_backup(payload.backup_date),
                failure="Restore failed",
            )
        except BackupNotFound as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        return {
            "restored": counts,
            "message": f"Data restored from {payload.backup_date}",
        }

    return app


__all__ = ["ContextualLoggerAdapter", "RequestContextMiddleware", "create_app"]
