"""FastAPI application serving the media catalog backoffice."""

from __future__ import annotations

import asyncio
import contextvars
import functools
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Type
from urllib.parse import quote

from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..schemas import (
    CREATE_PAYLOADS,
    TRACK_CREATE_PAYLOADS,
    TRACK_UPDATE_PAYLOADS,
    UPDATE_PAYLOADS,
    ForgotPasswordPayload,
    LoginPayload,
    RegisterPayload,
    ResetPasswordPayload,
    TrackAppendPayload,
    TrackReorderPayload,
    flatten_errors,
)
from ..services.accounts import ROLES, AccountError, AccountService, public_admin
from ..services.catalog import (
    CollectionService,
    InvalidIdentifierError,
    MessageService,
    ResourceNotFoundError,
    TrackedCollectionService,
    build_dashboard,
    build_services,
    list_media,
)
from ..services.documents import DocumentNotFoundError, DocumentRepository
from ..services.events import DB_QUERY, FILE_OP, emit_db_event, emit_file_event
from ..services.legacy import normalize_document, normalize_upload_file
from ..services.mailer import MailDeliveryError, Mailer
from ..services.naming import is_object_id
from ..services.uploads import (
    DEFAULT_MAX_UPLOAD_BYTES,
    FileInUseError,
    UploadRejectedError,
    UploadStore,
)


_TEMPLATE_ROOT = Path(__file__).parent / "templates"
_ROOT_PATH_PLACEHOLDER = "__BACKOFFICE_ROOT_PATH__"
_SUPER_ADMIN_PAGES = ("/admin/users",)

try:
    _MAX_UPLOAD_BYTES = int(
        (os.environ.get("BACKOFFICE_MAX_UPLOAD_BYTES") or "").strip() or DEFAULT_MAX_UPLOAD_BYTES
    )
except ValueError:
    _MAX_UPLOAD_BYTES = DEFAULT_MAX_UPLOAD_BYTES


def get_max_upload_bytes() -> int:
    """Return the configured maximum upload size in bytes."""

    return int(_MAX_UPLOAD_BYTES)


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "backoffice_request_id",
    default=None,
)
_ACTOR_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "backoffice_actor",
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
        correlation = _collect_correlation_context()
        for key, value in correlation.items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("backoffice.web.events"), {})


def _emit_db_event(
    action: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.DEBUG,
) -> None:
    emit_db_event(
        action,
        payload=payload,
        correlation=_collect_correlation_context(),
        duration_ms=duration_ms,
        level=level,
        logger=EVENT_LOGGER,
    )


def _emit_file_event(
    operation: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    emit_file_event(
        operation,
        payload=payload,
        correlation=_collect_correlation_context(),
        duration_ms=duration_ms,
        level=level,
        logger=EVENT_LOGGER,
    )


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def _validate(model: Type[BaseModel], body: Any) -> Any:
    try:
        return model.model_validate(body)
    except ValidationError as error:
        raise RequestValidationError(error.errors()) from error


def _bearer_token(request: Request, cookie_name: str) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(cookie_name)


def create_app(
    repository: DocumentRepository,
    *,
    config: AppConfig,
    root_path: str | None = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    normalized_root = _normalize_root_path(root_path)
    app = FastAPI(
        title="Media Catalog Backoffice",
        description="Administer the media catalog",
        root_path=normalized_root,
    )
    app.state.server = None

    def _repository_event_emitter(event_type: str, message: str, **kwargs: Any) -> None:
        if event_type == DB_QUERY:
            _emit_db_event(message, **kwargs)
        elif event_type == FILE_OP:
            _emit_file_event(message, **kwargs)
        else:
            LOGGER.debug("Ignoring unknown event type %s (%s)", event_type, message)

    configure_emitter = getattr(repository, "configure_event_emitter", None)
    if callable(configure_emitter):
        configure_emitter(_repository_event_emitter)

    uploads = UploadStore(
        config,
        repository,
        max_bytes=get_max_upload_bytes(),
        event_emitter=_repository_event_emitter,
    )
    accounts = AccountService(
        repository,
        config.security,
        mailer=mailer if mailer is not None else Mailer(config.mail),
    )
    services = build_services(repository, uploads)
    app.state.repository = repository
    app.state.uploads = uploads
    app.state.accounts = accounts
    app.state.services = services

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------
    # Error translation
    # ------------------------------------------------------------------
    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Invalid data", details=flatten_errors(exc.errors()))

    @app.exception_handler(InvalidIdentifierError)
    async def _handle_invalid_id(_request: Request, _exc: InvalidIdentifierError) -> JSONResponse:
        return _error(400, "Invalid id")

    @app.exception_handler(DocumentNotFoundError)
    async def _handle_not_found(_request: Request, exc: DocumentNotFoundError) -> JSONResponse:
        message = str(exc) if isinstance(exc, ResourceNotFoundError) else "Not found"
        return _error(404, message)

    @app.exception_handler(UploadRejectedError)
    async def _handle_upload_rejected(_request: Request, exc: UploadRejectedError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(FileInUseError)
    async def _handle_file_in_use(_request: Request, exc: FileInUseError) -> JSONResponse:
        return _error(400, "File in use", related=exc.related)

    @app.exception_handler(AccountError)
    async def _handle_account_error(_request: Request, exc: AccountError) -> JSONResponse:
        return _error(exc.status_code, exc.message)

    @app.exception_handler(MailDeliveryError)
    async def _handle_mail_error(_request: Request, _exc: MailDeliveryError) -> JSONResponse:
        return _error(500, "Failed to send email")

    @app.exception_handler(StarletteHTTPException)
    async def _handle_http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict):
            return JSONResponse(exc.detail, status_code=exc.status_code, headers=exc.headers)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Unexpected error")

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def _current_admin(request: Request) -> Optional[Dict[str, Any]]:
        return accounts.resolve_token(_bearer_token(request, config.security.cookie_name))

    async def require_admin(request: Request) -> Dict[str, Any]:
        admin = _current_admin(request)
        if admin is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        if admin.get("role") not in ROLES:
            raise HTTPException(status_code=403, detail="Forbidden")
        _ACTOR_VAR.set(_format_actor_label("admin", admin["_id"]))
        return admin

    async def require_super_admin(request: Request) -> Dict[str, Any]:
        admin = _current_admin(request)
        if admin is None or admin.get("role") != "super_admin":
            raise HTTPException(status_code=403, detail="Access denied")
        _ACTOR_VAR.set(_format_actor_label("super_admin", admin["_id"]))
        return admin

    @app.post("/api/auth/login")
    async def login(body: Dict[str, Any] = Body(...)) -> JSONResponse:
        payload = _validate(LoginPayload, body)
        loop = asyncio.get_running_loop()
        admin = await loop.run_in_executor(None, accounts.authenticate, payload.email, payload.password)
        token = accounts.create_access_token(admin)
        response = JSONResponse(
            {"access_token": token, "token_type": "bearer", "user": public_admin(admin)}
        )
        response.set_cookie(
            config.security.cookie_name,
            token,
            max_age=config.security.token_ttl_minutes * 60,
            httponly=True,
            samesite="lax",
            path="/",
        )
        LOGGER.info("Admin %s logged in", admin["_id"])
        return response

    @app.post("/api/auth/logout")
    async def logout() -> JSONResponse:
        response = JSONResponse({"message": "Logged out"})
        response.delete_cookie(config.security.cookie_name, path="/")
        return response

    @app.get("/api/auth/me")
    async def me(admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
        return {"user": public_admin(admin)}

    @app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
    async def register(body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        payload = _validate(RegisterPayload, body)
        loop = asyncio.get_running_loop()
        admin = await loop.run_in_executor(
            None, accounts.register, payload.name, payload.email, payload.password
        )
        return {"id": admin["_id"], "name": admin["name"], "email": admin["email"]}

    @app.post("/api/auth/forgot-password")
    async def forgot_password(body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        payload = _validate(ForgotPasswordPayload, body)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, accounts.request_password_reset, payload.email)
        return {"message": "If the email exists, a reset link has been sent"}

    @app.post("/api/auth/forgot-password/reset")
    async def reset_password(body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        payload = _validate(ResetPasswordPayload, body)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, accounts.reset_password, payload.token, payload.password)
        return {"message": "Password updated"}

    @app.get("/api/admins")
    async def list_admins(
        request: Request, _admin: Dict[str, Any] = Depends(require_super_admin)
    ) -> Dict[str, Any]:
        return {"data": accounts.list_admins(request.query_params.get("status"))}

    @app.patch("/api/admins/{admin_id}/approve")
    async def approve_admin(
        admin_id: str, admin: Dict[str, Any] = Depends(require_super_admin)
    ) -> Dict[str, Any]:
        approved, already = accounts.approve(admin_id, admin["_id"])
        message = "Admin already approved" if already else "Admin approved"
        return {"message": message, "admin": public_admin(approved)}

    @app.delete("/api/admins/{admin_id}")
    async def delete_admin(
        admin_id: str, admin: Dict[str, Any] = Depends(require_super_admin)
    ) -> Dict[str, Any]:
        accounts.delete(admin_id, admin["_id"])
        return {"message": "Admin deleted"}

    # ------------------------------------------------------------------
    # Catalog collections
    # ------------------------------------------------------------------
    def _register_collection(name: str, service: CollectionService) -> None:
        create_model = CREATE_PAYLOADS[name]
        update_model = UPDATE_PAYLOADS[name]
        list_dependencies = [] if service.public_list else [Depends(require_admin)]

        async def list_documents(request: Request) -> Any:
            return service.list(request.query_params)

        async def create_document(
            body: Dict[str, Any] = Body(...),
            admin: Dict[str, Any] = Depends(require_admin),
        ) -> Dict[str, Any]:
            payload = _validate(create_model, body)
            stored = service.create(payload.changes(), user_id=admin["_id"])
            return service.format(stored)

        async def get_document(document_id: str, request: Request) -> Any:
            if service.public_detail:
                document = service.find(document_id, allow_slug=True)
                if document is None:
                    return JSONResponse(None, status_code=404)
                return service.format(document)
            await require_admin(request)
            return service.format(service.require(document_id))

        async def update_document(
            document_id: str,
            body: Dict[str, Any] = Body(...),
            admin: Dict[str, Any] = Depends(require_admin),
        ) -> Dict[str, Any]:
            service.require(document_id)
            payload = _validate(update_model, body)
            stored = service.update(document_id, payload.changes(), user_id=admin["_id"])
            return service.format(stored)

        async def delete_document(
            document_id: str, admin: Dict[str, Any] = Depends(require_admin)
        ) -> Dict[str, Any]:
            service.delete(document_id, user_id=admin["_id"])
            return {"message": f"{service.entity} deleted"}

        async def toggle_publish(
            document_id: str, admin: Dict[str, Any] = Depends(require_admin)
        ) -> Dict[str, Any]:
            return {"published_at": service.toggle_publish(document_id, user_id=admin["_id"])}

        base = f"/api/{name}"
        app.add_api_route(base, list_documents, methods=["GET"], dependencies=list_dependencies)
        app.add_api_route(
            base, create_document, methods=["POST"], status_code=status.HTTP_201_CREATED
        )
        app.add_api_route(f"{base}/{{document_id}}", get_document, methods=["GET"])
        app.add_api_route(f"{base}/{{document_id}}", update_document, methods=["PUT"])
        app.add_api_route(f"{base}/{{document_id}}", delete_document, methods=["DELETE"])
        app.add_api_route(f"{base}/{{document_id}}/publish", toggle_publish, methods=["PATCH"])

        if isinstance(service, MessageService):

            async def unpublish_message(
                document_id: str, admin: Dict[str, Any] = Depends(require_admin)
            ) -> Dict[str, Any]:
                return service.format(service.unpublish(document_id, user_id=admin["_id"]))

            app.add_api_route(f"{base}/{{document_id}}/unpublish", unpublish_message, methods=["PATCH"])

        if isinstance(service, TrackedCollectionService):
            _register_tracks(name, service)

    def _register_tracks(name: str, service: TrackedCollectionService) -> None:
        track_model = TRACK_CREATE_PAYLOADS[name]
        track_update_model = TRACK_UPDATE_PAYLOADS[name]
        tracks = service.tracks
        base = f"/api/{name}"

        async def append_track(
            document_id: str,
            body: Dict[str, Any] = Body(...),
            admin: Dict[str, Any] = Depends(require_admin),
        ) -> Dict[str, Any]:
            wrapper = _validate(TrackAppendPayload, body)
            payload = _validate(track_model, wrapper.track)
            track = service.add_track(document_id, payload.changes(), user_id=admin["_id"])
            return {"track": normalize_document(track)}

        async def reorder_tracks(
            document_id: str,
            body: Dict[str, Any] = Body(...),
            admin: Dict[str, Any] = Depends(require_admin),
        ) -> Dict[str, Any]:
            payload = _validate(TrackReorderPayload, body)
            order = service.reorder_tracks(document_id, payload.order, user_id=admin["_id"])
            return {"message": "Tracks reordered", "order": order}

        async def remove_track(
            document_id: str,
            track_id: str,
            admin: Dict[str, Any] = Depends(require_admin),
        ) -> Dict[str, Any]:
            service.remove_track(document_id, track_id, user_id=admin["_id"])
            return {"message": "Track removed"}

        app.add_api_route(
            f"{base}/{{document_id}}/tracks",
            append_track,
            methods=["POST"],
            status_code=status.HTTP_201_CREATED,
        )
        app.add_api_route(f"{base}/{{document_id}}/tracks/reorder", reorder_tracks, methods=["PUT"])
        app.add_api_route(f"{base}/{{document_id}}/tracks/{{track_id}}", remove_track, methods=["DELETE"])

        standalone = f"/api/{name[:-1]}-tracks"

        async def list_tracks(request: Request, _admin: Dict[str, Any] = Depends(require_admin)) -> List[Dict[str, Any]]:
            return tracks.list(request.query_params)

        async def create_track(
            body: Dict[str, Any] = Body(...),
            _admin: Dict[str, Any] = Depends(require_admin),
        ) -> Dict[str, Any]:
            payload = _validate(track_model, body)
            return normalize_document(tracks.create(payload.changes()))

        async def get_track(track_id: str, _admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
            return normalize_document(tracks.require(track_id))

        async def update_track(
            track_id: str,
            body: Dict[str, Any] = Body(...),
            admin: Dict[str, Any] = Depends(require_admin),
        ) -> Dict[str, Any]:
            tracks.require(track_id)
            payload = _validate(track_update_model, body)
            return normalize_document(tracks.update(track_id, payload.changes(), user_id=admin["_id"]))

        async def delete_track(track_id: str, admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
            tracks.delete(track_id, user_id=admin["_id"])
            return {"message": "Track deleted"}

        app.add_api_route(standalone, list_tracks, methods=["GET"])
        app.add_api_route(standalone, create_track, methods=["POST"], status_code=status.HTTP_201_CREATED)
        app.add_api_route(f"{standalone}/{{track_id}}", get_track, methods=["GET"])
        app.add_api_route(f"{standalone}/{{track_id}}", update_track, methods=["PUT"])
        app.add_api_route(f"{standalone}/{{track_id}}", delete_track, methods=["DELETE"])

    for collection_name, collection_service in services.items():
        _register_collection(collection_name, collection_service)

    # ------------------------------------------------------------------
    # Uploads, media library and dashboard
    # ------------------------------------------------------------------
    @app.post("/api/upload")
    async def upload_file(
        file: Optional[UploadFile] = File(None),
        folder: Optional[str] = Form(None),
        _admin: Dict[str, Any] = Depends(require_admin),
    ) -> JSONResponse:
        if file is None or not file.filename:
            return _error(400, "File is required")
        data = await file.read()
        loop = asyncio.get_running_loop()
        operation = functools.partial(
            uploads.save, file.filename, file.content_type, data, folder=folder
        )
        try:
            record, created = await loop.run_in_executor(None, operation)
        except UploadRejectedError:
            raise
        except Exception:  # noqa: BLE001 - reported as a failed upload
            LOGGER.exception("Upload of %s failed", file.filename)
            return _error(500, "Upload failed")
        return JSONResponse(
            normalize_upload_file(record),
            status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    @app.delete("/api/upload/{file_id}")
    async def delete_upload(file_id: str, _admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
        if not is_object_id(file_id):
            raise InvalidIdentifierError(file_id)
        uploads.remove(file_id)
        return {"message": "File deleted"}

    @app.get("/api/media")
    async def media_library(request: Request, _admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
        return list_media(repository, request.query_params)

    @app.get("/api/storage/usage")
    async def storage_usage(_admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
        return {"usage": uploads.usage()}

    @app.get("/api/dashboard")
    async def dashboard(_admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
        summary = build_dashboard(repository)
        summary["storage"] = uploads.usage()
        return summary

    @app.get("/uploads/{path:path}")
    async def serve_upload(path: str) -> FileResponse:
        try:
            target = uploads.resolve_path(path)
        except UploadRejectedError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        if not target.exists() or target.is_dir():
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(target)

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------
    templates = {
        name: (_TEMPLATE_ROOT / f"{name}.html").read_text(encoding="utf-8")
        for name in ("login", "admin", "reset-password")
    }

    def _resolve_root(request: Request) -> str:
        scope_root = request.scope.get("root_path")
        return _normalize_root_path(scope_root if isinstance(scope_root, str) else normalized_root)

    def _render(name: str, request: Request) -> HTMLResponse:
        safe_value = json.dumps(_resolve_root(request))[1:-1]
        return HTMLResponse(templates[name].replace(_ROOT_PATH_PLACEHOLDER, safe_value))

    @app.get("/", include_in_schema=False)
    async def index(request: Request) -> Response:
        return RedirectResponse(f"{_resolve_root(request)}/admin")

    @app.get("/auth/login", response_class=HTMLResponse, include_in_schema=False)
    async def login_page(request: Request) -> HTMLResponse:
        return _render("login", request)

    @app.get("/auth/forgot-password", response_class=HTMLResponse, include_in_schema=False)
    async def forgot_password_page(request: Request) -> HTMLResponse:
        return _render("reset-password", request)

    @app.get("/admin", include_in_schema=False)
    @app.get("/admin/{requested_path:path}", include_in_schema=False)
    async def admin_shell(request: Request, requested_path: str = "") -> Response:
        root = _resolve_root(request)
        path = f"/admin/{requested_path}".rstrip("/") if requested_path else "/admin"
        admin = _current_admin(request)
        if admin is None:
            return RedirectResponse(f"{root}/auth/login?callbackUrl={quote(path, safe='/')}")
        if path.startswith(_SUPER_ADMIN_PAGES) and admin.get("role") != "super_admin":
            return RedirectResponse(f"{root}/admin")
        return _render("admin", request)

    return app


__all__ = ["create_app", "get_max_upload_bytes"]
