"""Local upload store and the bookkeeping of which documents use each file."""

from __future__ import annotations

import contextlib
import hashlib
import io
import logging
import re
import shutil
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import AppConfig
from .documents import DocumentNotFoundError, DocumentRepository, Query
from .events import FILE_OP
from .naming import format_timestamp, is_object_id, utc_now


LOGGER = logging.getLogger(__name__)

UPLOAD_COLLECTION = "upload_files"
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024

ALLOWED_TYPES: Dict[str, str] = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/ogg": ".ogg",
}

DELETION_REASONS = ("cover_replaced", "track_deleted", "cd_deleted", "dvd_deleted", "manual")
DELETION_FIELDS = ("deleted", "deletedAt", "deletedBy", "deletionReason", "relatedTo")

# (name, width, height, crop)
_IMAGE_FORMATS: Tuple[Tuple[str, int, Optional[int], bool], ...] = (
    ("thumbnail", 150, 150, True),
    ("small", 400, None, False),
    ("medium", 800, None, False),
)
_PIL_FORMATS = {".png": "PNG", ".jpg": "JPEG", ".webp": "WEBP"}
_FOLDER_SEGMENT = re.compile(r"[^A-Za-z0-9_-]+")


class UploadRejectedError(ValueError):
    """Raised when an uploaded file fails type, size or decoding checks."""


class FileInUseError(RuntimeError):
    """Raised when removing a file that documents still reference."""

    def __init__(self, file_id: str, related: List[Dict[str, Any]]) -> None:
        super().__init__(f"File {file_id} is still referenced by {len(related)} document(s)")
        self.file_id = file_id
        self.related = related


def _sanitize_folder(folder: Optional[str]) -> str:
    if not folder:
        return ""
    segments = []
    for segment in str(folder).replace("\\", "/").split("/"):
        cleaned = _FOLDER_SEGMENT.sub("-", segment).strip("-")
        if cleaned and cleaned not in {".", ".."}:
            segments.append(cleaned)
    return "/".join(segments)


def _size_kb(byte_count: int) -> float:
    return round(byte_count / 1024, 2)


class UploadStore:
    """Persist uploaded media under ``uploads_root`` and track their owners."""

    def __init__(
        self,
        config: AppConfig,
        repository: DocumentRepository,
        *,
        max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        url_prefix: str = "/uploads",
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._root = config.uploads_root
        self._repository = repository
        self._max_bytes = max_bytes
        self._url_prefix = url_prefix.rstrip("/")
        self._event_emitter = event_emitter

    @property
    def root(self) -> Path:
        return self._root

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        self._event_emitter = emitter

    def _emit(self, operation: str, started: float, **payload: Any) -> None:
        if self._event_emitter is None:
            return
        duration_ms = (time.perf_counter() - started) * 1000.0
        filtered = {key: value for key, value in payload.items() if value is not None}
        self._event_emitter(FILE_OP, operation, payload=filtered, duration_ms=duration_ms)

    def resolve_path(self, relative_path: str) -> Path:
        """Return the absolute path for *relative_path*, refusing escapes from the root."""

        root = self._root.resolve()
        candidate = (root / relative_path).resolve()
        if candidate != root and root not in candidate.parents:
            raise UploadRejectedError("Invalid file path")
        return candidate

    def _url_for(self, relative_path: str) -> str:
        return f"{self._url_prefix}/{relative_path}"

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------
    def save(
        self,
        filename: str,
        content_type: Optional[str],
        data: bytes,
        *,
        folder: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """Store *data* and return ``(record, created)``.

        Identical content (same md5) is never stored twice: the existing
        record is returned with ``created`` set to ``False``.
        """

        mime = (content_type or "").split(";")[0].strip().lower()
        extension = ALLOWED_TYPES.get(mime)
        if extension is None:
            raise UploadRejectedError("Unsupported file type")
        if len(data) > self._max_bytes:
            raise UploadRejectedError("File too large")

        started = time.perf_counter()
        digest = hashlib.md5(data).hexdigest()
        existing = self._repository.find_one(UPLOAD_COLLECTION, Query().equals("hash", digest))
        if existing is not None:
            LOGGER.info("Upload %s matches existing file %s", filename, existing["_id"])
            return existing, False

        if mime.startswith("audio/"):
            resource_type = "raw"
        elif mime.startswith("video/"):
            resource_type = "video"
        else:
            resource_type = "image"

        folder_path = _sanitize_folder(folder)
        relative_path = f"{folder_path}/{digest}{extension}" if folder_path else f"{digest}{extension}"
        target = self.resolve_path(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)

        width: Optional[int] = None
        height: Optional[int] = None
        formats: Dict[str, Any] = {}
        written: List[Path] = []
        try:
            target.write_bytes(data)
            written.append(target)
            if resource_type == "image":
                width, height, formats = self._render_formats(data, target, extension, written)
        except UnidentifiedImageError as error:
            for path in written:
                with contextlib.suppress(OSError):
                    path.unlink()
            raise UploadRejectedError("Invalid image file") from error

        record = self._repository.insert(
            UPLOAD_COLLECTION,
            {
                "name": filename,
                "alternativeText": "",
                "caption": "",
                "hash": digest,
                "ext": extension,
                "mime": mime,
                "size": _size_kb(len(data)),
                "width": width,
                "height": height,
                "url": self._url_for(relative_path),
                "provider": "local",
                "provider_metadata": {
                    "public_id": relative_path[: -len(extension)],
                    "resource_type": resource_type,
                },
                "formats": formats,
                "related": [],
            },
        )
        self._emit(
            "upload.save",
            started,
            file_id=record["_id"],
            name=filename,
            mime=mime,
            bytes=len(data),
            formats=sorted(formats),
        )
        LOGGER.info("Stored upload %s as %s", filename, relative_path)
        return record, True

    def _render_formats(
        self,
        data: bytes,
        target: Path,
        extension: str,
        written: List[Path],
    ) -> Tuple[int, int, Dict[str, Any]]:
        formats: Dict[str, Any] = {}
        with Image.open(io.BytesIO(data)) as source:
            source.load()
            width, height = source.size
            image = ImageOps.exif_transpose(source)
            pil_format = _PIL_FORMATS[extension]
            if pil_format == "JPEG" and image.mode not in {"RGB", "L"}:
                image = image.convert("RGB")
            for name, max_width, max_height, crop in _IMAGE_FORMATS:
                if crop:
                    rendered = ImageOps.fit(image, (max_width, max_height or max_width))
                else:
                    rendered = image.copy()
                    if rendered.width > max_width:
                        ratio = max_width / float(rendered.width)
                        rendered = rendered.resize(
                            (max_width, max(1, round(rendered.height * ratio)))
                        )
                variant = target.with_name(f"{target.stem}_{name}{extension}")
                rendered.save(variant, format=pil_format)
                written.append(variant)
                relative = variant.relative_to(self._root.resolve()).as_posix()
                formats[name] = {
                    "url": self._url_for(relative),
                    "width": rendered.width,
                    "height": rendered.height,
                    "size": _size_kb(variant.stat().st_size),
                    "provider_metadata": {
                        "public_id": relative[: -len(extension)],
                        "resource_type": "image",
                    },
                }
        return width, height, formats

    # ------------------------------------------------------------------
    # Ownership bookkeeping
    # ------------------------------------------------------------------
    def attach_file(self, file_id: Optional[str], ref_id: str, kind: str, field: str) -> None:
        """Record that ``kind``/``ref_id`` uses *file_id* in *field* (set semantics)."""

        if not file_id or not is_object_id(file_id):
            return
        record = self._repository.get(UPLOAD_COLLECTION, file_id)
        if record is None:
            LOGGER.warning("Cannot attach missing upload %s to %s %s", file_id, kind, ref_id)
            return
        entry = {"ref": str(ref_id), "kind": kind, "field": field}
        related = list(record.get("related") or [])
        restored = bool(record.get("deleted"))
        if entry in related and not restored:
            return
        if entry not in related:
            related.append(entry)
        # A file that gains an owner is no longer pending deletion.
        self._repository.update(
            UPLOAD_COLLECTION,
            file_id,
            {"related": related},
            unset=DELETION_FIELDS if restored else (),
        )
        if restored:
            LOGGER.info("Restored soft-deleted upload %s for %s %s", file_id, kind, ref_id)
        LOGGER.debug("Attached upload %s to %s %s (%s)", file_id, kind, ref_id, field)

    def detach_file(self, file_id: Optional[str], ref_id: str) -> None:
        """Drop every reference *ref_id* holds on *file_id*."""

        if not file_id or not is_object_id(file_id):
            return
        record = self._repository.get(UPLOAD_COLLECTION, file_id)
        if record is None:
            return
        related = [
            entry for entry in record.get("related") or [] if str(entry.get("ref")) != str(ref_id)
        ]
        if len(related) == len(record.get("related") or []):
            return
        self._repository.update(UPLOAD_COLLECTION, file_id, {"related": related})
        LOGGER.debug("Detached upload %s from %s", file_id, ref_id)

    def delete_file_if_orphan(
        self,
        file_id: Optional[str],
        *,
        reason: str = "manual",
        related_to: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> bool:
        """Soft-delete *file_id* when nothing references it anymore.

        Returns ``True`` when the file was flagged by this call.
        """

        if not file_id or not is_object_id(file_id):
            return False
        record = self._repository.get(UPLOAD_COLLECTION, file_id)
        if record is None or record.get("related"):
            return False
        if record.get("deleted"):
            LOGGER.info("Upload %s (%s) is already flagged for deletion", file_id, record.get("name"))
            return False
        if reason not in DELETION_REASONS:
            reason = "manual"
        self._repository.update(
            UPLOAD_COLLECTION,
            file_id,
            {
                "deleted": True,
                "deletedAt": format_timestamp(),
                "deletedBy": user_id if user_id and is_object_id(user_id) else None,
                "deletionReason": reason,
                "relatedTo": related_to or f"UploadFile:{file_id}",
            },
        )
        LOGGER.info("Soft deleted upload %s (reason: %s)", record.get("name") or file_id, reason)
        return True

    def replace_reference(
        self,
        old_file_id: Optional[str],
        new_file_id: Optional[str],
        *,
        owner_id: str,
        kind: str,
        field: str,
        reason: str = "cover_replaced",
        user_id: Optional[str] = None,
    ) -> None:
        """Point ``owner_id``'s *field* at *new_file_id* and release the old file."""

        if new_file_id:
            self.attach_file(new_file_id, owner_id, kind, field)
        if old_file_id and old_file_id != new_file_id:
            self.detach_file(old_file_id, owner_id)
            self.delete_file_if_orphan(
                old_file_id,
                reason=reason,
                related_to=f"{kind}:{owner_id}",
                user_id=user_id,
            )

    def release(
        self,
        file_id: Optional[str],
        *,
        owner_id: str,
        kind: str,
        reason: str,
        user_id: Optional[str] = None,
    ) -> None:
        """Detach *file_id* from its owner and soft-delete it if it became an orphan."""

        if not file_id:
            return
        self.detach_file(file_id, owner_id)
        self.delete_file_if_orphan(
            file_id,
            reason=reason,
            related_to=f"{kind}:{owner_id}",
            user_id=user_id,
        )

    # ------------------------------------------------------------------
    # Removal and maintenance
    # ------------------------------------------------------------------
    def _disk_paths(self, record: Dict[str, Any]) -> List[Path]:
        paths: List[Path] = []
        urls = [record.get("url")]
        urls.extend((entry or {}).get("url") for entry in (record.get("formats") or {}).values())
        prefix = f"{self._url_prefix}/"
        for url in urls:
            if isinstance(url, str) and url.startswith(prefix):
                with contextlib.suppress(UploadRejectedError):
                    paths.append(self.resolve_path(url[len(prefix):]))
        return paths

    def _delete_from_disk(self, record: Dict[str, Any]) -> None:
        for path in self._disk_paths(record):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as error:
                LOGGER.error("Failed to remove %s: %s", path, error)

    def remove(self, file_id: str) -> Dict[str, Any]:
        """Hard-delete an unreferenced file from disk and the store."""

        record = self._repository.get(UPLOAD_COLLECTION, file_id)
        if record is None:
            raise DocumentNotFoundError(UPLOAD_COLLECTION, file_id)
        related = list(record.get("related") or [])
        if related:
            raise FileInUseError(file_id, related)
        started = time.perf_counter()
        self._delete_from_disk(record)
        self._repository.delete(UPLOAD_COLLECTION, file_id)
        self._emit("upload.remove", started, file_id=file_id, name=record.get("name"))
        return record

    def purge_candidates(self, older_than_days: int = 7) -> List[Dict[str, Any]]:
        """Return unreferenced files soft-deleted more than *older_than_days* ago, oldest first."""

        cutoff = format_timestamp(utc_now() - timedelta(days=max(older_than_days, 0)))
        flagged = self._repository.find(
            UPLOAD_COLLECTION,
            Query().equals("deleted", True).compare("deletedAt", "<", cutoff),
            sort=[("deletedAt", 1)],
        )
        candidates: List[Dict[str, Any]] = []
        for record in flagged:
            if record.get("related"):
                LOGGER.warning("Skipping purge of %s: it is referenced again", record["_id"])
                continue
            candidates.append(record)
        return candidates

    def purge(self, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Hard-delete *records* that are still soft-deleted and unreferenced."""

        purged: List[Dict[str, Any]] = []
        for candidate in records:
            record = self._repository.get(UPLOAD_COLLECTION, candidate["_id"])
            if record is None or not record.get("deleted") or record.get("related"):
                continue
            started = time.perf_counter()
            self._delete_from_disk(record)
            self._repository.delete(UPLOAD_COLLECTION, record["_id"])
            self._emit("upload.purge", started, file_id=record["_id"], name=record.get("name"))
            purged.append(record)
        LOGGER.info("Purged %s deleted upload(s)", len(purged))
        return purged

    def purge_deleted(self, older_than_days: int = 7) -> List[Dict[str, Any]]:
        """Hard-delete soft-deleted files flagged more than *older_than_days* ago."""

        return self.purge(self.purge_candidates(older_than_days))

    def usage(self) -> Dict[str, Any]:
        active = self._repository.find(UPLOAD_COLLECTION, Query().not_equals("deleted", True))
        deleted_count = self._repository.count(UPLOAD_COLLECTION, Query().equals("deleted", True))
        total_kb = sum(float(record.get("size") or 0) for record in active)
        disk = shutil.disk_usage(self._root)
        return {
            "files": len(active),
            "deletedFiles": deleted_count,
            "totalSizeKb": round(total_kb, 2),
            "disk": {"total": disk.total, "used": disk.used, "free": disk.free},
        }


__all__ = [
    "ALLOWED_TYPES",
    "DEFAULT_MAX_UPLOAD_BYTES",
    "DELETION_REASONS",
    "FileInUseError",
    "UPLOAD_COLLECTION",
    "UploadRejectedError",
    "UploadStore",
]
