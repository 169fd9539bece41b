"""Configuration loading utilities for the media catalog backoffice."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".backoffice_write_check"
_DEFAULT_SECRET_KEY = "dev-secret-change-me"
_DEFAULT_TOKEN_TTL_MINUTES = 60 * 24 * 30
_DEFAULT_PUBLIC_URL = "http://localhost:8000"


def ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The helper attempts to create ``preferred`` and returns it when writable. If
    the preferred location is unavailable, each candidate in ``fallbacks`` is
    tried in order. The first writable fallback is returned along with a flag
    indicating that a fallback was used. When no candidate can be prepared the
    original ``preferred`` path is returned.
    """

    preferred = preferred.resolve()
    if ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _read_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-integer value %r for %s", raw, name)
        return default


@dataclass(frozen=True)
class SecuritySettings:
    """Signing parameters for admin session tokens."""

    secret_key: str = _DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    token_ttl_minutes: int = _DEFAULT_TOKEN_TTL_MINUTES
    cookie_name: str = "backoffice_session"

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "SecuritySettings":
        environ = os.environ if environ is None else environ
        secret = (environ.get("BACKOFFICE_SECRET_KEY") or "").strip()
        if not secret:
            LOGGER.warning("BACKOFFICE_SECRET_KEY is not set; using the development secret.")
            secret = _DEFAULT_SECRET_KEY
        return cls(
            secret_key=secret,
            token_ttl_minutes=_read_int(
                environ, "BACKOFFICE_TOKEN_TTL_MINUTES", _DEFAULT_TOKEN_TTL_MINUTES
            ),
        )


@dataclass(frozen=True)
class MailSettings:
    """SMTP parameters used for password reset messages."""

    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    public_url: str = _DEFAULT_PUBLIC_URL

    @property
    def configured(self) -> bool:
        return bool(self.host and self.port and self.user and self.password)

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "MailSettings":
        environ = os.environ if environ is None else environ
        port = _read_int(environ, "BACKOFFICE_SMTP_PORT", 0) or None
        return cls(
            host=(environ.get("BACKOFFICE_SMTP_HOST") or "").strip() or None,
            port=port,
            user=(environ.get("BACKOFFICE_SMTP_USER") or "").strip() or None,
            password=environ.get("BACKOFFICE_SMTP_PASSWORD") or None,
            public_url=(environ.get("BACKOFFICE_PUBLIC_URL") or "").strip().rstrip("/")
            or _DEFAULT_PUBLIC_URL,
        )


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and settings for the application."""

    storage_root: Path
    database_file: Path
    uploads_root: Path
    security: SecuritySettings = field(default_factory=SecuritySettings)
    mail: MailSettings = field(default_factory=MailSettings)

    @property
    def log_file(self) -> Path:
        return (self.storage_root / "backoffice.log").resolve()

    @classmethod
    def from_mapping(
        cls,
        mapping: Dict[str, Any],
        *,
        base_path: Path,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".media_backoffice" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (base_path / mapping["database_file"]).resolve()

        preferred_uploads = (base_path / mapping["uploads_root"]).resolve()
        uploads_root, _ = _select_writable_directory(
            preferred_uploads,
            label="uploads",
            fallbacks=(storage_root / "_uploads",),
        )

        if storage_fallback_used:
            try:
                relative_database = database_file.relative_to(preferred_storage)
            except ValueError:
                relative_database = None
            if relative_database is not None:
                fallback_database = (storage_root / relative_database).resolve()
                if ensure_writable_directory(fallback_database.parent):
                    LOGGER.warning(
                        "Preferred database location '%s' is not writable; using fallback '%s'.",
                        database_file,
                        fallback_database,
                    )
                    database_file = fallback_database

        if not ensure_writable_directory(database_file.parent):
            fallback_database = (storage_root / database_file.name).resolve()
            if fallback_database != database_file and ensure_writable_directory(
                fallback_database.parent
            ):
                LOGGER.warning(
                    "Preferred database location '%s' is not writable; using fallback '%s'.",
                    database_file,
                    fallback_database,
                )
                database_file = fallback_database
            else:
                LOGGER.warning(
                    "Database location '%s' is not writable and no fallback is available.",
                    database_file,
                )

        return cls(
            storage_root=storage_root,
            database_file=database_file,
            uploads_root=uploads_root,
            security=SecuritySettings.from_environ(environ),
            mail=MailSettings.from_environ(environ),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "MailSettings", "SecuritySettings", "ensure_writable_directory", "load_config"]
