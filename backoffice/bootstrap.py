"""Bootstrap logic that prepares runtime directories and the SQLite document store."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        self._ensure_database()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        for label, path in (
            ("storage", self._config.storage_root),
            ("uploads", self._config.uploads_root),
        ):
            if not config_module.ensure_writable_directory(path):
                raise BootstrapError(f"The {label} directory '{path}' is not writable")
            LOGGER.debug("Ensured directory exists: %s", path)

    def _ensure_database(self) -> None:
        LOGGER.debug("Ensuring database schema at %s", self._config.database_file)
        connection = sqlite3.connect(self._config.database_file)
        try:
            cursor = connection.cursor()
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT,
                    PRIMARY KEY (collection, id)
                );

                CREATE INDEX IF NOT EXISTS idx_documents_collection
                    ON documents(collection);

                CREATE UNIQUE INDEX IF NOT EXISTS idx_documents_slug
                    ON documents(collection, json_extract(body, '$.slug'))
                    WHERE json_extract(body, '$.slug') IS NOT NULL;

                CREATE UNIQUE INDEX IF NOT EXISTS idx_admins_email
                    ON documents(json_extract(body, '$.email'))
                    WHERE collection = 'admins';

                CREATE INDEX IF NOT EXISTS idx_upload_files_hash
                    ON documents(json_extract(body, '$.hash'))
                    WHERE collection = 'upload_files';
                """
            )
            connection.commit()

            def _column_exists(table: str, column: str) -> bool:
                cursor.execute(f"PRAGMA table_info({table})")
                return any(row[1] == column for row in cursor.fetchall())

            for column in ("created_at", "updated_at"):
                if not _column_exists("documents", column):
                    cursor.execute(f"ALTER TABLE documents ADD COLUMN {column} TEXT")
                    cursor.execute(
                        f"UPDATE documents SET {column} = json_extract(body, ?)",
                        ("$.createdAt" if column == "created_at" else "$.updatedAt",),
                    )
                    connection.commit()
                    LOGGER.debug("Added column %s to documents table", column)
        except sqlite3.DatabaseError as error:
            raise BootstrapError(f"Could not prepare the database: {error}") from error
        finally:
            connection.close()


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
