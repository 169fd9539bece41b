from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backoffice.bootstrap import Bootstrapper
from backoffice.config import AppConfig
from backoffice.services.documents import DocumentRepository
from backoffice.services.uploads import UploadStore


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_file = config_dir / "default.json"
    config_file.write_text(
        """
        {
            \"storage_root\": \"storage\",\n
            \"database_file\": \"storage/backoffice.db\",\n
            \"uploads_root\": \"storage/uploads\"\n
        }
        """,
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/backoffice.db",
            "uploads_root": "storage/uploads",
        },
        base_path=tmp_path,
        environ={},
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def repository(temp_config: AppConfig) -> DocumentRepository:
    return DocumentRepository(temp_config)


@pytest.fixture()
def uploads(temp_config: AppConfig, repository: DocumentRepository) -> UploadStore:
    return UploadStore(temp_config, repository)
