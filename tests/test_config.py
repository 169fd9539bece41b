from pathlib import Path

import backoffice.config as config_module
from backoffice.config import AppConfig, MailSettings, SecuritySettings, ensure_writable_directory, load_config


def test_uploads_root_falls_back_when_preferred_is_unusable(tmp_path: Path) -> None:
    storage = tmp_path / "storage"
    storage.mkdir()

    preferred_uploads = tmp_path / "uploads"
    preferred_uploads.write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/backoffice.db",
            "uploads_root": "uploads",
        },
        base_path=tmp_path,
        environ={},
    )

    expected_fallback = (storage / "_uploads").resolve()
    assert config.uploads_root == expected_fallback
    assert expected_fallback.exists()
    assert expected_fallback.is_dir()


def test_storage_root_falls_back_when_preferred_is_unusable(
    tmp_path: Path, monkeypatch
) -> None:
    home_dir = tmp_path / "home"
    monkeypatch.setattr(config_module.Path, "home", lambda: home_dir)

    preferred_storage = tmp_path / "storage"
    preferred_storage.write_text("not a directory", encoding="utf-8")

    preferred_uploads = tmp_path / "uploads"
    preferred_uploads.write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/backoffice.db",
            "uploads_root": "uploads",
        },
        base_path=tmp_path,
        environ={},
    )

    expected_storage = (home_dir / ".media_backoffice" / "storage").resolve()
    expected_database = (expected_storage / "backoffice.db").resolve()
    expected_uploads = (expected_storage / "_uploads").resolve()

    assert config.storage_root == expected_storage
    assert config.database_file == expected_database
    assert config.uploads_root == expected_uploads
    assert expected_storage.exists()
    assert expected_uploads.exists()


def test_settings_are_read_from_the_environment(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/backoffice.db",
            "uploads_root": "storage/uploads",
        },
        base_path=tmp_path,
        environ={
            "BACKOFFICE_SECRET_KEY": "s3cret",
            "BACKOFFICE_TOKEN_TTL_MINUTES": "15",
            "BACKOFFICE_SMTP_HOST": "smtp.example.com",
            "BACKOFFICE_SMTP_PORT": "465",
            "BACKOFFICE_SMTP_USER": "robot@example.com",
            "BACKOFFICE_SMTP_PASSWORD": "pw",
            "BACKOFFICE_PUBLIC_URL": "https://admin.example.com/",
        },
    )

    assert config.security.secret_key == "s3cret"
    assert config.security.token_ttl_minutes == 15
    assert config.mail.configured
    assert config.mail.port == 465
    assert config.mail.public_url == "https://admin.example.com"
    assert config.log_file == (tmp_path / "storage" / "backoffice.log").resolve()


def test_missing_environment_uses_development_defaults() -> None:
    security = SecuritySettings.from_environ({"BACKOFFICE_TOKEN_TTL_MINUTES": "soon"})
    mail = MailSettings.from_environ({})

    assert security.secret_key
    assert security.token_ttl_minutes == SecuritySettings().token_ttl_minutes
    assert not mail.configured
    assert mail.public_url == "http://localhost:8000"


def test_load_config_reads_json_file(tmp_path: Path) -> None:
    config_file = tmp_path / "custom.json"
    config_file.write_text(
        '{"storage_root": "data", "database_file": "data/catalog.db", "uploads_root": "data/files"}',
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.database_file.name == "catalog.db"
    assert config.uploads_root.name == "files"


def test_ensure_writable_directory(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")

    assert ensure_writable_directory(tmp_path / "nested" / "dir") is True
    assert list((tmp_path / "nested" / "dir").iterdir()) == []
    assert ensure_writable_directory(blocker / "child") is False
