"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

from typer.testing import CliRunner

import run
from backoffice.services.accounts import AccountService
from backoffice.services.documents import DocumentRepository
from backoffice.services.naming import format_timestamp, utc_now
from backoffice.services.uploads import UPLOAD_COLLECTION, UploadStore


def _setup_serve(monkeypatch, tmp_path, upload_limit, *, open_browser=False):
    captured = {}

    monkeypatch.setattr(
        run,
        "initialize_app",
        lambda: SimpleNamespace(storage_root=tmp_path),
    )
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "DocumentRepository", lambda config: object())

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def fake_create_app(repository, config, root_path):
        captured["root_path"] = root_path
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)

    class DummyConfig:
        def __init__(self, app, limit_max_request_size=None, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = dict(kwargs)
            if limit_max_request_size is not None:
                captured["config_kwargs"]["limit_max_request_size"] = limit_max_request_size

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    class DummyThread:
        def __init__(self, target, daemon):
            self._target = target
            captured["thread_daemon"] = daemon

        def start(self):
            captured["thread_started"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)
    monkeypatch.setattr(run.threading, "Thread", DummyThread)
    monkeypatch.setattr(run.webbrowser, "open", lambda *args, **kwargs: True)
    monkeypatch.setattr(run, "get_max_upload_bytes", lambda: upload_limit)

    run.serve(host="0.0.0.0", port=9000, root_path="backoffice/", open_browser=open_browser)

    captured["app_state_server"] = dummy_app.state.server
    return captured


def test_serve_applies_request_size_limit(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=50 * 1024 * 1024)

    assert captured["config_kwargs"]["limit_max_request_size"] == 50 * 1024 * 1024
    assert captured["config_kwargs"]["root_path"] == "/backoffice"
    assert captured["root_path"] == "/backoffice"
    assert captured["app_state_server"] is captured["server_instance"]
    assert captured["server_run"] is True
    assert "thread_started" not in captured


def test_serve_omits_limit_when_disabled(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=0)

    assert "limit_max_request_size" not in captured["config_kwargs"]


def test_serve_opens_browser_on_request(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=0, open_browser=True)

    assert captured["thread_started"] is True
    assert captured["thread_daemon"] is True


def _use_temp_config(monkeypatch, temp_config):
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "configure_logging", lambda *args, **kwargs: None)


def test_create_super_admin_command(monkeypatch, temp_config):
    _use_temp_config(monkeypatch, temp_config)
    runner = CliRunner()
    arguments = ["create-super-admin", "--name", "Root", "--email", "root@example.com", "--password", "rootpass1"]

    result = runner.invoke(run.cli, arguments)
    assert result.exit_code == 0, result.output
    assert "root@example.com" in result.output

    accounts = AccountService(DocumentRepository(temp_config), temp_config.security)
    assert accounts.find_by_email("root@example.com")["role"] == "super_admin"

    duplicate = runner.invoke(run.cli, arguments)
    assert duplicate.exit_code == 1

    short = runner.invoke(
        run.cli,
        ["create-super-admin", "--name", "X", "--email", "x@example.com", "--password", "short"],
    )
    assert short.exit_code == 1


def test_sync_status_command(monkeypatch, temp_config):
    _use_temp_config(monkeypatch, temp_config)
    repository = DocumentRepository(temp_config)
    repository.insert("cds", {"title": "Legacy", "published_at": format_timestamp(), "status": "draft"})
    repository.insert("photos", {"title": "Consistent", "status": "draft", "publishedAt": None, "published_at": None})

    result = CliRunner().invoke(run.cli, ["sync-status"])

    assert result.exit_code == 0, result.output
    assert "cds: 1 document(s) updated" in result.output
    assert "photos: 0 document(s) updated" in result.output
    cd = repository.find_one("cds")
    assert cd["status"] == "published"
    assert cd["publishedAt"] == cd["published_at"]


def test_purge_deleted_files_command(monkeypatch, temp_config):
    _use_temp_config(monkeypatch, temp_config)
    repository = DocumentRepository(temp_config)
    store = UploadStore(temp_config, repository)
    record, _ = store.save("old.mp3", "audio/mpeg", b"o" * 2048)
    store.delete_file_if_orphan(record["_id"], reason="cover_replaced")
    repository.update(
        UPLOAD_COLLECTION,
        record["_id"],
        {"deletedAt": format_timestamp(utc_now() - timedelta(days=10))},
    )
    runner = CliRunner()

    nothing = runner.invoke(run.cli, ["purge-deleted-files", "--days", "30"])
    assert nothing.exit_code == 0, nothing.output
    assert "0 file(s) purged." in nothing.output

    declined = runner.invoke(run.cli, ["purge-deleted-files"], input="n\n")
    assert declined.exit_code == 1
    assert "old.mp3  2.00 KB  10 day(s) ago  cover_replaced" in declined.output
    assert "Permanently delete 1 file(s)?" in declined.output
    assert repository.get(UPLOAD_COLLECTION, record["_id"]) is not None

    confirmed = runner.invoke(run.cli, ["purge-deleted-files", "--yes"])
    assert confirmed.exit_code == 0, confirmed.output
    assert "Purged old.mp3" in confirmed.output
    assert "1 file(s) purged." in confirmed.output
    assert repository.get(UPLOAD_COLLECTION, record["_id"]) is None


def test_overview_command_renders(monkeypatch, temp_config):
    _use_temp_config(monkeypatch, temp_config)

    result = CliRunner().invoke(run.cli, ["overview"])

    assert result.exit_code == 0, result.output
    assert "Media Catalog Overview" in result.output
