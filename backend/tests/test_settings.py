from pathlib import Path

from archiveharvest.settings import Settings, _default_repo_root


def test_repo_root_is_checkout_when_running_from_source(tmp_path):
    (tmp_path / "pyproject.toml").write_text("[project]\nname = 'x'\n", encoding="utf-8")
    module = tmp_path / "backend" / "archiveharvest" / "settings.py"

    assert _default_repo_root(module) == tmp_path.resolve()


def test_repo_root_falls_back_to_working_directory_when_installed(tmp_path, monkeypatch):
    module = tmp_path / "venv" / "lib" / "python3.12" / "site-packages" / "archiveharvest" / "settings.py"
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)

    assert _default_repo_root(module) == Path.cwd()


def test_derived_paths_follow_data_and_public_dirs(tmp_path):
    settings = Settings(repo_root=tmp_path)

    assert settings.resolved_store_path == tmp_path / "data" / "collections.db"
    assert settings.items_jsonl_path == tmp_path / "data" / "items.jsonl"
    assert settings.captions_dir == tmp_path / "public" / "captions"
    assert settings.status_path == tmp_path / "data" / "transcribe" / "status.json"


def test_env_prefix(monkeypatch, tmp_path):
    monkeypatch.setenv("ARCHIVEHARVEST_REQUEST_INTERVAL_S", "1.5")
    monkeypatch.setenv("ARCHIVEHARVEST_DATA_DIR", str(tmp_path / "elsewhere"))

    settings = Settings(repo_root=tmp_path)

    assert settings.request_interval_s == 1.5
    assert settings.harvest_path == tmp_path / "elsewhere" / "harvest" / "items.jsonl"
