from pathlib import Path

import portal.config as config_module
from portal.config import DEFAULT_AD_SCRIPT_URL, AppConfig, load_config


def test_storage_root_falls_back_when_preferred_is_unusable(
    tmp_path: Path, monkeypatch
) -> None:
    home_dir = tmp_path / "home"
    monkeypatch.setattr(config_module.Path, "home", lambda: home_dir)

    preferred_storage = tmp_path / "storage"
    preferred_storage.write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/portal.db",
            "secret_key": "abc",
        },
        base_path=tmp_path,
    )

    expected_storage = (home_dir / ".study_portal" / "storage").resolve()
    assert config.storage_root == expected_storage
    assert config.database_file == (expected_storage / "portal.db").resolve()
    assert config.backup_root == (expected_storage / "_backups").resolve()
    assert expected_storage.exists()


def test_secret_key_prefers_environment(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("STUDY_PORTAL_SECRET_KEY", "from-env")

    config = AppConfig.from_mapping(
        {"storage_root": "storage", "database_file": "storage/portal.db", "secret_key": "file"},
        base_path=tmp_path,
    )

    assert config.secret_key == "from-env"


def test_missing_secret_key_generates_one(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("STUDY_PORTAL_SECRET_KEY", raising=False)

    config = AppConfig.from_mapping(
        {"storage_root": "storage", "database_file": "storage/portal.db"},
        base_path=tmp_path,
    )

    assert len(config.secret_key) == 64
    assert config.ad_script_url == DEFAULT_AD_SCRIPT_URL


def test_load_config_reads_explicit_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("STUDY_PORTAL_SECRET_KEY", raising=False)
    config_file = tmp_path / "custom.json"
    config_file.write_text(
        '{"storage_root": "storage", "database_file": "storage/portal.db",'
        ' "secret_key": "k", "ad_script_url": "//ads.example.com/tag.js"}',
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.secret_key == "k"
    assert config.ad_script_url == "//ads.example.com/tag.js"
