from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.bootstrap import Bootstrapper
from portal.config import AppConfig
from portal.services.storage import ContentRepository


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.delenv("STUDY_PORTAL_SECRET_KEY", raising=False)
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/portal.db",
            "secret_key": "test-secret",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def repository(temp_config: AppConfig) -> ContentRepository:
    return ContentRepository(temp_config)
