import json
from pathlib import Path

import pytest

from biodash.config import EngineConfig
from biodash.service import DashboardService
from biodash.storage import JsonDocumentStore

from factories import store_document


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    path = tmp_path / "biodash.json"
    path.write_text(json.dumps(store_document()), encoding="utf-8")
    return path


@pytest.fixture
def store(store_path: Path) -> JsonDocumentStore:
    return JsonDocumentStore(str(store_path))


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(display_timezone="UTC")


@pytest.fixture
def service(store: JsonDocumentStore, engine_config: EngineConfig) -> DashboardService:
    return DashboardService(store, engine_config)
