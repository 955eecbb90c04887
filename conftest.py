"""Shared fixtures: an isolated memory store per test, hash embeddings (offline)."""

import pytest

from config import Config
from memory import MemoryService


def make_config(tmp_path, project: str = "alpha", model: str = "minilm") -> Config:
    return Config(
        project_name=project,
        project_path=tmp_path,
        data_path=tmp_path / "data",
        embedding_model=model,
        embedding_provider="hash",
    )


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def service(config):
    service = MemoryService.open(config)
    yield service
    service.close()
