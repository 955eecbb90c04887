"""Configuration for devassist-memory."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from utils import project_name_from_remote


def _env_path(name: str) -> Path | None:
    value = os.environ.get(name)
    return Path(value) if value else None


@lru_cache(maxsize=1)
def detect_project_name() -> str:
    """Get current project name from git remote or cwd. Cached per session."""
    try:
        result = subprocess.run(
            ["git", "config", "--get", "remote.origin.url"],
            capture_output=True,
            text=True,
            timeout=2,
        )
        if result.returncode == 0 and result.stdout.strip():
            return project_name_from_remote(result.stdout)
    except (OSError, subprocess.SubprocessError):  # git may not be available
        pass
    return Path.cwd().name or "default"


def _default_project_name() -> str:
    return os.environ.get("DEVASSIST_PROJECT") or detect_project_name()


@dataclass(frozen=True, slots=True)
class Config:
    """Server configuration with sensible defaults.

    Defaults are read from the environment when the instance is created, so
    tests can build an isolated Config without reloading the module.
    """

    project_name: str = field(default_factory=_default_project_name)
    project_path: Path = field(
        default_factory=lambda: Path(os.environ.get("DEVASSIST_PROJECT_PATH", Path.cwd()))
    )
    data_path: Path | None = field(default_factory=lambda: _env_path("DEVASSIST_DATA_PATH"))
    embedding_model: str = field(default_factory=lambda: os.environ.get("EMBEDDING_MODEL", "mpnet"))
    # sentence-transformers | ollama | google | hash
    embedding_provider: str = field(
        default_factory=lambda: os.environ.get("EMBEDDING_PROVIDER", "sentence-transformers")
    )
    ollama_base_url: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    default_limit: int = 10
    max_limit: int = 50
    vector_weight: float = 0.5  # Weight for vector score in hybrid fusion (keyword gets 1 - this)
    overfetch_multiplier: int = 2
    pattern_content_limit: int = 1000
    duplicate_threshold: float = 0.7

    @property
    def data_dir(self) -> Path:
        return self.data_path or self.project_path / ".devassist" / "data"

    @property
    def sqlite_path(self) -> Path:
        return self.data_dir / "sqlite" / f"{self.project_name}.db"

    @property
    def vector_dir(self) -> Path:
        return self.data_dir / "vectors" / self.project_name

    def ensure_directories(self) -> None:
        """Create the SQLite and vector directories if missing."""
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        self.vector_dir.mkdir(parents=True, exist_ok=True)


def get_api_key() -> str:
    """Get Google API key from environment or secrets file."""
    key = os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY")
    if key:
        return key
    secrets_path = Path.home() / ".secrets" / "GOOGLE_API_KEY"
    if secrets_path.exists():
        return secrets_path.read_text().strip()
    raise ValueError(
        "GOOGLE_API_KEY not found. Set environment variable or create ~/.secrets/GOOGLE_API_KEY"
    )
