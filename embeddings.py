"""
Embedding generation for devassist-memory.

One pipeline is built per model key on first use (loading a model is the
expensive part) and reused for every later call. Concurrent first callers
await the same initialization task, so a model is never loaded twice.

Backends:
- sentence-transformers: local model, no API calls
- ollama: local HTTP server
- google: Gemini embedding API
- hash: deterministic feature hashing, no model (tests and last-resort fallback)
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Protocol

import numpy as np

from config import Config, get_api_key
from errors import EmbeddingError
from utils import log

if TYPE_CHECKING:
    from google.genai import Client as GenAIClient


@dataclass(frozen=True, slots=True)
class ModelSpec:
    key: str
    name: str  # sentence-transformers / Hugging Face id
    dimensions: int
    description: str
    ollama_name: str


EMBEDDING_MODELS: dict[str, ModelSpec] = {
    "minilm": ModelSpec(
        "minilm",
        "sentence-transformers/all-MiniLM-L6-v2",
        384,
        "Fast, lightweight, good for basic matching",
        "all-minilm",
    ),
    "mpnet": ModelSpec(
        "mpnet",
        "sentence-transformers/all-mpnet-base-v2",
        768,
        "Higher quality, better semantic understanding",
        "nomic-embed-text",
    ),
    "gte-small": ModelSpec(
        "gte-small",
        "thenlper/gte-small",
        384,
        "Strong quality at the same dimensions as minilm",
        "all-minilm",
    ),
    "multilingual": ModelSpec(
        "multilingual",
        "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2",
        384,
        "Good for multi-language codebases",
        "all-minilm",
    ),
}


def get_model_spec(model_key: str) -> ModelSpec:
    try:
        return EMBEDDING_MODELS[model_key]
    except KeyError:
        raise EmbeddingError(
            f"Unknown embedding model '{model_key}'. Valid: {sorted(EMBEDDING_MODELS)}"
        ) from None


def normalize(vector: np.ndarray) -> np.ndarray:
    """L2-normalize so cosine similarity reduces to a dot product."""
    norm = np.linalg.norm(vector)
    return vector / norm if norm > 0 else vector


def fit_dimension(vector: np.ndarray, dim: int) -> np.ndarray:
    """Handle dimension mismatch by truncation/padding."""
    if len(vector) > dim:
        return vector[:dim]
    if len(vector) < dim:
        return np.concatenate([vector, np.zeros(dim - len(vector))])
    return vector


class EmbeddingPipeline(Protocol):
    spec: ModelSpec

    def embed(self, text: str) -> np.ndarray: ...


# =============================================================================
# Pipelines
# =============================================================================


class SentenceTransformerPipeline:
    """Local sentence-transformers model. Loading takes seconds."""

    def __init__(self, spec: ModelSpec, config: Config):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise EmbeddingError(
                "sentence-transformers not installed. "
                "Install with: pip install 'devassist-memory[local]'"
            ) from e
        log(f"Loading embedding model: {spec.name}")
        self.spec = spec
        self._model = SentenceTransformer(spec.name)

    def embed(self, text: str) -> np.ndarray:
        vector = self._model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        return fit_dimension(np.asarray(vector, dtype=np.float64), self.spec.dimensions)


class OllamaPipeline:
    """Embeddings from a local Ollama server."""

    def __init__(self, spec: ModelSpec, config: Config):
        import requests

        self.spec = spec
        self._url = f"{config.ollama_base_url}/api/embeddings"
        self._session = requests.Session()

    def embed(self, text: str) -> np.ndarray:
        response = self._session.post(
            self._url,
            json={"model": self.spec.ollama_name, "prompt": text},
            timeout=30,
        )
        response.raise_for_status()
        embedding = np.array(response.json().get("embedding", []), dtype=np.float64)
        if embedding.size == 0:
            raise EmbeddingError(f"Ollama returned no embedding for model {self.spec.ollama_name}")
        return fit_dimension(embedding, self.spec.dimensions)


class GooglePipeline:
    """Embeddings from the Google GenAI API."""

    model_name = "gemini-embedding-001"

    def __init__(self, spec: ModelSpec, config: Config):
        from google import genai

        self.spec = spec
        self._client: GenAIClient = genai.Client(api_key=get_api_key())

    def embed(self, text: str) -> np.ndarray:
        from google.genai import types

        response = self._client.models.embed_content(
            model=self.model_name,
            contents=text,
            config=types.EmbedContentConfig(
                task_type="SEMANTIC_SIMILARITY", output_dimensionality=self.spec.dimensions
            ),
        )
        return np.array(response.embeddings[0].values, dtype=np.float64)


_TOKEN_RE = re.compile(r"\w+")


class HashingPipeline:
    """
    Deterministic feature-hashing embedding.

    Not real semantic meaning, but texts sharing words land close together and
    identical texts produce identical vectors. Never fails.
    """

    def __init__(self, spec: ModelSpec, config: Config | None = None):
        self.spec = spec

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.spec.dimensions)
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode()).digest()
            index = int.from_bytes(digest[:4], "little") % self.spec.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign
        return vector


PipelineFactory = Callable[[ModelSpec, Config], EmbeddingPipeline]

PIPELINE_FACTORIES: dict[str, PipelineFactory] = {
    "sentence-transformers": SentenceTransformerPipeline,
    "ollama": OllamaPipeline,
    "google": GooglePipeline,
    "hash": HashingPipeline,
}


# =============================================================================
# Provider
# =============================================================================


class EmbeddingProvider:
    """Turns text into normalized vectors, warming one pipeline per model key."""

    def __init__(self, config: Config, factory: PipelineFactory | None = None):
        self.config = config
        provider = config.embedding_provider.lower()
        if factory is None:
            try:
                factory = PIPELINE_FACTORIES[provider]
            except KeyError:
                raise EmbeddingError(
                    f"Unknown embedding provider '{provider}'. Valid: {sorted(PIPELINE_FACTORIES)}"
                ) from None
        self._factory = factory
        self._pipelines: dict[str, EmbeddingPipeline] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self._fallbacks: dict[str, HashingPipeline] = {}

    @property
    def default_model(self) -> str:
        return self.config.embedding_model

    def dimension(self, model_key: str | None = None) -> int:
        return get_model_spec(model_key or self.default_model).dimensions

    def is_warm(self, model_key: str | None = None) -> bool:
        return (model_key or self.default_model) in self._pipelines

    def _build_done(self, key: str, task: asyncio.Task) -> None:
        """Settle a finished build. Failed or cancelled builds are not cached."""
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled() and task.exception() is None:
            self._pipelines[key] = task.result()

    async def get_pipeline(self, model_key: str | None = None) -> EmbeddingPipeline:
        """Return the warm pipeline for a model, building it at most once.

        The build is shielded: a cancelled caller stops waiting but the build
        keeps running for everyone else.
        """
        key = model_key or self.default_model
        pipeline = self._pipelines.get(key)
        if pipeline is not None:
            return pipeline

        task = self._pending.get(key)
        if task is None:
            spec = get_model_spec(key)
            task = asyncio.ensure_future(asyncio.to_thread(self._factory, spec, self.config))
            self._pending[key] = task
            task.add_done_callback(functools.partial(self._build_done, key))
        try:
            pipeline = await asyncio.shield(task)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Failed to load embedding model '{key}': {e}") from e

        self._pipelines[key] = pipeline
        return pipeline

    async def embed(self, text: str, model_key: str | None = None) -> list[float]:
        """Generate an L2-normalized embedding for text."""
        pipeline = await self.get_pipeline(model_key)
        try:
            vector = await asyncio.to_thread(pipeline.embed, text)
        except Exception as e:
            if isinstance(pipeline, HashingPipeline):
                raise EmbeddingError(f"Embedding failed: {e}") from e
            log(f"Embedding error ({pipeline.spec.key}): {e}; using hash fallback (poor semantic quality)")
            fallback = self._fallbacks.setdefault(pipeline.spec.key, HashingPipeline(pipeline.spec))
            vector = fallback.embed(text)
        return normalize(np.asarray(vector, dtype=np.float64)).tolist()

    def close(self) -> None:
        self._pipelines.clear()
        self._fallbacks.clear()
