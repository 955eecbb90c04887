"""Tests for the embedding provider (hash pipeline and injected factories)."""

import asyncio
import threading
import time

import numpy as np
import pytest

from embeddings import EmbeddingProvider, HashingPipeline, fit_dimension, get_model_spec
from errors import EmbeddingError


class CountingFactory:
    """Builds hash pipelines slowly and counts how often it is called."""

    def __init__(self, fail_first: bool = False, delay: float = 0.05):
        self.calls = 0
        self.fail_first = fail_first
        self.delay = delay
        self._lock = threading.Lock()

    def __call__(self, spec, config):
        with self._lock:
            self.calls += 1
            call = self.calls
        time.sleep(self.delay)
        if self.fail_first and call == 1:
            raise RuntimeError("model download interrupted")
        return HashingPipeline(spec)


class BrokenPipeline:
    def __init__(self, spec, config):
        self.spec = spec

    def embed(self, text):
        raise ConnectionError("embedding server unreachable")


class TestEmbeddingProvider:
    async def test_embedding_is_normalized(self, config):
        vector = await EmbeddingProvider(config).embed("Use asyncio.to_thread for blocking I/O")
        assert len(vector) == 384
        assert 0.99 < np.linalg.norm(vector) < 1.01

    async def test_identical_text_identical_vector(self, config):
        provider = EmbeddingProvider(config)
        assert await provider.embed("cache invalidation") == await provider.embed("cache invalidation")

    async def test_shared_words_are_closer(self, config):
        provider = EmbeddingProvider(config)
        e1 = await provider.embed("python async programming patterns")
        e2 = await provider.embed("python async code patterns")
        e3 = await provider.embed("recipe for chocolate cake baking")
        assert np.dot(e1, e2) > np.dot(e1, e3)

    async def test_concurrent_first_calls_build_once(self, config):
        factory = CountingFactory()
        provider = EmbeddingProvider(config, factory=factory)
        assert not provider.is_warm()

        vectors = await asyncio.gather(*(provider.embed(f"text {i}") for i in range(8)))

        assert factory.calls == 1
        assert len(vectors) == 8
        assert provider.is_warm()

    async def test_timed_out_caller_does_not_break_later_calls(self, config):
        factory = CountingFactory(delay=0.3)
        provider = EmbeddingProvider(config, factory=factory)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(provider.embed("jwt auth"), 0.05)
        await asyncio.sleep(0.5)

        vector = await provider.embed("jwt auth")
        assert len(vector) == 384
        assert factory.calls == 1
        assert provider.is_warm()

    async def test_cancelled_waiter_does_not_cancel_others(self, config):
        factory = CountingFactory(delay=0.2)
        provider = EmbeddingProvider(config, factory=factory)

        cancelled = asyncio.ensure_future(provider.embed("first caller"))
        surviving = asyncio.ensure_future(provider.embed("second caller"))
        await asyncio.sleep(0.05)
        cancelled.cancel()

        vector = await surviving
        assert len(vector) == 384
        assert cancelled.cancelled()
        assert factory.calls == 1

    async def test_failed_build_is_retried(self, config):
        factory = CountingFactory(fail_first=True)
        provider = EmbeddingProvider(config, factory=factory)

        with pytest.raises(EmbeddingError, match="model download interrupted"):
            await provider.get_pipeline()
        assert not provider.is_warm()

        await provider.get_pipeline()
        assert factory.calls == 2
        assert provider.is_warm()

    async def test_embed_failure_falls_back_to_hash(self, config):
        provider = EmbeddingProvider(config, factory=BrokenPipeline)
        vector = await provider.embed("jwt auth")
        expected = await EmbeddingProvider(config).embed("jwt auth")
        assert vector == pytest.approx(expected)

    async def test_unknown_model(self, config):
        provider = EmbeddingProvider(config)
        with pytest.raises(EmbeddingError, match="Unknown embedding model"):
            await provider.embed("text", model_key="nope")

    def test_unknown_provider(self, config):
        from dataclasses import replace

        with pytest.raises(EmbeddingError, match="Unknown embedding provider"):
            EmbeddingProvider(replace(config, embedding_provider="nope"))

    def test_dimension_per_model(self, config):
        provider = EmbeddingProvider(config)
        assert provider.dimension() == 384
        assert provider.dimension("mpnet") == 768


class TestHelpers:
    def test_fit_dimension(self):
        assert len(fit_dimension(np.ones(10), 4)) == 4
        padded = fit_dimension(np.ones(2), 4)
        assert padded.tolist() == [1.0, 1.0, 0.0, 0.0]

    def test_model_spec(self):
        assert get_model_spec("gte-small").dimensions == 384
