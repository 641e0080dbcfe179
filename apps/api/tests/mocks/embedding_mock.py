"""Mock embedding providers for tier and search tests."""

import asyncio
from typing import Optional

from models.errors import Timeout

# First matching keyword decides the vector, so order matters
KEYWORD_VECTORS = [
    ("database", [1.0, 0.0, 0.0, 0.0]),
    ("postgres", [0.9, 0.1, 0.0, 0.0]),
    ("auth", [0.0, 1.0, 0.0, 0.0]),
    ("cookie", [0.0, 0.95, 0.05, 0.0]),
    ("jwt", [0.0, 0.9, 0.1, 0.0]),
    ("cache", [0.0, 0.0, 1.0, 0.0]),
]


class MockEmbeddingService:
    """Deterministic stand-in for EmbeddingService.

    A text maps to the vector of the first keyword it contains, otherwise to
    default_vector, which allows predictable similarity calculations.
    Setting `failure` makes the probe and every call raise it.
    """

    provider_name = "mock"

    def __init__(
        self,
        keyword_vectors: Optional[list[tuple[str, list[float]]]] = None,
        default_vector: Optional[list[float]] = None,
        failure: Optional[Exception] = None,
    ):
        self.keyword_vectors = keyword_vectors if keyword_vectors is not None else KEYWORD_VECTORS
        self.default_vector = default_vector or [0.0, 0.0, 0.0, 1.0]
        self.failure = failure
        self._call_history: list[str] = []
        self.probe_calls = 0

    @property
    def calls(self) -> list[str]:
        return self._call_history

    def vector_for(self, text: str) -> list[float]:
        lowered = text.lower()
        for keyword, vector in self.keyword_vectors:
            if keyword in lowered:
                return list(vector)
        return list(self.default_vector)

    async def embed_text(
        self, text: str, use_cache: bool = True, deadline: Optional[float] = None
    ) -> list[float]:
        self._call_history.append(text)
        if self.failure is not None:
            raise self.failure
        return self.vector_for(text)

    async def probe(self) -> None:
        self.probe_calls += 1
        if self.failure is not None:
            raise self.failure

    async def close(self) -> None:
        pass


class FlakyEmbeddingService(MockEmbeddingService):
    """Healthy during the probe, timing out on every embedding call."""

    async def probe(self) -> None:
        self.probe_calls += 1

    async def embed_text(
        self, text: str, use_cache: bool = True, deadline: Optional[float] = None
    ) -> list[float]:
        self._call_history.append(text)
        raise Timeout("embed_text", 1500)


class SlowStartEmbeddingService(MockEmbeddingService):
    """Healthy provider whose health check takes `startup_delay` seconds.

    Records the deadline each embedding call was given.
    """

    def __init__(self, startup_delay: float = 0.05, **kwargs):
        super().__init__(**kwargs)
        self.startup_delay = startup_delay
        self.deadlines: list[Optional[float]] = []

    async def probe(self) -> None:
        self.probe_calls += 1
        await asyncio.sleep(self.startup_delay)

    async def embed_text(
        self, text: str, use_cache: bool = True, deadline: Optional[float] = None
    ) -> list[float]:
        self.deadlines.append(deadline)
        return await super().embed_text(text, use_cache, deadline)
