"""Embedding provider for decision memory with Redis caching and a circuit breaker.

Features:
- Lazy client load, memoized once per process; concurrent first callers share
  the same in-flight load
- Hard wall-clock budget per call (settings.embedding_timeout_ms) covering the
  cache lookup, the client load and the provider request
- Redis caching with configurable TTL, skipped silently when Redis is down
- Circuit breaker so a dead backend fails fast instead of timing out each call

Every failure surfaces as ProviderUnavailable or Timeout. Callers on the read
path catch those and downgrade to keyword search.
"""

import asyncio
import hashlib
import json
from typing import Any, List

import redis.asyncio as redis
from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI

from config import Settings, get_settings
from models.errors import ProviderUnavailable, Timeout
from utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen, get_circuit_breaker
from utils.logging import get_logger

logger = get_logger(__name__)


# Exceptions that should trip the circuit breaker
EMBEDDING_CIRCUIT_BREAKER_EXCEPTIONS = {
    APIConnectionError,
    APITimeoutError,
    APIError,
    ConnectionError,
    TimeoutError,
    OSError,
}


def build_decision_text(decision: Any) -> str:
    """Compose the text embedded for a decision.

    Accepts a DecisionCreate, a Decision, an ORM row or a plain dict. The
    narrative fields are appended only when present.
    """

    def field(name: str, default=None):
        if isinstance(decision, dict):
            return decision.get(name, default)
        return getattr(decision, name, default)

    outcome = field("outcome")
    outcome = getattr(outcome, "value", outcome) or "pending"
    confidence = field("confidence")
    confidence = 0.5 if confidence is None else confidence

    parts = [
        f"Topic: {field('topic', '')}",
        f"Decision: {field('decision', '')}",
        f"Reasoning: {field('reasoning', '')}",
        f"Outcome: {outcome}",
        f"Confidence: {confidence:.2f}",
    ]

    evidence = field("evidence") or []
    if evidence:
        parts.append(f"Evidence: {'; '.join(evidence)}")
    alternatives = field("alternatives") or []
    if alternatives:
        parts.append(f"Alternatives: {'; '.join(alternatives)}")
    risks = field("risks")
    if risks:
        parts.append(f"Risks: {risks}")

    return "\n".join(parts)


class EmbeddingService:
    """Turn text into vectors through an OpenAI-compatible embeddings endpoint.

    The API key is read via SecretStr.get_secret_value() only when the client
    is first built.
    """

    provider_name = "openai"

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self.model = self._settings.embedding_model
        self.dimensions = self._settings.embedding_dimensions
        self._client: AsyncOpenAI | None = None
        self._load_task: asyncio.Task | None = None
        self._redis: redis.Redis | None = None
        self._redis_checked = False

        self._circuit_breaker = get_circuit_breaker(
            name="embeddings",
            failure_threshold=3,
            recovery_timeout=30.0,
            success_threshold=1,
            exceptions=EMBEDDING_CIRCUIT_BREAKER_EXCEPTIONS,
        )

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        """Get the circuit breaker for monitoring."""
        return self._circuit_breaker

    @property
    def timeout_ms(self) -> int:
        return self._settings.embedding_timeout_ms

    # ------------------------------------------------------------------
    # Client loading
    # ------------------------------------------------------------------

    async def _load_client(self) -> AsyncOpenAI:
        api_key = self._settings.get_embedding_api_key()
        base_url = self._settings.embedding_base_url or None
        if not api_key and not base_url:
            raise ProviderUnavailable(self.provider_name, "no embedding API key configured")

        logger.info(f"Loading embedding client for model {self.model}")
        # Self-hosted OpenAI-compatible servers usually accept any key
        return AsyncOpenAI(api_key=api_key or "unused", base_url=base_url)

    async def get_client(self) -> AsyncOpenAI:
        """Return the client, building it at most once per process.

        A failed load is memoized too, so later calls fail fast with the same
        reason instead of retrying the load.
        """
        if self._client is not None:
            return self._client
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load_client())
        try:
            # Shielded so one cancelled caller does not cancel the shared load
            self._client = await asyncio.shield(self._load_task)
        except ProviderUnavailable:
            raise
        except Exception as e:
            raise ProviderUnavailable(self.provider_name, f"client load failed: {e}") from e
        return self._client

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def _get_redis(self) -> redis.Redis | None:
        """Get or create Redis connection for caching."""
        if self._redis is None and not self._redis_checked:
            self._redis_checked = True
            if not self._settings.redis_url:
                return None
            try:
                self._redis = redis.from_url(
                    self._settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=self._settings.embedding_timeout,
                    socket_timeout=self._settings.embedding_timeout,
                )
                await self._redis.ping()
            except Exception as e:
                logger.warning(f"Redis connection failed, embedding cache disabled: {e}")
                self._redis = None
        return self._redis

    def _get_cache_key(self, text: str) -> str:
        """Format: emb:{model}:{md5(text)}"""
        text_hash = hashlib.md5(text.encode("utf-8")).hexdigest()
        return f"emb:{self.model}:{text_hash}"

    async def _get_cached_embedding(self, cache_key: str) -> List[float] | None:
        redis_client = await self._get_redis()
        if redis_client is None:
            return None

        try:
            cached = await redis_client.get(cache_key)
            if cached:
                logger.debug(f"Cache hit for {cache_key}")
                return json.loads(cached)
        except Exception as e:
            logger.warning(f"Cache read error: {e}")

        return None

    async def _set_cached_embedding(self, cache_key: str, embedding: List[float]) -> None:
        redis_client = await self._get_redis()
        if redis_client is None:
            return

        try:
            await redis_client.setex(
                cache_key,
                self._settings.embedding_cache_ttl,
                json.dumps(embedding),
            )
        except Exception as e:
            logger.warning(f"Cache write error: {e}")

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def _create_embedding(self, client: AsyncOpenAI, text: str) -> List[float]:
        kwargs: dict[str, Any] = {
            "input": [text],
            "model": self.model,
            "encoding_format": "float",
        }
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        response = await client.embeddings.create(**kwargs)
        return list(response.data[0].embedding)

    def deadline(self) -> float:
        """Loop time at which a call starting now runs out of budget."""
        return asyncio.get_running_loop().time() + self._settings.embedding_timeout

    @staticmethod
    def _remaining(deadline: float) -> float:
        return max(deadline - asyncio.get_running_loop().time(), 0.0)

    async def embed_text(
        self,
        text: str,
        use_cache: bool = True,
        deadline: float | None = None,
    ) -> List[float]:
        """
        Embed a single text within the configured time budget.

        Args:
            text: The text to embed
            use_cache: Read and write the Redis cache (the health probe skips it)
            deadline: Loop time the whole call must finish by; defaults to one
                budget from now. Callers pass their own to charge earlier work
                (such as the first tier probe) against the same budget.

        Returns:
            List of floats representing the embedding vector

        Raises:
            ProviderUnavailable: Backend not configured, unreachable, or circuit open
            Timeout: The call exceeded embedding_timeout_ms; it is not retried
        """
        if deadline is None:
            deadline = self.deadline()

        cacheable = (
            use_cache and len(text) >= self._settings.embedding_cache_min_text_length
        )
        cache_key = self._get_cache_key(text) if cacheable else None

        try:
            if cache_key:
                cached = await asyncio.wait_for(
                    self._get_cached_embedding(cache_key), self._remaining(deadline)
                )
                if cached is not None:
                    return cached

            client = await asyncio.wait_for(self.get_client(), self._remaining(deadline))

            async with self._circuit_breaker:
                embedding = await asyncio.wait_for(
                    self._create_embedding(client, text),
                    timeout=self._remaining(deadline),
                )
        except CircuitBreakerOpen as e:
            raise ProviderUnavailable(self.provider_name, str(e)) from e
        except asyncio.TimeoutError as e:
            raise Timeout("embed_text", self.timeout_ms) from e
        except (APIError, ConnectionError, OSError) as e:
            raise ProviderUnavailable(self.provider_name, f"{type(e).__name__}: {e}") from e

        if cache_key:
            try:
                await asyncio.wait_for(
                    self._set_cached_embedding(cache_key, embedding),
                    self._remaining(deadline),
                )
            except asyncio.TimeoutError:
                logger.warning(f"Cache write for {cache_key} skipped, budget spent")

        return embedding

    async def embed_decision(self, decision: Any) -> List[float]:
        """Embed a decision using its enriched text representation."""
        return await self.embed_text(build_decision_text(decision))

    async def probe(self) -> None:
        """Embed a fixed probe text. Raises if the provider is unusable."""
        vector = await self.embed_text(self._settings.embedding_probe_text, use_cache=False)
        if not vector:
            raise ProviderUnavailable(self.provider_name, "provider returned an empty vector")

    async def close(self):
        """Close connections."""
        if self._redis:
            await self._redis.close()
            self._redis = None
        if self._client is not None:
            await self._client.close()
            self._client = None


# Singleton instance
_embedding_service: EmbeddingService | None = None


def get_embedding_service() -> EmbeddingService:
    """Get the embedding service singleton."""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = EmbeddingService()
    return _embedding_service


async def close_embedding_service() -> None:
    global _embedding_service
    if _embedding_service is not None:
        await _embedding_service.close()
        _embedding_service = None
