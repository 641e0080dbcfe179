"""Mock implementations for testing."""

from .embedding_mock import (
    KEYWORD_VECTORS,
    FlakyEmbeddingService,
    MockEmbeddingService,
    SlowStartEmbeddingService,
)

__all__ = [
    "KEYWORD_VECTORS",
    "FlakyEmbeddingService",
    "MockEmbeddingService",
    "SlowStartEmbeddingService",
]
