# Models
from models.errors import (
    ConstraintViolation,
    DecisionMemoryError,
    NotFound,
    ProviderUnavailable,
    Timeout,
    ValidationError,
)
from models.schemas import (
    Decision,
    DecisionCreate,
    Outcome,
    RelationshipType,
    TierInfo,
)

__all__ = [
    "ConstraintViolation",
    "Decision",
    "DecisionCreate",
    "DecisionMemoryError",
    "NotFound",
    "Outcome",
    "ProviderUnavailable",
    "RelationshipType",
    "TierInfo",
    "Timeout",
    "ValidationError",
]
