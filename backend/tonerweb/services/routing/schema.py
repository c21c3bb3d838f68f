"""
Types shared by the classifier and the orchestrator.
"""
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class QueryType(str, Enum):
    """Declaration order is the tie-break order of the classifier."""

    SIMPLE = "simple"
    COMPLEX = "complex"
    COMPATIBILITY = "compatibility"
    COMPARISON = "comparison"
    RECOMMENDATION = "recommendation"


class Strategy(str, Enum):
    SEARCH_ONLY = "search-only"
    REASONING_ONLY = "reasoning-only"
    SEARCH_THEN_REASON = "search-then-reason"
    UNIFIED_REASONING = "unified-reasoning"


class Mode(str, Enum):
    DEEP_SEARCH = "DeepSearch"
    THINK = "Think"


class QueryClassification(BaseModel):
    """
    Routing decision for one query.

    ``scores`` holds the raw per-type scores for diagnostics only.
    """

    model_config = ConfigDict(frozen=True)

    type: QueryType
    strategy: Strategy
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    requires_image: bool = False
    scores: Dict[str, int] = Field(default_factory=dict)


class OrchestrationResult(BaseModel):
    content: str
    classification: QueryClassification
    cache_hit: bool = False
    model_used: str
    image_analysis: Optional[str] = None
    response_time_ms: int = 0
