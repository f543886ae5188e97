"""Rule-based cluster confidence scoring."""

from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from knowflow.synthesis.calibration import (
    calibrate_length_score,
    calibrate_overlap_score,
    calibrate_support_score,
)

logger = structlog.get_logger()

# Weights for each component
COMPONENT_WEIGHTS: dict[str, float] = {
    "support": 0.45,
    "overlap": 0.30,
    "length": 0.25,
}


class ClusterFeatures(BaseModel):
    """Everything a scorer may look at for one cluster."""

    fragment_count: int = Field(ge=0)
    tags: list[str] = Field(default_factory=list)
    vocabulary: list[str] = Field(default_factory=list)
    body_length: int = Field(default=0, ge=0)


class ConfidenceScorer(Protocol):
    """Scores a cluster in [0, 1]. Implementations must be deterministic."""

    def score(self, features: ClusterFeatures) -> float: ...


class RuleBasedScorer:
    """Weighted blend of support, vocabulary overlap and length fit.

    Args:
        target_min_chars: Lower edge of the preferred body length band.
        target_max_chars: Upper edge of the preferred body length band.
    """

    def __init__(self, target_min_chars: int = 40, target_max_chars: int = 600):
        self.target_min_chars = target_min_chars
        self.target_max_chars = target_max_chars

    def score(self, features: ClusterFeatures) -> float:
        components = {
            "support": calibrate_support_score(features.fragment_count),
            "overlap": calibrate_overlap_score(features.tags, features.vocabulary),
            "length": calibrate_length_score(
                features.body_length, self.target_min_chars, self.target_max_chars
            ),
        }
        total = sum(components[key] * weight for key, weight in COMPONENT_WEIGHTS.items())
        confidence = round(max(0.0, min(1.0, total)), 3)

        logger.debug("cluster_scored", confidence=confidence, **components)
        return confidence
