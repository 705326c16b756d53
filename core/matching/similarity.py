"""
Correlation/Distance Similarity Scorer

Implementation of the SimilarityScorer interface defined in interfaces.py.

Both descriptors are z-score normalized independently, then two measures are
averaged:

    similarity = (pearson_correlation + 1 / (1 + euclidean_distance)) / 2

and negative values are floored to 0. Because the distance is taken between
z-scored vectors of several thousand dimensions, the distance term is close to
zero for anything but near-identical descriptors; in practice scores above
~0.6 require near-duplicate frames. The formula is reproduced as built and has
not been calibrated as a biometric matcher.
"""

import logging
from typing import Tuple

import numpy as np

from core.matching.interfaces import MatchResult, SimilarityScorer, check_same_length

logger = logging.getLogger(__name__)


def zscore(values: np.ndarray) -> np.ndarray:
    """Subtract the mean and divide by the population std; all zeros if std is 0."""
    mean = values.mean()
    std = np.sqrt(((values - mean) ** 2).mean())
    if std > 0:
        return (values - mean) / std
    return np.zeros_like(values)


class CorrelationDistanceScorer(SimilarityScorer):
    """
    Average of Pearson correlation and inverse Euclidean distance.

    Args:
        config: Dictionary with optional keys:
            - similarity_threshold: Score a single comparison must exceed to
              count as a good match (default 0.88)
    """

    def __init__(self, config: dict = None):
        if config is None:
            config = {}
        super().__init__(threshold=config.get("similarity_threshold", 0.88))

    def _components(self, a: np.ndarray, b: np.ndarray) -> Tuple[float, float]:
        a = np.asarray(a, dtype=np.float64).ravel()
        b = np.asarray(b, dtype=np.float64).ravel()
        check_same_length(a, b)

        x = zscore(a)
        y = zscore(b)

        sum_xy = float(np.dot(x, y))
        sum_x2 = float(np.dot(x, x))
        sum_y2 = float(np.dot(y, y))

        denominator = np.sqrt(sum_x2 * sum_y2)
        # Constant descriptors z-score to zeros; treat as uncorrelated
        correlation = sum_xy / denominator if denominator > 0 else 0.0

        distance = float(np.sqrt(np.sum((x - y) ** 2)))

        return correlation, distance

    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        correlation, distance = self._components(a, b)
        similarity = (correlation + 1.0 / (1.0 + distance)) / 2.0
        return float(min(1.0, max(0.0, similarity)))

    def compare(self, a: np.ndarray, b: np.ndarray) -> MatchResult:
        correlation, distance = self._components(a, b)
        score = float(min(1.0, max(0.0, (correlation + 1.0 / (1.0 + distance)) / 2.0)))

        logger.debug(
            f"Descriptor comparison: correlation={correlation:.3f}, "
            f"euclidean={distance:.3f}, similarity={score:.3f}"
        )

        return MatchResult(
            score=score,
            details={
                "method": "correlation_distance",
                "correlation": correlation,
                "euclidean_distance": distance,
                "threshold": self.threshold,
            },
            is_match=score > self.threshold,
        )
