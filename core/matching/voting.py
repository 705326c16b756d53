"""
Multi-Sample Voting: turn descriptor comparisons into an identity decision.

Every probe descriptor collected during verification is compared against
every enrolled descriptor (full cross product). The claim is accepted only if
all three hold:

    max_similarity     > threshold                  (default 0.88)
    good_match_count  >= ceil(n_probes * 0.8)       (scores > threshold)
    average_similarity > 0.7

A single very high score is not enough on its own: the corroboration count
and the average floor must also be met.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Sequence

import numpy as np

from core.matching.interfaces import SimilarityScorer

logger = logging.getLogger(__name__)


def required_count(n: int, fraction: float) -> int:
    """ceil(n * fraction), robust to float noise such as 3 * 0.8 = 2.4000000000000004."""
    return int(math.ceil(round(n * fraction, 9)))


@dataclass
class VerificationResult:
    """
    Outcome of the voting rule.

    Attributes:
        verified: True if all three conditions of the rule hold.
        max_similarity: Highest score over all comparisons.
        average_similarity: Mean score over all comparisons.
        good_match_count: Comparisons scoring above the threshold.
        required_good_matches: ceil(n_probes * min_good_fraction).
        n_comparisons: n_probes * n_enrolled.
    """

    verified: bool
    max_similarity: float
    average_similarity: float
    good_match_count: int
    required_good_matches: int
    n_comparisons: int = 0

    def to_details(self) -> Dict[str, Any]:
        return {
            "max_similarity": self.max_similarity,
            "average_similarity": self.average_similarity,
            "good_match_count": self.good_match_count,
            "required_good_matches": self.required_good_matches,
            "n_comparisons": self.n_comparisons,
        }


class MultiSampleVote:
    """
    Cross-product voting rule.

    Args:
        config: Dictionary with optional keys:
            - similarity_threshold: T1 (default 0.88)
            - min_good_fraction: Fraction of probe count that must score above
              T1 (default 0.8)
            - min_average_similarity: Floor for the mean score (default 0.7)
    """

    def __init__(self, config: dict = None):
        if config is None:
            config = {}
        self.threshold = config.get("similarity_threshold", 0.88)
        self.min_good_fraction = config.get("min_good_fraction", 0.8)
        self.min_average = config.get("min_average_similarity", 0.7)

    def score_matrix(
        self,
        scorer: SimilarityScorer,
        probes: Sequence[np.ndarray],
        enrolled: Sequence[np.ndarray],
    ) -> np.ndarray:
        """Scores of shape (n_probes, n_enrolled), probe-major order."""
        scores = np.zeros((len(probes), len(enrolled)), dtype=np.float64)
        for i, probe in enumerate(probes):
            for j, reference in enumerate(enrolled):
                scores[i, j] = scorer.similarity(probe, reference)
        return scores

    def decide(self, scores: np.ndarray) -> VerificationResult:
        """
        Apply the rule to a score matrix.

        Args:
            scores: (n_probes, n_enrolled) similarity scores.
        """
        n_probes = scores.shape[0]
        required = required_count(n_probes, self.min_good_fraction)

        if scores.size == 0:
            return VerificationResult(
                verified=False,
                max_similarity=0.0,
                average_similarity=0.0,
                good_match_count=0,
                required_good_matches=required,
                n_comparisons=0,
            )

        max_similarity = float(scores.max())
        average_similarity = float(scores.mean())
        good_matches = int(np.count_nonzero(scores > self.threshold))

        verified = (
            max_similarity > self.threshold
            and good_matches >= required
            and average_similarity > self.min_average
        )

        logger.info(
            f"Verification vote: max={max_similarity:.3f}, avg={average_similarity:.3f}, "
            f"good={good_matches}/{required}, verified={verified}"
        )

        return VerificationResult(
            verified=verified,
            max_similarity=max_similarity,
            average_similarity=average_similarity,
            good_match_count=good_matches,
            required_good_matches=required,
            n_comparisons=int(scores.size),
        )

    def vote(
        self,
        scorer: SimilarityScorer,
        probes: Sequence[np.ndarray],
        enrolled: Sequence[np.ndarray],
    ) -> VerificationResult:
        """Score the cross product and decide."""
        return self.decide(self.score_matrix(scorer, probes, enrolled))
