"""
Matching Interfaces Module

This module defines the abstract interface for descriptor similarity scoring
and the MatchResult container shared by all scorers.

The matching pipeline has two components:
1. SimilarityScorer - Scores a pair of descriptors in [0, 1]
2. MultiSampleVote (voting.py) - Turns the cross product of scores between
   probe and enrolled descriptors into an accept/reject decision

A stub scorer is provided so the voting and controller logic can be tested
with scripted scores.

Usage:
    from core.matching.interfaces import MatchResult, StubSimilarityScorer

    scorer = StubSimilarityScorer(scores=[0.95, 0.4])
    result = scorer.compare(probe, enrolled)
"""

import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional


@dataclass
class MatchResult:
    """
    Result of a matching operation.

    Attributes:
        score: Similarity score between 0.0 and 1.0.
               0.0 = completely different (no match)
               1.0 = perfect match (identical)
        details: Dictionary containing algorithm-specific details.
                 Examples: {"correlation": 0.91, "distance": 3.2}
        is_match: Boolean decision based on threshold comparison.
    """

    score: float
    details: Dict[str, Any]
    is_match: bool


def check_same_length(a: np.ndarray, b: np.ndarray) -> None:
    """
    Raise if two descriptors cannot be compared.

    Descriptors of different length come from different extractor layouts;
    comparing them is a programming error, not a no-match.
    """
    if a.shape != b.shape or a.ndim != 1:
        raise ValueError(
            f"Descriptor shape mismatch: {a.shape} vs {b.shape}"
        )


class SimilarityScorer(ABC):
    """
    Abstract base class for descriptor similarity scoring.

    Implementations must be symmetric and bounded in [0, 1].
    """

    def __init__(self, threshold: float = 0.88):
        self.threshold = threshold

    @abstractmethod
    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        """
        Score two descriptors.

        Args:
            a: Descriptor, shape (L,).
            b: Descriptor, shape (L,).

        Returns:
            Similarity in [0, 1].

        Raises:
            ValueError: If the descriptors have different lengths.
        """
        pass

    def compare(self, a: np.ndarray, b: np.ndarray) -> MatchResult:
        """Score two descriptors and apply the match threshold."""
        score = self.similarity(a, b)
        return MatchResult(
            score=score,
            details={"method": type(self).__name__, "threshold": self.threshold},
            is_match=score > self.threshold,
        )


class StubSimilarityScorer(SimilarityScorer):
    """
    Scorer that replays scripted scores.

    Scores are returned in call order; once the script runs out,
    default_score is returned.
    """

    def __init__(
        self,
        scores: Optional[Iterable[float]] = None,
        default_score: float = 0.5,
        threshold: float = 0.88,
    ):
        super().__init__(threshold=threshold)
        self._scores = list(scores or [])
        self.default_score = default_score
        self.calls = 0

    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        a = np.asarray(a)
        b = np.asarray(b)
        check_same_length(a, b)

        index = self.calls
        self.calls += 1
        if index < len(self._scores):
            return float(self._scores[index])
        return self.default_score
