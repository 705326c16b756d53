"""
Matching Module for Face Verification

This package contains the algorithms that compare face descriptors.

Components:
    - interfaces: MatchResult and the SimilarityScorer base class
    - similarity: Correlation/distance scorer used in production
    - voting: Cross-product voting rule producing a VerificationResult

Usage:
    from core.matching import CorrelationDistanceScorer, MultiSampleVote
    # or a scripted scorer for tests:
    from core.matching import StubSimilarityScorer
"""

from core.matching.interfaces import (
    MatchResult,
    SimilarityScorer,
    StubSimilarityScorer,
    check_same_length,
)
from core.matching.similarity import CorrelationDistanceScorer, zscore
from core.matching.voting import MultiSampleVote, VerificationResult, required_count

__all__ = [
    # Data classes
    "MatchResult",
    "VerificationResult",
    # Interfaces
    "SimilarityScorer",
    "check_same_length",
    # Implementations
    "StubSimilarityScorer",
    "CorrelationDistanceScorer",
    "zscore",
    # Decision rule
    "MultiSampleVote",
    "required_count",
]
