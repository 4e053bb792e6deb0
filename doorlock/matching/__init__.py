"""
Matching Module for Face Recognition Door Lock

This package contains the algorithm that identifies a probe face embedding
against the gallery of enrolled identities.

Components:
    - interfaces: MatchResult and the abstract IdentityMatcher
    - embedding_matcher: Nearest-sample Euclidean matcher

Usage:
    from doorlock.matching import NearestSampleMatcher

    matcher = NearestSampleMatcher({"distance_threshold": 0.6})
    result = matcher.match(probe_embedding, gallery)
"""

from doorlock.matching.interfaces import (
    MatchResult,
    IdentityMatcher,
)

from doorlock.matching.embedding_matcher import (
    NearestSampleMatcher,
    compute_confidence,
    euclidean_distances,
    match,
)

__all__ = [
    # Data classes
    "MatchResult",
    # Abstract interfaces
    "IdentityMatcher",
    # Implementations
    "NearestSampleMatcher",
    "compute_confidence",
    "euclidean_distances",
    "match",
]
