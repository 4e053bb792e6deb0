"""
Matching Interfaces Module

This module defines the result type and abstract interface for identifying
a probe face embedding against a gallery of enrolled identities.

Usage:
    from doorlock.matching.interfaces import MatchResult, IdentityMatcher

    result = matcher.match(probe_embedding, gallery)
    if result is not None:
        print(result.name, result.confidence)
"""

import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

from doorlock.identity_store import Identity


@dataclass(frozen=True)
class MatchResult:
    """
    Result of identifying a probe embedding.

    Attributes:
        identity_id: ID of the best-matching identity.
        name: Display name of the best-matching identity.
        distance: Representative (minimum per-sample) Euclidean distance.
                  0.0 = identical embeddings.
        confidence: round((1 - distance) * 100). Not clamped, so a distance
                    above 1.0 yields a negative confidence.
    """

    identity_id: str
    name: str
    distance: float
    confidence: int


class IdentityMatcher(ABC):
    """
    Abstract base class for 1:N identity matching.

    Implementations compare a probe embedding against every identity in a
    gallery and report the single best candidate, or None when nobody is
    close enough.
    """

    @abstractmethod
    def match(
        self,
        query: np.ndarray,
        gallery: Iterable[Identity],
        distance_threshold: Optional[float] = None,
    ) -> Optional[MatchResult]:
        """
        Find the enrolled identity closest to a probe embedding.

        Args:
            query: Probe embedding, shape (D,).
            gallery: Enrolled identities to search.
            distance_threshold: Distances at or above this are not reported.
                                None uses the matcher's configured value.

        Returns:
            MatchResult for the best candidate, or None.
        """
        pass
