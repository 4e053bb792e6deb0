"""
Embedding Matcher: Identify a face embedding by nearest enrolled sample.

Each identity keeps every embedding captured at enrollment. An identity's
representative distance is the minimum Euclidean distance from the probe to
any of its samples (nearest sample, not centroid), so a person matches when
any enrolled sample is close. The identity with the smallest representative
distance wins; ties go to the identity encountered first.

This is a brute-force scan, O(total reference embeddings) per probe. Sample
counts are bounded by the enrollment sample count, so no index is needed.
"""

import logging
from typing import Iterable, Optional

import numpy as np

from doorlock.identity_store import Identity
from doorlock.matching.interfaces import IdentityMatcher, MatchResult

logger = logging.getLogger(__name__)

DEFAULT_DISTANCE_THRESHOLD = 0.6


def euclidean_distances(query: np.ndarray, embeddings: np.ndarray) -> np.ndarray:
    """
    Euclidean distance from one embedding to each row of a sample matrix.

    Args:
        query: (D,) probe embedding.
        embeddings: (K, D) reference embeddings.

    Returns:
        (K,) float64 array of distances.
    """
    query = np.asarray(query, dtype=np.float64).ravel()
    embeddings = np.asarray(embeddings, dtype=np.float64)
    return np.linalg.norm(embeddings - query[np.newaxis, :], axis=1)


def compute_confidence(distance: float) -> int:
    """
    Map an embedding distance to a 0-100 confidence score.

    confidence = round((1 - distance) * 100), with no clamping.
    """
    return int(round((1.0 - distance) * 100))


class NearestSampleMatcher(IdentityMatcher):
    """
    1:N matcher using the minimum sample distance per identity.

    Args:
        config: Dictionary with optional keys:
            - distance_threshold: Distances at or above this are not
              reported (default 0.6, the usual dlib/face-api scale)
            - embedding_dim: Expected dimension, used only for logging
    """

    def __init__(self, config: dict = None):
        if config is None:
            config = {}
        self.distance_threshold = float(
            config.get("distance_threshold", DEFAULT_DISTANCE_THRESHOLD)
        )
        self.embedding_dim = config.get("embedding_dim")

    def match(
        self,
        query: np.ndarray,
        gallery: Iterable[Identity],
        distance_threshold: Optional[float] = None,
    ) -> Optional[MatchResult]:
        if distance_threshold is None:
            distance_threshold = self.distance_threshold

        query = np.asarray(query, dtype=np.float32).ravel()

        best_identity: Optional[Identity] = None
        best_distance = float("inf")

        for identity in gallery:
            if identity.n_samples == 0:
                continue

            if identity.embedding_dim != query.shape[0]:
                logger.error(
                    f"Embedding dimension mismatch for {identity.identity_id}: "
                    f"probe={query.shape[0]}, enrolled={identity.embedding_dim}"
                )
                continue

            representative = float(euclidean_distances(query, identity.embeddings).min())

            # Strictly less-than: the first identity keeps exact ties
            if representative < best_distance:
                best_distance = representative
                best_identity = identity

        if best_identity is None:
            return None

        if best_distance >= distance_threshold:
            logger.debug(
                f"Closest identity {best_identity.name} at distance "
                f"{best_distance:.3f} is beyond threshold {distance_threshold}"
            )
            return None

        return MatchResult(
            identity_id=best_identity.identity_id,
            name=best_identity.name,
            distance=best_distance,
            confidence=compute_confidence(best_distance),
        )


def match(
    query: np.ndarray,
    gallery: Iterable[Identity],
    distance_threshold: float = DEFAULT_DISTANCE_THRESHOLD,
) -> Optional[MatchResult]:
    """Identify ``query`` against ``gallery`` with a default NearestSampleMatcher."""
    return NearestSampleMatcher().match(query, gallery, distance_threshold)
