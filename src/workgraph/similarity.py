"""Vector similarity and clustering over embedding vectors.

Stateless numeric routines:
- cosine_similarity() / centroid(): the primitives
- k_means_cluster(): Lloyd's algorithm with cosine assignment
- rank_by_similarity(): top-k scan used by in-memory similarity search
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import numpy as np

from .constants import KMEANS_MAX_ITERATIONS, KMEANS_TOLERANCE, MAX_DEFAULT_CLUSTERS
from .errors import NumericDegenerateError

logger = logging.getLogger(__name__)

Vector = Sequence[float]


@dataclass
class ClusterResult:
    """One cluster produced by k_means_cluster()."""

    centroid: list[float]
    members: list[int] = field(default_factory=list)  # indices into the input
    cohesion: float = 0.0  # mean member -> centroid similarity
    average_similarity: float = 1.0  # mean pairwise member similarity

    @property
    def size(self) -> int:
        return len(self.members)


def _as_matrix(vectors: Sequence[Vector]) -> np.ndarray:
    """Stack equal-length vectors into a 2-D float array."""
    try:
        matrix = np.asarray(vectors, dtype=np.float64)
    except ValueError as e:
        raise ValueError(f"Vectors must all have the same length: {e}") from e
    if matrix.ndim != 2:
        raise ValueError("Vectors must all have the same length")
    return matrix


def cosine_similarity(a: Vector, b: Vector) -> float:
    """Cosine similarity dot(a, b) / (|a| * |b|).

    Raises:
        ValueError: If the vectors differ in length
        NumericDegenerateError: If either vector is all zeros
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.ndim != 1 or vb.ndim != 1 or va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.size} != {vb.size}")

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        raise NumericDegenerateError("Cosine similarity is undefined for a zero vector")

    return float(np.clip(np.dot(va, vb) / (norm_a * norm_b), -1.0, 1.0))


def centroid(vectors: Sequence[Vector]) -> list[float]:
    """Per-dimension mean of a non-empty set of equal-length vectors."""
    if len(vectors) == 0:
        raise NumericDegenerateError("Cannot compute the centroid of an empty vector set")
    return _as_matrix(vectors).mean(axis=0).tolist()


def _similarity_matrix(
    rows: np.ndarray,
    cols: np.ndarray,
    degenerate: float,
) -> np.ndarray:
    """Pairwise cosine similarity; pairs involving a zero vector get `degenerate`."""
    denom = np.outer(np.linalg.norm(rows, axis=1), np.linalg.norm(cols, axis=1))
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = (rows @ cols.T) / denom
    sims[denom == 0] = degenerate
    return np.clip(sims, -1.0, 1.0)


def _assign(matrix: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Index of the most similar centroid for every row (first wins on ties)."""
    return np.argmax(_similarity_matrix(matrix, centroids, degenerate=-1.0), axis=1)


def _converged(current: np.ndarray, previous: np.ndarray | None, tolerance: float) -> bool:
    if previous is None or current.shape != previous.shape:
        return False
    sims = np.diag(_similarity_matrix(current, previous, degenerate=-1.0))
    return bool(np.all(sims >= 1.0 - tolerance))


def k_means_cluster(
    vectors: Sequence[Vector],
    k: int,
    *,
    max_iterations: int = KMEANS_MAX_ITERATIONS,
    tolerance: float = KMEANS_TOLERANCE,
    rng: np.random.Generator | None = None,
) -> list[ClusterResult]:
    """Cluster vectors with Lloyd's algorithm using cosine similarity.

    Each vector joins the centroid it is most similar to. Centroids start
    from k distinct input vectors chosen at random. Iteration stops once
    every centroid's similarity to its previous position reaches
    1 - tolerance, or after max_iterations. Cosine assignment does not
    converge monotonically the way Euclidean k-means does, so the cap is
    what guarantees termination.

    A centroid that attracts no vectors is replaced by a random vector in
    [-1, 1)^d rather than dropped, so exactly k clusters are returned and
    some of them may be empty.

    Args:
        vectors: Equal-length input vectors
        k: Number of clusters, 1 <= k <= len(vectors)
        max_iterations: Iteration cap
        tolerance: Convergence tolerance on centroid similarity
        rng: Random generator (default: fresh unseeded generator)

    Returns:
        k ClusterResult records, member indices refer to `vectors`
    """
    if len(vectors) == 0:
        raise NumericDegenerateError("Cannot cluster an empty vector set")
    matrix = _as_matrix(vectors)
    n, dim = matrix.shape
    if not 1 <= k <= n:
        raise ValueError(f"k must be between 1 and {n}, got {k}")

    rng = rng if rng is not None else np.random.default_rng()
    centroids = matrix[rng.choice(n, size=k, replace=False)].copy()
    previous: np.ndarray | None = None
    iterations = 0

    while iterations < max_iterations and not _converged(centroids, previous, tolerance):
        previous = centroids
        assignments = _assign(matrix, centroids)

        updated = np.empty_like(centroids)
        for i in range(k):
            members = matrix[assignments == i]
            if len(members) > 0:
                updated[i] = members.mean(axis=0)
            else:
                updated[i] = rng.uniform(-1.0, 1.0, size=dim)
                logger.debug(f"k-means: re-seeded empty cluster {i}")
        centroids = updated
        iterations += 1

    if not _converged(centroids, previous, tolerance):
        logger.debug(f"k-means stopped after {iterations} iterations without converging")

    assignments = _assign(matrix, centroids)
    results = []
    for i in range(k):
        member_idx = np.flatnonzero(assignments == i)
        members = matrix[member_idx]
        results.append(ClusterResult(
            centroid=centroids[i].tolist(),
            members=member_idx.tolist(),
            cohesion=_cohesion(members, centroids[i]),
            average_similarity=_average_pairwise(members),
        ))
    return results


def _cohesion(members: np.ndarray, center: np.ndarray) -> float:
    if len(members) == 0:
        return 0.0
    sims = _similarity_matrix(members, center[np.newaxis, :], degenerate=0.0)
    return float(sims.mean())


def _average_pairwise(members: np.ndarray) -> float:
    """Mean similarity over all member pairs. O(n^2) in cluster size."""
    if len(members) < 2:
        return 1.0
    sims = _similarity_matrix(members, members, degenerate=0.0)
    upper = np.triu_indices(len(members), k=1)
    return float(sims[upper].mean())


def default_cluster_count(n: int) -> int:
    """Heuristic k for n vectors: ceil(sqrt(n / 2)), capped at 5."""
    return max(1, min(MAX_DEFAULT_CLUSTERS, math.ceil(math.sqrt(n / 2))))


def cluster_vectors(
    vectors: Sequence[Vector],
    rng: np.random.Generator | None = None,
) -> list[ClusterResult]:
    """Cluster with the default cluster count for the input size."""
    return k_means_cluster(vectors, default_cluster_count(len(vectors)), rng=rng)


def rank_by_similarity(
    query: Vector,
    candidates: Iterable[tuple[str, Vector]],
    top_k: int,
    min_score: float = 0.0,
) -> list[tuple[str, float]]:
    """Score candidates against a query vector.

    Candidates that are zero vectors are skipped.

    Returns:
        (id, similarity) tuples, best first, at most top_k
    """
    if not np.any(np.asarray(query, dtype=np.float64)):
        raise NumericDegenerateError("Query vector is all zeros")

    scored = []
    for cid, vector in candidates:
        try:
            score = cosine_similarity(query, vector)
        except NumericDegenerateError:
            logger.debug(f"Skipping zero vector for {cid}")
            continue
        if score >= min_score:
            scored.append((cid, score))

    scored.sort(key=lambda x: x[1], reverse=True)
    return scored[:top_k]
