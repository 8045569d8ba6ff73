"""
Descriptor correspondence search and Lowe's ratio test.

For every query descriptor the two nearest candidate descriptors are
found by exact search: Hamming distance for binary (uint8) descriptors
such as ORB, L2 for float32 descriptors. The ratio test then keeps a
nearest neighbor only when it is clearly closer than the runner-up,
which throws away matches caused by repetitive texture (screentone,
speed lines, hatching).

Two exact backends are available and return the same distances:
    bruteforce  OpenCV BFMatcher (default)
    faiss       IndexBinaryFlat / IndexFlatL2
"""

import os
import logging
from dataclasses import dataclass
from typing import List, Optional

import cv2
import faiss
import numpy as np

from .preprocessing import ensure_supported_depth

logger = logging.getLogger(__name__)

K = 2
DEFAULT_LOWES_RATIO = float(os.environ.get("PANEL_MATCH_LOWES_RATIO", "0.75"))

BACKENDS = ("bruteforce", "faiss")


@dataclass(frozen=True)
class Correspondence:
    """Proposed pairing of a query keypoint with a candidate keypoint."""

    query_index: int
    candidate_index: int
    distance: float

    def to_dmatch(self) -> cv2.DMatch:
        return cv2.DMatch(self.query_index, self.candidate_index, float(self.distance))


def is_binary(descriptors: np.ndarray) -> bool:
    """True when descriptors are packed bits compared by Hamming distance."""
    return ensure_supported_depth(descriptors).dtype == np.uint8


def _check_compatible(query: np.ndarray, candidate: np.ndarray):
    ensure_supported_depth(query)
    ensure_supported_depth(candidate)
    if query.dtype != candidate.dtype:
        raise ValueError(
            f"Descriptor types differ: {query.dtype} vs {candidate.dtype}"
        )
    if query.shape[1:] != candidate.shape[1:]:
        raise ValueError(
            f"Descriptor widths differ: {query.shape[1:]} vs {candidate.shape[1:]}"
        )


def _knn_bruteforce(query: np.ndarray, candidate: np.ndarray, k: int):
    # BFMatcher keeps its train set internally; one per call keeps it thread-safe
    norm = cv2.NORM_HAMMING if is_binary(query) else cv2.NORM_L2
    matcher = cv2.BFMatcher(norm, crossCheck=False)
    pairs = matcher.knnMatch(query, candidate, k=k)
    return [
        [Correspondence(m.queryIdx, m.trainIdx, float(m.distance)) for m in pair]
        for pair in pairs
    ]


def _knn_faiss(query: np.ndarray, candidate: np.ndarray, k: int):
    k = min(k, len(candidate))
    if is_binary(query):
        index = faiss.IndexBinaryFlat(query.shape[1] * 8)
        index.add(np.ascontiguousarray(candidate))
        distances, indices = index.search(np.ascontiguousarray(query), k)
        distances = distances.astype(np.float64)
    else:
        index = faiss.IndexFlatL2(query.shape[1])
        index.add(np.ascontiguousarray(candidate, dtype=np.float32))
        distances, indices = index.search(np.ascontiguousarray(query, dtype=np.float32), k)
        # IndexFlatL2 reports squared distances
        distances = np.sqrt(np.maximum(distances, 0.0)).astype(np.float64)

    results = []
    for q, (row_d, row_i) in enumerate(zip(distances, indices)):
        results.append([
            Correspondence(q, int(i), float(d))
            for d, i in zip(row_d, row_i) if i >= 0
        ])
    return results


def knn_match(query_desc: Optional[np.ndarray],
              candidate_desc: Optional[np.ndarray],
              k: int = K,
              backend: str = "bruteforce") -> List[List[Correspondence]]:
    """
    Find the k nearest candidate descriptors for every query descriptor.

    Args:
        query_desc: Query descriptors (N, D).
        candidate_desc: Candidate descriptors (M, D), same dtype and width.
        k: Neighbors per query descriptor.
        backend: "bruteforce" or "faiss".

    Returns:
        One list per query index, nearest first. Lists are shorter than k
        when the candidate has fewer than k descriptors. Empty when either
        input is empty.

    Raises:
        UnsupportedDepthError: For descriptors that are not uint8/float32.
        ValueError: For mismatched descriptor types or an unknown backend.
    """
    if query_desc is None or candidate_desc is None:
        return []
    if len(query_desc) == 0 or len(candidate_desc) == 0:
        return []

    _check_compatible(query_desc, candidate_desc)

    if backend == "bruteforce":
        results = _knn_bruteforce(query_desc, candidate_desc, k)
    elif backend == "faiss":
        results = _knn_faiss(query_desc, candidate_desc, k)
    else:
        raise ValueError(f"Unknown matcher backend '{backend}', expected one of {BACKENDS}")

    return results


def ratio_test(knn_matches: List[List[Correspondence]],
               ratio: float = DEFAULT_LOWES_RATIO) -> List[Correspondence]:
    """
    Apply Lowe's ratio test to k=2 neighbor lists.

    The nearest neighbor is accepted iff d0 < ratio * d1. Query indices
    with fewer than two neighbors are skipped.

    Args:
        knn_matches: Output of knn_match().
        ratio: Threshold; 0.75 is strict, values up to 1.5 accept liberally.

    Returns:
        Accepted correspondences in query-index order (possibly empty).
    """
    good_matches = []
    for pair in knn_matches:
        if len(pair) < 2:
            continue
        m, n = pair[0], pair[1]
        if m.distance < ratio * n.distance:
            good_matches.append(m)
    return good_matches


def match_descriptors(query_desc: np.ndarray,
                      candidate_desc: np.ndarray,
                      ratio: float = DEFAULT_LOWES_RATIO,
                      backend: str = "bruteforce") -> List[Correspondence]:
    """kNN search followed by the ratio test."""
    return ratio_test(knn_match(query_desc, candidate_desc, K, backend), ratio)
