"""
Similarity scoring and ranking.

The score is a symmetric overlap ratio:

    score = 2 * surviving / (query_keypoints + candidate_keypoints)

1.0 means every keypoint in both images found a confirmed partner.
Surviving is the ratio-test count, or the inlier count when the strict
homography policy is used. A failed verification forces 0, and 0 means
"no usable match": such results are dropped, not ranked last.
"""

import os
import logging
from typing import List, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = int(os.environ.get("PANEL_MATCH_TOP_K", "5"))


def overlap_score(surviving: int,
                  query_count: int,
                  candidate_count: int,
                  verified: bool = True) -> float:
    """
    Compute the normalized overlap score.

    Args:
        surviving: Correspondences that passed filtering/verification.
        query_count: Keypoints in the query image.
        candidate_count: Keypoints in the candidate image.
        verified: False when requested geometric verification failed.

    Returns:
        Score in [0, 1].
    """
    total = query_count + candidate_count
    if not verified or surviving <= 0 or total <= 0:
        return 0.0
    # a keypoint pairs at most once per side, but clamp against bad counts
    return min(1.0, 2.0 * surviving / total)


def rank_results(results: Sequence) -> list:
    """
    Drop zero scores and sort by score, highest first.

    Sorting is stable, so equal scores keep scan order.
    """
    return sorted((r for r in results if r.score > 0), key=lambda r: -r.score)


def top_k(results: Sequence, k: int = DEFAULT_TOP_K) -> Tuple[List, List]:
    """
    Split ranked results into the best k and the rest.

    Returns:
        (kept, dropped). Never padded: fewer than k positives gives
        fewer than k kept.
    """
    ranked = rank_results(results)
    kept = ranked[:max(k, 0)]
    kept_ids = {id(r) for r in kept}
    dropped = [r for r in results if id(r) not in kept_ids]
    return kept, dropped
