"""
Composite images of matched keypoints for human inspection.
"""

import os
import logging
from typing import List, Sequence

import cv2
import numpy as np

from .orb_matcher import Correspondence

logger = logging.getLogger(__name__)

MATCH_COLOR = (0, 255, 0)
POINT_COLOR = (255, 0, 0)


def render(query_image: np.ndarray,
           query_keypoints: Sequence[cv2.KeyPoint],
           candidate_image: np.ndarray,
           candidate_keypoints: Sequence[cv2.KeyPoint],
           correspondences: List[Correspondence]) -> np.ndarray:
    """Draw the query (left) and candidate (right) with match lines."""
    return cv2.drawMatches(
        query_image, list(query_keypoints),
        candidate_image, list(candidate_keypoints),
        [c.to_dmatch() for c in correspondences],
        None,
        matchColor=MATCH_COLOR,
        singlePointColor=POINT_COLOR,
        flags=cv2.DrawMatchesFlags_NOT_DRAW_SINGLE_POINTS,
    )


def match_path(output_dir: str, rank: int) -> str:
    return os.path.join(output_dir, f"match-{rank}.jpg")


def write_match(path: str, result) -> str:
    """
    Render a MatchResult and write it as JPEG, replacing any existing file.

    Returns:
        The written path.
    """
    if os.path.exists(path):
        logger.warning(f"Match file already exists, overwriting it: {path}")

    composite = render(
        result.query.image, result.query.keypoints,
        result.candidate.image, result.candidate.keypoints,
        result.correspondences,
    )
    if not cv2.imwrite(path, composite):
        raise OSError(f"Could not write match image: {path}")

    logger.debug(f"Wrote match to file: {path}")
    return path
