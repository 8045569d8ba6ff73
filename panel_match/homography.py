"""
RANSAC homography verification.

A set of ratio-test survivors is only trusted as a match when a single
planar projective transform explains them. The transform maps candidate
keypoints onto query keypoints and is fitted with RANSAC, so up to half
of the correspondences may be outliers.

Two acceptance policies:
    existence  any valid, non-degenerate homography (cheap boolean gate)
    inliers    inliers >= min_inliers and inliers >= candidate_kps // match_offset

OpenCV seeds its RANSAC sampler identically on every call, so repeated
runs over the same inputs give the same model.
"""

import os
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import cv2
import numpy as np

from .orb_matcher import Correspondence

logger = logging.getLogger(__name__)

MIN_CORRESPONDENCES = 4

DEFAULT_RANSAC_THRESHOLD = float(os.environ.get("PANEL_MATCH_RANSAC_THRESHOLD", "2.0"))
DEFAULT_STRICT_RANSAC_THRESHOLD = float(
    os.environ.get("PANEL_MATCH_STRICT_RANSAC_THRESHOLD", "1.5")
)
DEFAULT_MIN_INLIERS = int(os.environ.get("PANEL_MATCH_MIN_INLIERS", "63"))
DEFAULT_MATCH_OFFSET = int(os.environ.get("PANEL_MATCH_MATCH_OFFSET", "4"))

# Below this |det| the transform collapses the plane
SINGULAR_DET = 1e-9


@dataclass
class HomographyResult:
    """Outcome of one homography fit."""

    matrix: Optional[np.ndarray]
    inliers: int
    total: int
    mask: Optional[np.ndarray] = None

    @property
    def valid(self) -> bool:
        return self.matrix is not None

    @property
    def inlier_ratio(self) -> float:
        return self.inliers / self.total if self.total else 0.0

    @classmethod
    def invalid(cls, total: int) -> "HomographyResult":
        return cls(matrix=None, inliers=0, total=total)


def is_degenerate(matrix: Optional[np.ndarray]) -> bool:
    """True for a missing, empty, non-finite or singular 3x3 transform."""
    if matrix is None or matrix.size == 0 or matrix.shape != (3, 3):
        return True
    if not np.all(np.isfinite(matrix)):
        return True
    try:
        det = np.linalg.det(matrix)
    except np.linalg.LinAlgError:
        return True
    return abs(det) < SINGULAR_DET


def vote_for_size_and_orientation(correspondences: List[Correspondence],
                                  query_keypoints: Sequence[cv2.KeyPoint],
                                  candidate_keypoints: Sequence[cv2.KeyPoint],
                                  scale_increment: float = 1.5,
                                  rotation_bins: int = 20) -> List[Correspondence]:
    """
    Keep correspondences that agree on relative scale and rotation.

    Each correspondence votes into a 2-D histogram of log10 scale ratio
    (bin width log10(scale_increment)) and rotation difference
    (rotation_bins over 360 degrees). Votes in bins holding no more than
    half of the peak bin are dropped.

    Returns:
        Surviving correspondences in their original order.
    """
    if not correspondences:
        return []

    q_size = np.array([query_keypoints[c.query_index].size for c in correspondences])
    c_size = np.array([candidate_keypoints[c.candidate_index].size for c in correspondences])
    q_angle = np.array([query_keypoints[c.query_index].angle for c in correspondences])
    c_angle = np.array([candidate_keypoints[c.candidate_index].angle for c in correspondences])

    valid = (q_size > 0) & (c_size > 0)
    log_scale = np.zeros(len(correspondences))
    log_scale[valid] = np.log10(c_size[valid] / q_size[valid])
    rotation = np.mod(c_angle - q_angle, 360.0)

    step = np.log10(scale_increment)
    min_scale = log_scale.min()
    scale_bins = max(2, int(np.ceil((log_scale.max() - min_scale) / step)))

    scale_idx = np.clip(((log_scale - min_scale) / step).astype(int), 0, scale_bins - 1)
    rot_idx = np.clip((rotation / (360.0 / rotation_bins)).astype(int), 0, rotation_bins - 1)

    hist = np.zeros((scale_bins, rotation_bins), dtype=np.int64)
    np.add.at(hist, (scale_idx, rot_idx), 1)

    votes = hist[scale_idx, rot_idx]
    keep = valid & (votes > hist.max() * 0.5)
    return [c for c, k in zip(correspondences, keep) if k]


class HomographyVerifier:
    """Verify correspondences against a RANSAC homography."""

    def __init__(self,
                 reproj_threshold: float = DEFAULT_RANSAC_THRESHOLD,
                 max_iters: int = 2000,
                 confidence: float = 0.995,
                 min_inliers: int = DEFAULT_MIN_INLIERS,
                 match_offset: int = DEFAULT_MATCH_OFFSET):
        """
        Args:
            reproj_threshold: Max reprojection error (pixels) for an inlier.
            max_iters: Maximum RANSAC iterations.
            confidence: Required RANSAC confidence.
            min_inliers: Absolute inlier floor for the inlier policy.
            match_offset: Divisor of the candidate keypoint count giving
                the relative inlier floor.
        """
        self.reproj_threshold = reproj_threshold
        self.max_iters = max_iters
        self.confidence = confidence
        self.min_inliers = min_inliers
        self.match_offset = match_offset

    def estimate(self,
                 correspondences: List[Correspondence],
                 query_keypoints: Sequence[cv2.KeyPoint],
                 candidate_keypoints: Sequence[cv2.KeyPoint]) -> HomographyResult:
        """
        Fit a candidate-to-query homography.

        Fewer than four correspondences, or fewer than four keypoints on
        either side, never reach the estimator. A failed or degenerate fit
        comes back as an invalid result.
        """
        total = len(correspondences)
        too_few_points = min(len(query_keypoints), len(candidate_keypoints)) < MIN_CORRESPONDENCES
        if total < MIN_CORRESPONDENCES or too_few_points:
            return HomographyResult.invalid(total)

        src_pts = np.float32(
            [candidate_keypoints[c.candidate_index].pt for c in correspondences]
        ).reshape(-1, 1, 2)
        dst_pts = np.float32(
            [query_keypoints[c.query_index].pt for c in correspondences]
        ).reshape(-1, 1, 2)

        try:
            H, mask = cv2.findHomography(
                src_pts,
                dst_pts,
                cv2.RANSAC,
                ransacReprojThreshold=self.reproj_threshold,
                maxIters=self.max_iters,
                confidence=self.confidence,
            )
        except cv2.error as e:
            logger.debug(f"Homography estimation failed: {e}")
            return HomographyResult.invalid(total)

        if is_degenerate(H):
            return HomographyResult.invalid(total)

        inliers = int(mask.ravel().astype(bool).sum()) if mask is not None else 0
        return HomographyResult(matrix=H, inliers=inliers, total=total, mask=mask)

    def has_homography(self,
                       correspondences: List[Correspondence],
                       query_keypoints: Sequence[cv2.KeyPoint],
                       candidate_keypoints: Sequence[cv2.KeyPoint]) -> bool:
        """Existence policy: any valid homography at all."""
        return self.estimate(correspondences, query_keypoints, candidate_keypoints).valid

    def passes_inlier_policy(self, result: HomographyResult, candidate_keypoint_count: int) -> bool:
        """Inlier policy: absolute and relative inlier floors both met."""
        if not result.valid:
            return False
        return (
            result.inliers >= self.min_inliers
            and result.inliers >= candidate_keypoint_count // self.match_offset
        )
