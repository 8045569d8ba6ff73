"""
Directory match engine.

Compares one query image against every supported image file in a
directory and ranks the matches:

    resolve query -> extract once -> scan files lazily
        -> per candidate: kNN -> ratio test -> [homography] -> score
        -> rank -> keep top K -> render -> release

The query DescriptorSet is shared read-only by every comparison.
Candidate sets are owned by whoever holds them: a zero-score candidate
is released at once, dropped ranks after ranking, and the top K after
rendering. Cancellation is cooperative and checked before each file.
"""

import os
import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Iterator, List, Optional

import cv2
import numpy as np

from .errors import PanelMatchError, QueryError
from .features import DEFAULT_FEATURES, DescriptorSet, FeatureExtractor, create_extractor
from .homography import (
    DEFAULT_RANSAC_THRESHOLD,
    DEFAULT_STRICT_RANSAC_THRESHOLD,
    MIN_CORRESPONDENCES,
    HomographyVerifier,
    vote_for_size_and_orientation,
)
from .orb_matcher import DEFAULT_LOWES_RATIO, Correspondence, match_descriptors
from .render import match_path, write_match
from .scanner import iter_image_files
from .scoring import DEFAULT_TOP_K, overlap_score, top_k

logger = logging.getLogger(__name__)

# files queued per worker ahead of the one being collected
SUBMIT_WINDOW = 2


class VerificationPolicy(str, Enum):
    """How (and whether) ratio-test survivors are checked geometrically."""

    NONE = "none"
    EXISTENCE = "existence"
    INLIERS = "inliers"


class RunState(Enum):
    INIT = "init"
    QUERY_LOADED = "query_loaded"
    SCANNING = "scanning"
    RANKING = "ranking"
    RENDERING = "rendering"
    DONE = "done"


@dataclass
class MatchOptions:
    """Settings for one engine run."""

    features: int = DEFAULT_FEATURES
    lowes_ratio: float = DEFAULT_LOWES_RATIO
    policy: VerificationPolicy = VerificationPolicy.NONE
    top_k: int = DEFAULT_TOP_K
    recursive: bool = False
    backend: str = "bruteforce"
    extractor: str = "orb"
    workers: int = 1
    skip_query: bool = False
    output_dir: str = "."

    def __post_init__(self):
        self.policy = VerificationPolicy(self.policy)


@dataclass
class MatchResult:
    """Comparison of the query with one candidate."""

    query: DescriptorSet
    candidate: DescriptorSet
    correspondences: List[Correspondence]
    score: float
    inliers: Optional[int] = None

    @property
    def identity(self) -> str:
        return self.candidate.identity

    def release(self):
        # the query is shared and released by the engine
        self.candidate.release()


@dataclass
class RankedMatch:
    """Summary of a top-K match that outlives its buffers."""

    rank: int
    identity: str
    score: float
    matches: int
    inliers: Optional[int] = None
    output: Optional[str] = None


class MatchEngine:
    """
    Scan a directory for images matching a query image.

    Usage:
        engine = MatchEngine(MatchOptions(policy=VerificationPolicy.EXISTENCE))
        ranked = engine.run("panel.png", "/data/scans")
    """

    def __init__(self,
                 options: Optional[MatchOptions] = None,
                 extractor: Optional[FeatureExtractor] = None,
                 existence_verifier: Optional[HomographyVerifier] = None,
                 inlier_verifier: Optional[HomographyVerifier] = None):
        self.options = options or MatchOptions()
        self.extractor = extractor or create_extractor(
            self.options.extractor, self.options.features
        )
        self.existence_verifier = existence_verifier or HomographyVerifier(
            reproj_threshold=DEFAULT_RANSAC_THRESHOLD
        )
        self.inlier_verifier = inlier_verifier or HomographyVerifier(
            reproj_threshold=DEFAULT_STRICT_RANSAC_THRESHOLD
        )
        self._state = RunState.INIT

    @property
    def state(self) -> RunState:
        return self._state

    def _transition(self, state: RunState):
        logger.debug(f"Engine state {self._state.value} -> {state.value}")
        self._state = state

    # -- loading ---------------------------------------------------------

    @staticmethod
    def resolve_query(file: str, directory: str) -> Optional[str]:
        """Use the file as given, else relative to the scan directory."""
        if not directory:
            logger.warning("No directory specified to scan in.")
            return None
        if not file:
            logger.warning("No file specified to scan for.")
            return None

        if os.path.isfile(file):
            return file

        joined = os.path.join(directory, file)
        if os.path.isfile(joined):
            return joined

        logger.warning(f"Cannot find file to scan for: {file}")
        return None

    def load_query(self, file: str, directory: str) -> DescriptorSet:
        """Resolve and extract the query image. Any failure is fatal."""
        path = self.resolve_query(file, directory)
        if path is None:
            raise QueryError(f"Query file not found: {file}")
        if not os.path.isdir(directory):
            raise QueryError(f"Scan directory not found: {directory}")

        try:
            return self.extractor.load(path)
        except (PanelMatchError, OSError) as e:
            raise QueryError(f"Could not load query image {path}: {e}") from e

    def load_candidate(self, path: str) -> Optional[DescriptorSet]:
        """Extract a candidate; failures are logged and give None."""
        logger.debug(f"Starting to scan file: {path}")
        try:
            return self.extractor.load(path)
        except (PanelMatchError, OSError) as e:
            logger.warning(f"Skipping {path}: {e}")
            return None

    # -- comparison ------------------------------------------------------

    def compare(self, query: DescriptorSet, candidate: DescriptorSet) -> MatchResult:
        """
        Score a candidate against the query.

        Numerical failures anywhere in the pipeline give score 0 for this
        candidate rather than an exception.
        """
        options = self.options
        try:
            good = match_descriptors(
                query.descriptors, candidate.descriptors, options.lowes_ratio, options.backend
            )

            if options.policy is VerificationPolicy.NONE:
                score = overlap_score(len(good), len(query), len(candidate))
                return MatchResult(query, candidate, good, score)

            if options.policy is VerificationPolicy.EXISTENCE:
                verified = self.existence_verifier.has_homography(
                    good, query.keypoints, candidate.keypoints
                )
                score = overlap_score(len(good), len(query), len(candidate), verified)
                return MatchResult(query, candidate, good, score)

            return self._compare_inliers(query, candidate, good)

        except (cv2.error, np.linalg.LinAlgError, ValueError, PanelMatchError) as e:
            logger.error(f"Error occurred while comparing {query.identity} to {candidate.identity}: {e}")
            return MatchResult(query, candidate, [], 0.0)

    def _compare_inliers(self, query, candidate, good):
        if len(good) < MIN_CORRESPONDENCES:
            return MatchResult(query, candidate, good, 0.0, inliers=0)

        voted = vote_for_size_and_orientation(good, query.keypoints, candidate.keypoints)
        if len(voted) < MIN_CORRESPONDENCES:
            return MatchResult(query, candidate, voted, 0.0, inliers=0)

        fit = self.inlier_verifier.estimate(voted, query.keypoints, candidate.keypoints)
        verified = self.inlier_verifier.passes_inlier_policy(fit, len(candidate))
        score = overlap_score(fit.inliers, len(query), len(candidate), verified)
        return MatchResult(query, candidate, voted, score, inliers=fit.inliers)

    def _evaluate(self, query: DescriptorSet, path: str,
                  cancel_event: Optional[threading.Event]) -> Optional[MatchResult]:
        if cancel_event is not None and cancel_event.is_set():
            return None

        candidate = self.load_candidate(path)
        if candidate is None:
            return None

        try:
            result = self.compare(query, candidate)
        except BaseException:
            candidate.release()
            raise
        if result.score <= 0:
            logger.debug(f"Match score is 0, skipping: {path}")
            candidate.release()
            return None

        logger.info(f"Found match: {path} with score {result.score:.4f}")
        return result

    # -- scanning --------------------------------------------------------

    def scan(self, query: DescriptorSet, directory: str,
             cancel_event: Optional[threading.Event] = None) -> Iterator[MatchResult]:
        """Yield positive-scoring results in scan order."""
        paths = iter_image_files(
            directory,
            recursive=self.options.recursive,
            cancel_event=cancel_event,
            exclude=query.identity if self.options.skip_query else None,
        )

        if self.options.workers <= 1:
            for path in paths:
                result = self._evaluate(query, path, cancel_event)
                if result is not None:
                    yield result
            return

        window = self.options.workers * SUBMIT_WINDOW
        pending: Deque[Future] = deque()
        with ThreadPoolExecutor(max_workers=self.options.workers) as pool:
            try:
                for path in paths:
                    pending.append(pool.submit(self._evaluate, query, path, cancel_event))
                    if len(pending) >= window:
                        result = pending.popleft().result()
                        if result is not None:
                            yield result
                while pending:
                    result = pending.popleft().result()
                    if result is not None:
                        yield result
            finally:
                self._discard(pending)

    @staticmethod
    def _discard(pending: Deque[Future]):
        """Cancel queued work and release results nobody will collect."""
        for future in pending:
            future.cancel()
        for future in pending:
            if future.cancelled():
                continue
            try:
                result = future.result()
            except Exception as e:
                logger.error(f"Discarded candidate failed: {e}")
                continue
            if result is not None:
                result.release()
        pending.clear()

    def search(self, file: str, directory: str,
               cancel_event: Optional[threading.Event] = None):
        """
        Load the query, scan the directory and rank the matches.

        Returns:
            (query, top) where top holds at most top_k results, best first.
            The caller owns both and must release them.

        Raises:
            QueryError: If the query cannot be resolved or loaded.
        """
        self._transition(RunState.INIT)
        query = self.load_query(file, directory)
        self._transition(RunState.QUERY_LOADED)

        accumulated: List[MatchResult] = []
        try:
            self._transition(RunState.SCANNING)
            for result in self.scan(query, directory, cancel_event):
                accumulated.append(result)
        except BaseException:
            for result in accumulated:
                result.release()
            query.release()
            raise

        self._transition(RunState.RANKING)
        top, dropped = top_k(accumulated, self.options.top_k)
        for result in dropped:
            result.release()

        return query, top

    def run(self, file: str, directory: str,
            cancel_event: Optional[threading.Event] = None,
            render: bool = True) -> List[RankedMatch]:
        """
        Full run: search, render the top K and release everything.

        Returns:
            Ranked summaries, possibly empty.

        Raises:
            QueryError: If the query cannot be resolved or loaded.
        """
        options = self.options
        logger.info(f"Detecting ORB features: {options.features}")
        logger.info(f"Lowes Ratio: {options.lowes_ratio}")
        logger.info(f"Verification policy: {options.policy.value}")
        logger.info(f"Scanning directory: {directory}")
        logger.info(f"Scanning for file: {file}")
        logger.info(f"Scanning subdirectories: {options.recursive}")

        query, top = self.search(file, directory, cancel_event)

        ranked = []
        try:
            self._transition(RunState.RENDERING)
            for rank, result in enumerate(top, start=1):
                logger.info(f"Top match {rank}: {result.identity} with score {result.score:.4f}")
                output = None
                if render:
                    output = write_match(match_path(options.output_dir, rank), result)
                ranked.append(RankedMatch(
                    rank=rank,
                    identity=result.identity,
                    score=result.score,
                    matches=len(result.correspondences),
                    inliers=result.inliers,
                    output=output,
                ))
        finally:
            for result in top:
                result.release()
            query.release()

        self._transition(RunState.DONE)
        return ranked
