"""
panel_match: find visually similar artwork panels in a directory.

Ranks candidate images against a query by ORB keypoint correspondences,
Lowe's ratio test and optional RANSAC homography verification.

Modules:
    engine         MatchEngine: directory scan, ranking, rendering
    features       DescriptorSet and feature extractors
    orb_matcher    kNN correspondence search + ratio test
    homography     RANSAC verification policies
    scoring        Overlap score and top-K ranking
    scanner        Lazy image file enumeration
    preprocessing  Image decoding and depth checks
    render         Composite match images
    signatures     Descriptor vector dump
    cli            Command line entry point
"""

__version__ = "1.0.0"
