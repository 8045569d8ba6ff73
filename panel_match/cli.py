"""
Command line interface.

    panel-match scan -f query.png -d /data/scans -s -H
    panel-match signatures -f page.png -o signatures.json
"""

import argparse
import logging
import sys
from typing import List, Optional

import cv2

from .engine import MatchEngine, MatchOptions, VerificationPolicy
from .errors import PanelMatchError, QueryError
from .features import DEFAULT_FEATURES, EXTRACTORS, create_extractor
from .log import setup_logging
from .orb_matcher import BACKENDS, DEFAULT_LOWES_RATIO
from .preprocessing import read_image
from .scoring import DEFAULT_TOP_K
from .signatures import dump_signatures, generate_signatures, signature_footprint

logger = logging.getLogger(__name__)

SIGNATURE_FEATURES = 5000


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panel-match",
        description="Find images matching a query image by local features",
    )
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--log-json", action="store_true", help="Log JSON lines")
    verbs = parser.add_subparsers(dest="verb", required=True)

    scan = verbs.add_parser("scan", help="Scan a directory for matching images")
    scan.add_argument("-f", "--file", required=True, help="The image to scan for")
    scan.add_argument("-d", "--directory", required=True, help="The directory to scan")
    scan.add_argument("-s", "--subdirectories", action="store_true",
                      help="Scan subdirectories")
    scan.add_argument("-l", "--lowes-ratio", type=float, default=DEFAULT_LOWES_RATIO,
                      help="Lowe's ratio test threshold")
    scan.add_argument("-H", "--homography", action="store_true",
                      help="Require a homography between matched images")
    scan.add_argument("--policy", choices=[p.value for p in VerificationPolicy], default=None,
                      help="Verification policy (overrides --homography)")
    scan.add_argument("-t", "--features", type=int, default=DEFAULT_FEATURES,
                      help="Number of ORB features to detect")
    scan.add_argument("-k", "--top-k", type=int, default=DEFAULT_TOP_K,
                      help="Number of matches to keep and render")
    scan.add_argument("-o", "--output-dir", default=".", help="Where match-<rank>.jpg go")
    scan.add_argument("--workers", type=int, default=1, help="Parallel candidate workers")
    scan.add_argument("--backend", choices=BACKENDS, default="bruteforce",
                      help="Nearest-neighbor backend")
    scan.add_argument("--extractor", choices=sorted(EXTRACTORS), default="orb",
                      help="Feature extractor")
    scan.add_argument("--skip-query", action="store_true",
                      help="Do not compare the query with itself")

    sig = verbs.add_parser("signatures", help="Dump descriptor vectors of one image")
    sig.add_argument("-f", "--file", required=True, help="Image to generate signatures for")
    sig.add_argument("-o", "--output", default="signatures.json", help="JSON output path")
    sig.add_argument("-t", "--features", type=int, default=SIGNATURE_FEATURES,
                     help="Number of ORB features to detect")
    sig.add_argument("--no-normalize", action="store_true",
                     help="Keep raw descriptor values")
    return parser


def options_from_args(args: argparse.Namespace) -> MatchOptions:
    if args.policy is not None:
        policy = VerificationPolicy(args.policy)
    elif args.homography:
        policy = VerificationPolicy.EXISTENCE
    else:
        policy = VerificationPolicy.NONE

    return MatchOptions(
        features=args.features,
        lowes_ratio=args.lowes_ratio,
        policy=policy,
        top_k=args.top_k,
        recursive=args.subdirectories,
        backend=args.backend,
        extractor=args.extractor,
        workers=args.workers,
        skip_query=args.skip_query,
        output_dir=args.output_dir,
    )


def run_scan(args: argparse.Namespace) -> bool:
    try:
        engine = MatchEngine(options_from_args(args))
        ranked = engine.run(args.file, args.directory)
    except QueryError as e:
        logger.error(str(e))
        return False
    except PanelMatchError as e:
        logger.error(f"Scan failed: {e}")
        return False
    except (OSError, cv2.error) as e:
        logger.error(f"Could not write match images to {args.output_dir}: {e}")
        return False

    if not ranked:
        logger.info("No matches found")
    for match in ranked:
        print(f"{match.rank}\t{match.score:.4f}\t{match.identity}")
    return True


def run_signatures(args: argparse.Namespace) -> bool:
    try:
        image = read_image(args.file)
        extractor = create_extractor("orb", args.features)
        vectors = generate_signatures(extractor, image, normalize=not args.no_normalize)
    except FileNotFoundError:
        logger.warning(f"Could not find file to process: {args.file}")
        return False
    except (PanelMatchError, OSError) as e:
        logger.error(f"Could not generate signatures for {args.file}: {e}")
        return False

    try:
        dump_signatures(args.output, vectors)
    except OSError as e:
        logger.error(f"Could not write signatures to {args.output}: {e}")
        return False

    single, projected = signature_footprint(vectors)
    logger.info(
        f"Signature written: {len(vectors)} vectors - single signature: {single} "
        f"- 8 million of them: {projected}"
    )
    return True


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, json_format=args.log_json)

    if args.verb == "scan":
        ok = run_scan(args)
    else:
        ok = run_signatures(args)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
