"""
Lazy enumeration of candidate image files.

Files are produced one at a time in sorted order, so a scan can be
cancelled between candidates and repeated runs see the same sequence.
A generator is single pass: to rescan, call again.
"""

import os
import logging
import threading
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".tiff", ".webp")


def is_supported(path: str) -> bool:
    return path.lower().endswith(SUPPORTED_EXTENSIONS)


def _walk(directory: str, recursive: bool) -> Iterator[str]:
    if not recursive:
        for name in sorted(os.listdir(directory)):
            path = os.path.join(directory, name)
            if os.path.isfile(path):
                yield path
        return

    for root, dirs, files in os.walk(directory):
        dirs.sort()
        for name in sorted(files):
            yield os.path.join(root, name)


def iter_image_files(directory: str,
                     recursive: bool = False,
                     cancel_event: Optional[threading.Event] = None,
                     exclude: Optional[str] = None) -> Iterator[str]:
    """
    Yield supported image paths under a directory.

    Args:
        directory: Root directory to scan.
        recursive: Descend into subdirectories.
        cancel_event: Stops the sequence when set; checked before each file.
        exclude: Path to leave out (compared after normalization).

    Yields:
        File paths with a supported image extension.
    """
    excluded = os.path.normcase(os.path.abspath(exclude)) if exclude else None

    for path in _walk(directory, recursive):
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Scan cancelled")
            return
        if not is_supported(path):
            continue
        if excluded and os.path.normcase(os.path.abspath(path)) == excluded:
            continue
        yield path
