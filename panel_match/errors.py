"""
Error kinds raised by the matching pipeline.

Per-candidate errors are caught by the engine and turn into a skipped
file; errors on the query image abort the run.
"""


class PanelMatchError(Exception):
    """Base class for all panel_match errors."""


class DecodeError(PanelMatchError):
    """Bytes could not be decoded into an image."""


class EmptyMatrixError(DecodeError):
    """Decoding succeeded but produced no pixel data."""


class UnsupportedDepthError(PanelMatchError):
    """Matrix depth is neither 8-bit unsigned nor 32-bit float."""

    def __init__(self, dtype):
        self.dtype = dtype
        super().__init__(
            f"Unsupported matrix depth {dtype}: expected uint8 or float32"
        )


class ExtractionError(PanelMatchError):
    """Feature extraction failed for an image."""


class QueryError(PanelMatchError):
    """The query image could not be resolved or loaded."""
