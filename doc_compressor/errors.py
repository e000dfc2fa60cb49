"""
errors.py - Exception hierarchy for the compression pipeline.

Every stage raises one of these. Nothing here is retried automatically.
"""


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class DecodeError(PipelineError):
    """Source bitmap or document could not be read."""


class DocumentParseError(DecodeError):
    """PDF is malformed, encrypted, or a page failed to render."""


class EncodeError(PipelineError):
    """Codec could not produce output (e.g. zero-area bitmap)."""


class ReassemblyError(PipelineError):
    """Output PDF or archive could not be built."""


class ExternalServiceError(PipelineError):
    """Opaque failure from the text extraction service."""
