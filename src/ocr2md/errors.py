"""
Exception hierarchy for the OCR pipeline.

ConfigurationError is fatal and raised before any page is processed.
RenderError and RecognitionError are recorded against a single page.
CacheError is never fatal to a page: a failed read counts as a miss and a
failed write is logged and skipped.
"""


class OCR2MDError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(OCR2MDError):
    """Missing backend assets, invalid model directory or bad settings."""


class RenderError(OCR2MDError):
    """A page could not be rasterized."""


class RecognitionError(OCR2MDError):
    """A recognition backend call failed."""


class CacheError(OCR2MDError):
    """Cache I/O or (de)serialization failure."""
