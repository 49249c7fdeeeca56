# entity_support/utils/errors.py

"""
Error types shared across the package.

Missing data (no pseudo-document, no salience entry, no relatedness value)
is never an error: it is returned as None / {} / [] and skipped by callers.
"""


class SupportPassageError(Exception):
    """Base class for errors raised by entity_support."""


class MalformedInputError(SupportPassageError, ValueError):
    """A ranking / qrels / cache line or an entity id could not be parsed."""


class ExternalServiceError(SupportPassageError):
    """A call to the passage index or to a WAT / SWAT oracle failed."""


class IndexUnavailableError(SupportPassageError):
    """The passage index could not be opened. Fatal for a run."""
