"""Error taxonomy for the citation linkage engine.

Per-item problems (``ParseError``) are recorded and skipped, unavailable
evidence sources (``SourceUnavailable``) degrade to empty input, and
configuration problems (``ConfigurationError``) abort before any work starts.
"""
from __future__ import annotations


class DafLinkError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(DafLinkError):
    """Fatal setup problem: no volumes, malformed snapshot, bad settings."""


class ParseError(DafLinkError, ValueError):
    """A citation fragment that could not be resolved to a canonical page."""

    def __init__(self, message: str, *, snippet: str = "", start: int = -1) -> None:
        super().__init__(message)
        self.snippet = snippet
        self.start = start


class SourceUnavailable(DafLinkError):
    """An evidence source or the ruling store could not be read."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class PersistenceConflict(DafLinkError):
    """A keyed write collided with an existing row and could not be merged."""


class PersistenceFailed(DafLinkError):
    """A store write kept failing after its retries were used up."""

    def __init__(self, operation: str, attempts: int, reason: str) -> None:
        super().__init__(f"{operation} failed after {attempts} attempt(s): {reason}")
        self.operation = operation
        self.attempts = attempts
        self.reason = reason


class CorpusExhausted(DafLinkError):
    """Raised when a chunk is requested past the end of the corpus."""

    def __init__(self, offset: int, total: int) -> None:
        super().__init__(f"offset {offset} is past the end of corpus ({total} rulings)")
        self.offset = offset
        self.total = total
