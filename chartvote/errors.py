"""
SMX Chart Votes - Exceptions

Application-level exceptions.  Library exceptions (httpx, pydantic, sqlite)
are converted to these at module boundaries so routes only need to know
about one hierarchy.
"""


class ChartVoteError(Exception):
    """Base exception for the application."""


class UpstreamError(ChartVoteError):
    """The SMX API could not be reached or returned unusable data."""


class ConflictError(ChartVoteError):
    """A record with the same unique key already exists."""
