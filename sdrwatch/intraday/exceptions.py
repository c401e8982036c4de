"""Exception hierarchy for the intraday sync pipeline."""

from __future__ import annotations


class SliceSourceError(Exception):
    """Base class for errors raised while talking to the remote feed."""


class ArchiveDecodeError(SliceSourceError):
    """Raised when a slice archive (or one of its members) cannot be decoded.

    Attributes:
        member: Archive member that failed, or None if the archive itself is bad.
    """

    def __init__(self, message: str, member: str | None = None) -> None:
        super().__init__(message)
        self.member = member


class InvalidPartitionError(ValueError):
    """Raised when an agency / asset class pair is missing or unknown."""


class AgentRequestError(Exception):
    """Raised by the API client when a query request fails.

    Attributes:
        status_code: HTTP status of the failed response, None for transport errors.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
