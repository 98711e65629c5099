from __future__ import annotations


class ExobrainError(Exception):
    """Base class for ingestion errors."""


class FetchError(ExobrainError):
    """
    The note source could not be read.

    `retriable` separates transient failures (rate limits, timeouts, 5xx)
    from ones that will not go away by waiting (bad token, missing access).
    """

    def __init__(self, message: str, retriable: bool = False):
        super().__init__(message)
        self.retriable = retriable

    def __repr__(self) -> str:
        return f"FetchError({str(self)!r}, retriable={self.retriable})"


class MalformedInputError(ExobrainError):
    def __init__(self, unit_id: str, message: str | None = None):
        super().__init__(
            message or f"Unit {unit_id!r} appears twice with different content"
        )
        self.unit_id = unit_id


class DanglingReferenceWarning(UserWarning):
    """A child, reference or root id that is not in the graph."""

    def __init__(self, unit_id: str, referrer: str | None = None):
        if referrer:
            msg = f"{referrer!r} points at {unit_id!r}, which is not in the batch"
        else:
            msg = f"root {unit_id!r} is not in the batch"
        super().__init__(msg)
        self.unit_id = unit_id
        self.referrer = referrer
