"""Error taxonomy for the dispute engine.

Every error is raised before any state is touched, so a failed call
leaves the dispute exactly as it was.  The HTTP adapter maps each class
to ``status_code``.
"""

from __future__ import annotations


class DisputeError(Exception):
    """Base class for all engine rejections."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(DisputeError):
    """The dispute (or child record) id is unknown."""

    status_code = 404


class InvalidState(DisputeError):
    """The operation is not legal in the dispute's current status, tier or voting phase."""

    status_code = 409


class Conflict(DisputeError):
    """The voter has already cast a ballot on this dispute."""

    status_code = 409


class Forbidden(DisputeError):
    """The caller may not perform this action (ineligible voter, non-appealable decision)."""

    status_code = 403


class InvalidArgument(DisputeError):
    """A malformed argument, e.g. a partial vote without a 0-100 percentage."""

    status_code = 400
