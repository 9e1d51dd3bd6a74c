"""Errors surfaced synchronously to the caller of a game operation.

The API layer maps each subclass to an HTTP status; callers are expected to
refresh their view of the game rather than retry blindly.
"""

from __future__ import annotations


class GameError(Exception):
    """Base class for rejected game operations."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(GameError):
    """A referenced user, game, round, player, card, persona, or key does not exist."""

    status_code = 404


class ValidationFailed(GameError):
    """Input out of bounds: lengths, temperatures, caps, formats."""

    status_code = 400


class StateConflict(GameError):
    """The operation is not valid in the current game or round state."""

    status_code = 409


class DuplicateSubmission(StateConflict):
    """The player already has a submission for this round."""


class PermissionDenied(GameError):
    """The caller does not own the resource they are trying to change."""

    status_code = 403


class CredentialRejected(ValidationFailed):
    """A provider key failed format or live validation.

    ``reason`` is the classified, user-facing explanation.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
