"""
Session lifecycle errors.

Each error has a stable category and the HTTP status the API answers with.
A failed start never touches the trainee's existing active session.
"""
from voice_turn.errors import RehearsalError


class AlreadyActive(RehearsalError):
    """The trainee already has an active session."""

    category = "session.already_active"
    status_code = 409


class ConfirmationMismatch(RehearsalError):
    """The confirmation phrase did not match exactly."""

    category = "session.confirmation_mismatch"
    status_code = 400


class NotFound(RehearsalError):
    """Unknown session (or one that belongs to another trainee)."""

    category = "session.not_found"
    status_code = 404


class InvalidState(RehearsalError):
    """The session is not in a state that allows the operation."""

    category = "session.invalid_state"
    status_code = 409


class NoSubjectsAvailable(RehearsalError):
    """The machine/part catalog is empty."""

    category = "session.no_subjects_available"
    status_code = 503


class Unauthorized(RehearsalError):
    """The request carries no trainee identity."""

    category = "auth.unauthorized"
    status_code = 401
