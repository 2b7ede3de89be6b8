# errors.py
from fastapi import status


class SlotSwapError(Exception):
    """Base class for failures reported back to the caller of a command."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SlotSwapError):
    """Malformed input, e.g. an end time that is not after the start time."""
    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationError(SlotSwapError):
    """The caller does not own the slot or is not the recipient of the request."""
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(SlotSwapError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(SlotSwapError):
    """A business rule forbids the transition in the current state."""
    status_code = status.HTTP_409_CONFLICT
