from __future__ import annotations


class TicketingError(RuntimeError):
    """Base class for errors the lifecycle services surface to callers.

    ``message_key`` is resolved against the locale files at the HTTP boundary;
    ``user_message`` is the English fallback.
    """

    status_code: int = 400
    message_key: str = "error.unexpected"
    user_message: str = "An unexpected error occurred."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.user_message)
        self.detail = detail or self.user_message


class ValidationError(TicketingError):
    status_code = 400
    message_key = "error.validation"
    user_message = "The provided input is not valid."


class AuthorizationError(TicketingError):
    status_code = 403
    message_key = "error.forbidden"
    user_message = "You do not have permission to run this action."


class NotFoundError(TicketingError):
    status_code = 404
    message_key = "error.not_found"
    user_message = "The requested resource could not be found."


class InvalidTransitionError(TicketingError):
    status_code = 409
    message_key = "error.invalid_transition"
    user_message = "This status change is not allowed."


class InvalidStateError(TicketingError):
    status_code = 409
    message_key = "error.invalid_state"
    user_message = "The ticket is not in a valid state for this action."


class CapacityError(TicketingError):
    status_code = 409
    message_key = "error.capacity"
    user_message = "The agent has reached the maximum ticket load."


class ConflictError(TicketingError):
    status_code = 409
    message_key = "error.conflict"
    user_message = "The ticket was modified concurrently. Retry the request."
