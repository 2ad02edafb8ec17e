"""
Domain errors raised by the ticketing core.

Each error carries the HTTP status the API boundary answers with, so routers
only need to translate ``BorderControlError`` into ``HTTPException``.
"""

from typing import Any, Dict, Optional


class BorderControlError(Exception):
    status_code = 500
    message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    @property
    def detail(self) -> Dict[str, Any]:
        detail = {"error": type(self).__name__, "message": self.message}
        detail.update(self.extra)
        return detail

# Validation (400 / 422)
class MissingParameters(BorderControlError):
    status_code = 400
    message = "Required parameters are missing"

class InvalidPrefix(BorderControlError):
    status_code = 422
    message = "Unknown ticket prefix"

class InvalidTicketNumber(BorderControlError):
    status_code = 422
    message = "Ticket number does not match the expected format"

class NotAForeigner(BorderControlError):
    status_code = 422
    message = "Stay duration is only tracked for foreign nationals"

# Authorization (403)
class NoPortAssigned(BorderControlError):
    status_code = 403
    message = "User has no assigned port"

class WrongPort(BorderControlError):
    status_code = 403
    message = "This ticket is not associated with your port of entry"

# Not found (404)
class TicketNotFound(BorderControlError):
    status_code = 404
    message = "Ticket not found"

class UnknownPort(BorderControlError):
    status_code = 404
    message = "Port not found or inactive"

# Conflicts (409)
class AlreadyFinalized(BorderControlError):
    status_code = 409
    message = "This ticket has already been recorded for a departure"

class AlreadyDecided(BorderControlError):
    status_code = 409
    message = "A decision already exists for this action type"

class DuplicateDecision(BorderControlError):
    status_code = 409
    message = "This ticket has already been processed for this action type"

class LockHeld(BorderControlError):
    status_code = 409
    message = "Another agent is currently scanning this ticket"

    def __init__(self, remaining_seconds: int, message: Optional[str] = None):
        super().__init__(message, remaining_seconds=remaining_seconds)
        self.remaining_seconds = remaining_seconds

class TicketNumberTaken(BorderControlError):
    status_code = 409
    message = "Ticket number is already in use"

# Data integrity and persistence (422 / 500)
class MissingPassengerForm(BorderControlError):
    status_code = 422
    message = "Passenger form not found for this ticket"

class NumberSpaceExhausted(BorderControlError):
    status_code = 500
    message = "Ticket number space exhausted for prefix"

class TicketPersistenceFailed(BorderControlError):
    status_code = 500
    message = "An error occurred while saving the ticket"

class DecisionPersistenceFailed(BorderControlError):
    status_code = 500
    message = "An error occurred while recording the decision"
