"""Error kinds raised by the ticketing core."""
from typing import Any, Dict, Optional


class TicketingError(Exception):
    """Base class for failures reported to callers as success: false."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_body(self) -> Dict[str, Any]:
        return {'success': False, 'message': self.message}


class ValidationError(TicketingError):
    """Required input is missing or malformed."""

    status_code = 400

    def __init__(self, message: str, received: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.received = received

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        if self.received is not None:
            body['received'] = self.received
        return body


class NotFound(TicketingError):
    """No matching ticket, event or user."""

    status_code = 404


class AlreadyCheckedIn(TicketingError):
    """Check-in attempted on a ticket that is already checked in."""

    status_code = 409

    def __init__(self, name: str, check_in_time: Optional[str]):
        super().__init__(
            f"{name} has already been checked in at {check_in_time}"
        )
        self.name = name
        self.check_in_time = check_in_time

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body['checkInTime'] = self.check_in_time
        return body


class UpstreamError(TicketingError):
    """Jotform, SES or QR generation failed."""

    status_code = 502


class MalformedInput(TicketingError):
    """Embedded JSON in a submission could not be parsed."""

    status_code = 400
