"""
Domain error taxonomy.

Services raise these; a single exception handler in app.main renders them
as `{"error": message}` with the status carried by the class.
"""

from typing import Optional

from fastapi import status


class BookingEngineError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(BookingEngineError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(BookingEngineError):
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(AuthError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(BookingEngineError):
    status_code = status.HTTP_404_NOT_FOUND


class NoDestinationConfigured(NotFound):
    def __init__(self, message: str = "No booking destination configured for this creator."):
        super().__init__(message)


class SignatureInvalid(BookingEngineError):
    status_code = status.HTTP_400_BAD_REQUEST


class ExternalProcessorError(BookingEngineError):
    """
    Failure talking to the payment processor.
    Client errors keep the processor's status, everything else is a 500.
    """

    def __init__(self, message: str, processor_status: Optional[int] = None):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
        if processor_status is not None and 400 <= processor_status < 500:
            code = processor_status
        super().__init__(message, status_code=code)
        self.processor_status = processor_status


class Conflict(BookingEngineError):
    """Duplicate key on insert. Swallowed by the pipeline, never rendered."""

    status_code = status.HTTP_409_CONFLICT
