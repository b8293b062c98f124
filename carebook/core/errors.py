"""Typed failures raised by the scheduling core.

Every failure is a ``ServiceError`` carrying a stable ``code`` and the HTTP
status the API layer answers with. Business-rule violations derive from
``BookingError``; ``StorageError`` sits beside it, not under it, so that
``except BookingError`` never mistakes a dropped connection for a lost slot.
"""


class ServiceError(Exception):
    code = "service_error"
    status_code = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.context:
            body["context"] = {k: str(v) for k, v in self.context.items()}
        return body


class BookingError(ServiceError):
    code = "booking_error"
    status_code = 400


class InvalidSlotError(BookingError):
    code = "invalid_slot"
    status_code = 422


class ConflictError(BookingError):
    code = "slot_conflict"
    status_code = 409


class InvalidTransitionError(BookingError):
    code = "invalid_transition"
    status_code = 409


class CancellationWindowError(BookingError):
    code = "cancellation_window"
    status_code = 403


class ConfirmationCodeError(BookingError):
    code = "confirmation_code_mismatch"
    status_code = 403


class NotFoundError(BookingError):
    code = "not_found"
    status_code = 404


class ConfigurationError(BookingError):
    code = "invalid_schedule"
    status_code = 422


class StorageError(ServiceError):
    code = "storage_unavailable"
    status_code = 503
