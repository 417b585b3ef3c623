"""
Application error taxonomy.
Services raise these; main.py converts them into JSON responses.
"""

from typing import Optional


class AppError(Exception):
    """Base class for errors that carry a user-facing message and HTTP status"""

    status_code = 500
    kind = "error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body = {"detail": self.message, "error": self.kind}
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(AppError):
    """Malformed input, rejected before any I/O"""

    status_code = 422
    kind = "validation_error"


class DocumentTypeMismatchError(ValidationError):
    kind = "document_type_mismatch"


class PermissionDeniedError(AppError):
    status_code = 403
    kind = "permission_denied"


class NotFoundError(AppError):
    status_code = 404
    kind = "not_found"


class MutationInProgressError(AppError):
    """Another mutation on the same record has not finished yet"""

    status_code = 409
    kind = "mutation_in_progress"


class OperationTimeoutError(AppError, TimeoutError):
    status_code = 504
    kind = "timeout"

    def __init__(self, message: str = "The request took too long. Please try again."):
        super().__init__(message)


class CheckoutInitiationError(AppError):
    status_code = 502
    kind = "checkout_initiation_failed"


class VerificationFailure(AppError):
    status_code = 402
    kind = "verification_failed"


class NotificationDeliveryError(AppError):
    """Writing a notification failed; never surfaced as a request failure"""

    kind = "notification_delivery_failed"
