"""
Domain error taxonomy.

NotFound / Forbidden / Validation are reported to callers distinctly,
TransientStorageError is a generic retryable failure, and
NotificationDeliveryError never leaves the notification dispatcher.
"""


class TaskboardError(Exception):
    """Base error for the task tracking core"""

    status_code = 500

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class NotFoundError(TaskboardError):
    """A referenced task or identity does not exist"""

    status_code = 404

    def __init__(self, entity: str, entity_id) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ForbiddenError(TaskboardError):
    """The acting identity may not perform this mutation"""

    status_code = 403


class ValidationError(TaskboardError):
    """Malformed input, rejected before any write"""

    status_code = 422


class TransientStorageError(TaskboardError):
    """The store was unavailable (or timed out) during an atomic mutation.

    The transaction has been rolled back; the whole call may be retried.
    """

    status_code = 503

    def __init__(self, message: str, original_error: Exception = None) -> None:
        super().__init__(message, retryable=True)
        self.original_error = original_error


class NotificationDeliveryError(TaskboardError):
    """An out-of-band email could not be delivered"""

    def __init__(self, address: str, original_error: Exception = None) -> None:
        super().__init__(f"Email delivery to {address} failed: {original_error}", retryable=True)
        self.address = address
        self.original_error = original_error
