"""Custom exceptions for the invoice tracker."""

class InvoiceTrackerError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class BusinessLogicError(InvoiceTrackerError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class ValidationRejection(BusinessLogicError):
    """User input rejected locally (paid line selection, unparsable amounts)."""
    def __init__(self, message, payload=None):
        super().__init__(message, 422, payload)

class NotFoundError(InvoiceTrackerError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class InvalidStatusTransition(BusinessLogicError):
    """Raised when a payment status change is not allowed."""
    def __init__(self, current, target):
        current_value = getattr(current, 'value', current)
        target_value = getattr(target, 'value', target)
        message = f"Cannot change payment status from {current_value} to {target_value}"
        super().__init__(message, status_code=409)
        self.current = current
        self.target = target

class PersistenceError(InvoiceTrackerError):
    """Raised when a write to the persistence store fails."""
    def __init__(self, message="Could not save changes", payload=None):
        super().__init__(message, 503, payload)
