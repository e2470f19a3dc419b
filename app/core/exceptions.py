from typing import Any, Dict, Optional


class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class ValidationError(AppException):
    """Missing or malformed input that passed schema parsing."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=details
        )


class AccessDeniedError(AppException):
    """Custom permission error. Named AccessDeniedError to avoid shadowing Python's built-in PermissionError."""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="PERMISSION_DENIED"
        )


class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND",
            details={"entity": entity, "id": entity_id}
        )


class InvalidTransitionError(AppException):
    """The requested action is not legal from the entity's current state."""
    def __init__(self, message: str, current_state: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=409,
            error_code="INVALID_TRANSITION",
            details={"current_state": current_state} if current_state else None
        )


class InsufficientBalanceError(AppException):
    def __init__(self, balance: Any, requested: Any):
        super().__init__(
            message=f"Insufficient leave credits: balance is {balance} but {requested} day(s) are required.",
            status_code=400,
            error_code="INSUFFICIENT_BALANCE",
            details={"balance": str(balance), "requested": str(requested)}
        )


class ConcurrencyConflictError(AppException):
    """A guarded update found the row in a different state than it was read in."""
    def __init__(self, message: str = "The record was modified by another request. Reload and try again."):
        super().__init__(
            message=message,
            status_code=409,
            error_code="CONCURRENCY_CONFLICT"
        )
