"""
Error taxonomy for the API.

Every failure the service reports on purpose is an ``AppError``; the app
renders it as ``{"success": false, "code": ..., "message": ...}`` with the
error's HTTP status. Codes follow the AUTH/DB/BIZ/PAY/SYS families.
"""
from fastapi import HTTPException


class AppError(HTTPException):
    status_code = 500
    code = "SYS_001"
    message = "An unexpected error occurred"

    def __init__(self, message: str | None = None, *, code: str | None = None,
                 status_code: int | None = None):
        self.message = message or self.message
        self.code = code or self.code
        super().__init__(status_code=status_code or self.status_code,
                         detail=self.message)

    def to_dict(self) -> dict:
        return {"success": False, "code": self.code, "message": self.message}


class NotAuthenticated(AppError):
    status_code = 401
    code = "AUTH_001"
    message = "User not authenticated. Please log in to continue."


class PermissionDenied(AppError):
    status_code = 403
    code = "AUTH_002"
    message = "Permission denied"


class InvalidCredentials(AppError):
    status_code = 401
    code = "AUTH_003"
    message = "Invalid email or password"


class NotFound(AppError):
    status_code = 404
    code = "DB_002"
    message = "Not found"


class ValidationFailed(AppError):
    status_code = 400
    code = "BIZ_001"
    message = "Data validation error. Please check your input and try again."


class Conflict(AppError):
    status_code = 409
    code = "BIZ_002"
    message = "Conflict"


class PaymentError(AppError):
    status_code = 502
    code = "PAY_001"
    message = "Payment processing failed"


class WebhookError(AppError):
    status_code = 400
    code = "PAY_002"
    message = "Invalid webhook"


class WebhookProcessingError(AppError):
    # 5xx so the provider redelivers the event
    status_code = 500
    code = "PAY_003"
    message = "Webhook processing failed"
