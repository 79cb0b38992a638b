from typing import Any, Optional


class ClearviewError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_payload(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ClearviewError):
    status_code = 400
    default_message = "Invalid request payload."


class Unauthorized(ClearviewError):
    status_code = 401
    default_message = "Missing or invalid authorization header."


class PermissionDenied(ClearviewError):
    status_code = 403
    default_message = "You do not have permission to perform this action."


class NotFound(ClearviewError):
    status_code = 404
    default_message = "Not found."


class Conflict(ClearviewError):
    status_code = 409
    default_message = "Conflict."


class Gone(ClearviewError):
    status_code = 410
    default_message = "This link is no longer valid."


class Internal(ClearviewError):
    status_code = 500


class EmailDeliveryError(ClearviewError):
    status_code = 502
    default_message = "Failed to send email."
