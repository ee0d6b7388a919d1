"""
Domain error taxonomy.

Services raise these; the handlers registered in ``main.create_app`` map them to
an HTTP status and a ``{"message", "code"}`` body.
"""
from typing import Optional


class ReportHubError(Exception):
    code = "ERROR"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code}


class NotFound(ReportHubError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id=None):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class AuthenticationFailure(ReportHubError):
    code = "AUTHENTICATION_FAILED"
    status_code = 401


class AuthorizationDenied(ReportHubError):
    code = "AUTHORIZATION_DENIED"
    status_code = 403

    def __init__(self, message: str = "Not authorized", reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class ValidationError(ReportHubError):
    code = "VALIDATION_ERROR"
    status_code = 400


class ConflictError(ReportHubError):
    code = "CONFLICT"
    status_code = 409


class DeliveryError(ReportHubError):
    code = "DELIVERY_FAILED"
    status_code = 502


class StorageError(ReportHubError):
    code = "STORAGE_FAILED"
    status_code = 502


class PartialCascadeFailure(ReportHubError):
    code = "CASCADE_INTERRUPTED"
    status_code = 500

    def __init__(self, entity: str, stage: str):
        super().__init__(
            f"Failed to delete {entity} data at stage '{stage}'; no records were removed. Please try again."
        )
        self.entity = entity
        self.stage = stage
