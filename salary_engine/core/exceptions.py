from typing import Any, Dict, List, Optional

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

class FieldError(Exception):
    """A single field-level rejection. Collected into SalaryValidationError."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "msg": self.message}

class SalaryValidationError(AppException):
    def __init__(self, errors: List[FieldError]):
        self.errors = errors
        summary = "; ".join(e.message for e in errors) or "Invalid salary structure"
        super().__init__(
            message=summary,
            status_code=422,
            error_code="SALARY_VALIDATION_FAILED",
            details={"fields": [e.to_dict() for e in errors]}
        )

    def messages_for(self, field: str) -> List[str]:
        return [e.message for e in self.errors if e.field == field]

class PreviewServiceError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=503,
            error_code="PREVIEW_UNAVAILABLE",
            details=details
        )

class SalaryPersistenceError(AppException):
    def __init__(self, message: str, field: Optional[str] = None, upstream_status: Optional[int] = None):
        self.field = field
        self.upstream_status = upstream_status
        super().__init__(
            message=message,
            status_code=502,
            error_code="SALARY_PERSISTENCE_FAILED",
            details={"field": field, "upstream_status": upstream_status}
        )

class SalaryNotFoundError(AppException):
    def __init__(self, user_id: int):
        super().__init__(
            message=f"Salary structure for user {user_id} not found",
            status_code=404,
            error_code="SALARY_NOT_FOUND"
        )
