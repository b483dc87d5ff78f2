from __future__ import annotations


class DomainError(Exception):
    """Recoverable, typed failure with a stable machine-readable code."""

    code = "DOMAIN_ERROR"
    status_code = 400
    title = "Bad Request"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = 404
    title = "Not Found"

    @classmethod
    def for_entity(cls, entity: str, entity_id: str) -> "NotFoundError":
        return cls(f"{entity} not found with ID: {entity_id}")


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = 400
    title = "Validation Failed"


class ConflictError(DomainError):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 409
    title = "Conflict"


class AccessDeniedError(DomainError):
    code = "ACCESS_DENIED"
    status_code = 403
    title = "Access Denied"


DUPLICATE_ASSESSMENT = "DUPLICATE_ASSESSMENT"
ASSESSMENT_FINALIZED = "ASSESSMENT_FINALIZED"
