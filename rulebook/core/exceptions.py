"""Custom exception classes for the application."""

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    def __init__(self, resource: str = "Resource"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "You don't have permission to access this resource"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class ValidationError(HTTPException):
    def __init__(self, detail: str = "Validation error"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
        )


class RuleRejectedError(HTTPException):
    """A rule definition failed the safety guard and was not persisted."""

    def __init__(self, code: str, reason: str, offending_value: str | None):
        self.code = code
        self.reason = reason
        self.offending_value = offending_value
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "code": code,
                "reason": reason,
                "offending_value": offending_value,
            },
        )


class SplitConversionError(ValueError):
    """Split specs cannot be reconciled against a record's total."""

    def __init__(self, message: str, total: int, amounts: list[int] | None = None):
        super().__init__(message)
        self.total = total
        self.amounts = amounts or []
