from __future__ import annotations

from typing import List, Optional


class MindTrackError(Exception):
    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ValidationError(MindTrackError):
    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        errors: Optional[List[dict]] = None,
    ) -> None:
        super().__init__(message, field)
        if errors is None:
            errors = [{"field": field, "message": message}]
        self.errors = errors

    def to_dict(self) -> dict:
        return {"detail": self.message, "errors": self.errors}


class MissingField(ValidationError):
    pass


class OutOfRange(ValidationError):
    pass


class NotFoundError(MindTrackError):
    status_code = 404


class StorageError(MindTrackError):
    status_code = 503
    retryable = True

    def __init__(
        self,
        message: str,
        operation: str,
        user_id: Optional[int] = None,
        record_id: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.user_id = user_id
        self.record_id = record_id

    def to_dict(self) -> dict:
        return {"detail": "Storage is temporarily unavailable. Please try again."}

    def context(self) -> dict:
        return {
            "operation": self.operation,
            "user_id": self.user_id,
            "record_id": self.record_id,
        }
