"""Failure kinds raised by the targets engine.

Each kind maps to one HTTP status and one recovery path for the caller, so they
are separate classes and never wrap one another:

- ValidationError: fix the request, retrying unchanged will fail again.
- NotFoundError: refetch today's metrics, then retry.
- PreconditionFailedError: acknowledge the current metrics first.
- TransientStorageError: storage was unavailable, retry later.
"""

from fastapi import status


class HealthTargetsError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind: str = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class ValidationError(HealthTargetsError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "validation"

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])

    def to_dict(self) -> dict:
        return {**super().to_dict(), "errors": self.errors}


class NotFoundError(HealthTargetsError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"


class PreconditionFailedError(HealthTargetsError):
    status_code = status.HTTP_412_PRECONDITION_FAILED
    kind = "precondition_failed"


class TransientStorageError(HealthTargetsError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    kind = "transient_storage"
