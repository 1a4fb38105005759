"""Error kinds raised by the roaster core and translated at the HTTP boundary."""

from __future__ import annotations

from typing import Any


class RoasterError(Exception):
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}


class ValidationError(RoasterError):
    status_code = 400
    public_message = "Invalid request"


class AuthError(RoasterError):
    status_code = 401
    public_message = "Authentication required"


class NotFoundError(RoasterError):
    status_code = 404
    public_message = "Not found"


class QuotaExceededError(RoasterError):
    status_code = 402
    public_message = "Monthly quota exceeded"

    def __init__(self, message: str = "", *, quota: dict[str, Any] | None = None):
        super().__init__(message)
        self.quota = quota or {}

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message, "code": "quota_exceeded", "quota": self.quota}


class ExternalServiceError(RoasterError):
    status_code = 500
    public_message = "External service failure"

    def __init__(self, message: str = "", *, service: str = ""):
        super().__init__(message)
        self.service = service

    def to_payload(self) -> dict[str, Any]:
        # Provider error text can include request ids and key fragments.
        return {"error": f"{self.service or 'external service'} request failed"}


class ProviderTimeoutError(ExternalServiceError):
    public_message = "Provider call timed out"

    def to_payload(self) -> dict[str, Any]:
        return {"error": f"{self.service or 'provider'} request timed out"}


class ParseError(RoasterError):
    public_message = "Unparseable provider output"


class PersistenceConflict(RoasterError):
    public_message = "Row already exists"

    def __init__(self, message: str = "", *, content_hash: str = ""):
        super().__init__(message)
        self.content_hash = content_hash
