"""Error hierarchy for platform lifecycle operations.

Every error carries a stable ``code`` and the HTTP status used when it is
raised before a progress stream has been opened.  Once an operation is
streaming, the same errors are reported in-band as the terminating progress
message instead.
"""

from __future__ import annotations

from typing import Any


class PlatformError(Exception):
    """Base class for all platform lifecycle failures."""

    code = "platform_error"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


# -- Validation (400) ---------------------------------------------------------


class ValidationError(PlatformError):
    """Bad or missing request input; reported before any provisioner call."""

    code = "validation_error"
    http_status = 400


class InvalidNameError(ValidationError):
    code = "invalid_name"


class InvalidRecipeError(ValidationError):
    code = "invalid_recipe"


class InvalidFlagError(ValidationError):
    code = "invalid_flag"


# -- Conflict (409) -----------------------------------------------------------


class ConflictError(PlatformError):
    """The request collides with current state or another in-flight operation."""

    code = "conflict"
    http_status = 409


class PlatformExistsError(ConflictError, InvalidNameError):
    code = "platform_exists"
    http_status = 409


class OperationInProgressError(ConflictError):
    code = "operation_in_progress"


class PlatformInUseError(ConflictError):
    code = "platform_in_use"


class PlatformDisabledError(ConflictError):
    code = "platform_disabled"


# -- Not found (404) ----------------------------------------------------------


class NotFoundError(PlatformError):
    code = "not_found"
    http_status = 404


class PlatformNotFoundError(NotFoundError):
    code = "platform_not_found"

    def __init__(self, name: str = "", message: str | None = None) -> None:
        super().__init__(message or f"Platform '{name}' not found")
        self.name = name


# -- Backend ------------------------------------------------------------------


class ProvisionerError(PlatformError):
    """Raised when a provisioner backend fails to build or remove a platform."""

    code = "provisioner_error"
    http_status = 500


_ERRORS_BY_CODE: dict[str, type[PlatformError]] = {
    cls.code: cls
    for cls in (
        PlatformError,
        ValidationError,
        InvalidNameError,
        InvalidRecipeError,
        InvalidFlagError,
        ConflictError,
        PlatformExistsError,
        OperationInProgressError,
        PlatformInUseError,
        PlatformDisabledError,
        NotFoundError,
        PlatformNotFoundError,
        ProvisionerError,
    )
}


def error_from_response(body: dict[str, Any], status_code: int) -> PlatformError:
    """Rebuild a typed error from an API error body (client side)."""
    detail = body.get("error") or {}
    code = detail.get("code", "")
    message = detail.get("message") or f"request failed with status {status_code}"
    cls = _ERRORS_BY_CODE.get(code)
    if cls is PlatformNotFoundError:
        return PlatformNotFoundError(message=message)
    if cls is None:
        if status_code == 404:
            cls = NotFoundError
        elif status_code == 409:
            cls = ConflictError
        elif 400 <= status_code < 500:
            cls = ValidationError
        else:
            cls = PlatformError
    return cls(message)
