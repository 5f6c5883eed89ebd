"""
Service-layer exception hierarchy.

Services raise these; Loom engine steps convert them into a failed
``LoomResult`` and blueprints register handlers against them for the plain
service functions, so HTTP status codes stay consistent everywhere.

Usage:
    from rabs.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="LoomInstance", resource_id=42)
    raise ValidationError("weeks must be between 1 and 16", details={"weeks": 20})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "LoomInstance", "StaffShift").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule
    (window size out of bounds, unknown cancellation type, invalid state
    transition).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)
