"""
Uniform result shape returned by every Loom engine operation.

Failures never raise out of the engine: a caller receives a ``LoomResult``
it can render or log. ``error`` carries a machine-readable code from
``rabs.utils.errors.E`` when the operation was rejected or rolled back; it is
``None`` for resource-insufficiency outcomes, which are recorded state rather
than errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LoomResult:
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def ok(cls, message: str, **data: Any) -> "LoomResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def negative(cls, message: str, **data: Any) -> "LoomResult":
        """Successful call whose business outcome is negative (recorded state)."""
        return cls(success=False, message=message, data=data)

    @classmethod
    def failure(cls, message: str, error: str, **data: Any) -> "LoomResult":
        return cls(success=False, message=message, data=data, error=error)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data:
            body["data"] = self.data
        if self.error:
            body["error"] = self.error
        return body
