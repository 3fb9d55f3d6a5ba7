"""Error types and result wrappers for Walkscape."""

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class WalkscapeError(Exception):
    """Base class for all Walkscape errors"""


class ValidationError(WalkscapeError):
    """Bad input shape or missing required tour fields, raised before any write"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFound(WalkscapeError):
    """Requested tour or object does not exist"""


class QuotaError(WalkscapeError):
    """Local store is full"""


class PersistenceError(WalkscapeError):
    """Local cache write failed after every degrade step"""


class TransportError(WalkscapeError):
    """Remote fetch or upload failed"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PlaybackError(WalkscapeError):
    """Audio source failed to decode or load"""


@dataclass
class DisplayError:
    """An error shaped for the UI layer to render"""
    kind: str
    message: str
    field: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: Exception) -> "DisplayError":
        return cls(
            kind=type(exc).__name__,
            message=str(exc),
            field=getattr(exc, "field", None),
        )


@dataclass
class Result(Generic[T]):
    """Value-or-error return for data-loading paths"""
    value: Optional[T] = None
    error: Optional[DisplayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, exc: Exception) -> "Result[T]":
        return cls(error=DisplayError.from_exception(exc))


@dataclass
class DeleteReport:
    """Per-key outcome of a bulk asset deletion"""
    deleted: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        total = len(self.deleted) + len(self.errors)
        return {
            "deleted": [{"key": k, "status": "deleted"} for k in self.deleted],
            "errors": list(self.errors),
            "summary": {"total": total, "successful": len(self.deleted), "failed": len(self.errors)},
        }
