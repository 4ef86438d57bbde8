from __future__ import annotations

from typing import Any, Dict, Optional

VALIDATION_ERROR = "VALIDATION_ERROR"
INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
INVALID_GUILD_ID = "INVALID_GUILD_ID"
STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class VoiceStatsError(Exception):
    """Base class for errors raised by the stats engine."""


class ValidationError(VoiceStatsError):
    """
    Caller input was rejected before the store was touched.
    ``field`` names the offending parameter so the dashboard can point at it.
    """

    def __init__(
        self,
        field: str,
        message: str,
        *,
        value: Any = None,
        code: str = VALIDATION_ERROR,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.value = value
        self.message = message
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {"field": self.field}
        if self.value is not None:
            details["value"] = self.value
        return {"code": self.code, "message": self.message, "details": details}


class RowDecodeError(VoiceStatsError):
    """A row read from the store does not match the expected column types."""

    def __init__(self, entity: str, column: str, value: Any, cause: Optional[Exception] = None):
        super().__init__(f"{entity}.{column}: cannot decode {value!r}")
        self.entity = entity
        self.column = column
        self.value = value
        self.__cause__ = cause


class RollupCancelled(VoiceStatsError):
    """A batch rollup was stopped at a page boundary."""

    def __init__(self, pages_read: int):
        super().__init__(f"rollup cancelled after {pages_read} page(s)")
        self.pages_read = pages_read
