"""Structured error objects for Houdini inference.

Every error is machine-readable. Parse and configuration problems are
raised at construction time; oracle faults are reported through observers
and never abort an inference run.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    SYNTAX_ERROR = "syntax_error"
    NAME_ERROR = "name_error"
    CONFIGURATION_ERROR = "configuration_error"
    ORACLE_FAULT = "oracle_fault"
    INTERNAL_ERROR = "internal_error"


@dataclass
class SourceLocation:
    line: int
    column: int
    file: str = "<stdin>"

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "line": self.line, "column": self.column}


@dataclass
class HoudiniError:
    kind: ErrorKind
    message: str
    location: Optional[SourceLocation] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.location:
            d["location"] = self.location.to_dict()
        if self.details:
            d["details"] = self.details
        return d

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def __str__(self) -> str:
        loc = f" at {self.location}" if self.location else ""
        return f"[{self.kind.value}]{loc}: {self.message}"


def syntax_error(
    message: str,
    location: Optional[SourceLocation] = None,
) -> HoudiniError:
    return HoudiniError(
        kind=ErrorKind.SYNTAX_ERROR,
        message=message,
        location=location,
    )


def name_error(
    name: str,
    location: Optional[SourceLocation] = None,
    what: str = "name",
) -> HoudiniError:
    return HoudiniError(
        kind=ErrorKind.NAME_ERROR,
        message=f"Undefined {what} '{name}'",
        location=location,
        details={"name": name},
    )


def configuration_error(
    message: str,
    location: Optional[SourceLocation] = None,
    **details: Any,
) -> HoudiniError:
    return HoudiniError(
        kind=ErrorKind.CONFIGURATION_ERROR,
        message=message,
        location=location,
        details=dict(details),
    )


def oracle_fault(
    implementation: str,
    message: str,
) -> HoudiniError:
    return HoudiniError(
        kind=ErrorKind.ORACLE_FAULT,
        message=f"Verifier session for '{implementation}' failed: {message}",
        details={"implementation": implementation},
    )


class HoudiniException(Exception):
    """Exception wrapping one or more HoudiniErrors."""

    def __init__(self, errors: list[HoudiniError] | HoudiniError):
        if isinstance(errors, HoudiniError):
            errors = [errors]
        self.errors = errors
        super().__init__(self._format())

    def _format(self) -> str:
        return "\n".join(str(e) for e in self.errors)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps([e.to_dict() for e in self.errors], indent=indent)


class ParseError(HoudiniException):
    """Raised when program text cannot be tokenized or parsed."""


class ConfigurationError(HoudiniException):
    """Raised for inconsistent declarations or invalid settings."""


class SessionFault(HoudiniException):
    """Raised by a verifier session that could not complete a request.

    The scheduler treats a fault as if ``verify()`` had not completed: the
    session is popped if it was pushed and the round counts as inconclusive.
    """
