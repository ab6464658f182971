"""Result types and error kinds of the rendering direction."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Serializable error codes reported instead of exceptions."""

    CONTENT_TOO_LARGE = "CONTENT_TOO_LARGE"
    NESTING_TOO_DEEP = "NESTING_TOO_DEEP"
    DANGEROUS_CONTENT = "DANGEROUS_CONTENT"
    RENDER_TIMEOUT = "RENDER_TIMEOUT"
    RENDER_ABORTED = "RENDER_ABORTED"
    OUTPUT_TOO_LARGE = "OUTPUT_TOO_LARGE"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class ValidationResult:
    """Outcome of validating Markdown input.

    ``sanitized`` is usable even when ``valid`` is false: it holds the truncated,
    flattened or pattern-stripped text.
    """

    valid: bool
    sanitized: str
    error: Optional[ErrorKind] = None


@dataclass(slots=True)
class RenderResult:
    """Outcome of a render: HTML on success, an error kind plus safe fallback otherwise."""

    success: bool
    html: Optional[str] = None
    error: Optional[ErrorKind] = None
    fallback: Optional[str] = None

    @classmethod
    def ok(cls, html: str) -> "RenderResult":
        return cls(success=True, html=html)

    @classmethod
    def failed(cls, error: ErrorKind, fallback: str) -> "RenderResult":
        return cls(success=False, error=error, fallback=fallback)

    @property
    def display_html(self) -> str:
        """Return whatever should be shown: the HTML or the fallback."""

        if self.success and self.html is not None:
            return self.html
        return self.fallback or ""


class RenderError(RuntimeError):
    """Runtime render fault; counted by the circuit breaker."""

    kind: ErrorKind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.kind.value)


class RenderTimeoutError(RenderError):
    kind = ErrorKind.RENDER_TIMEOUT


class RenderAbortedError(RenderError):
    kind = ErrorKind.RENDER_ABORTED


class OutputTooLargeError(RenderError):
    kind = ErrorKind.OUTPUT_TOO_LARGE
