"""Rendering direction: validated, bounded and sanitized Markdown to HTML."""

from .circuit import CircuitBreaker, CircuitState
from .models import (
    ErrorKind,
    OutputTooLargeError,
    RenderAbortedError,
    RenderError,
    RenderResult,
    RenderTimeoutError,
    ValidationResult,
)
from .renderer import MarkdownRenderer, RenderDeadline, chunk_markdown, render_plain_text
from .sanitizer import HtmlSanitizer, Sanitizer
from .validator import InputValidator

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ErrorKind",
    "HtmlSanitizer",
    "InputValidator",
    "MarkdownRenderer",
    "OutputTooLargeError",
    "RenderAbortedError",
    "RenderDeadline",
    "RenderError",
    "RenderResult",
    "RenderTimeoutError",
    "Sanitizer",
    "ValidationResult",
    "chunk_markdown",
    "render_plain_text",
]
