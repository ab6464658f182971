"""Screen Markdown before it reaches the parser."""

from __future__ import annotations

import re
from typing import Iterator

from .models import ErrorKind, ValidationResult

DEFAULT_MAX_SIZE = 1_000_000
MAX_NESTING_DEPTH = 50
TRUNCATION_MARKER = "\n\n[... content truncated]"

DANGEROUS_PATTERNS = (
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"<script[\s\S]*?>[\s\S]*?</script>", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"onerror\s*=", re.IGNORECASE),
    re.compile(r"onclick\s*=", re.IGNORECASE),
    re.compile(r"onload\s*=", re.IGNORECASE),
    re.compile(r"onmouseover\s*=", re.IGNORECASE),
)

# A fence runs from an opening ``` or ~~~ line to the next line with the same
# marker, or to the end of input when it is never closed. A backtick fence's
# info string cannot contain a backtick.
_FENCED_CODE_RE = re.compile(
    r"^[ \t]*(?:(?P<tick>`{3,})[^`\n]*|(?P<tilde>~{3,})[^\n]*)\n"
    r".*?(?:^[ \t]*(?:(?P=tick)|(?P=tilde))[`~]*[ \t]*$|\Z)",
    re.MULTILINE | re.DOTALL,
)
_LINK_RE = re.compile(r"\[([^\[\]]+)\]\([^)]+\)")


class InputValidator:
    """Size, nesting-depth and dangerous-pattern checks, in that order."""

    def __init__(self, max_nesting_depth: int = MAX_NESTING_DEPTH) -> None:
        self.max_nesting_depth = max_nesting_depth

    def validate(self, markdown: str, max_size: int = DEFAULT_MAX_SIZE) -> ValidationResult:
        if len(markdown) > max_size:
            return ValidationResult(
                valid=False,
                sanitized=markdown[:max_size] + TRUNCATION_MARKER,
                error=ErrorKind.CONTENT_TOO_LARGE,
            )

        if nesting_depth(markdown) > self.max_nesting_depth:
            return ValidationResult(
                valid=False,
                sanitized=flatten_links(markdown),
                error=ErrorKind.NESTING_TOO_DEEP,
            )

        if has_dangerous_patterns(markdown):
            return ValidationResult(
                valid=False,
                sanitized=remove_dangerous_patterns(markdown),
                error=ErrorKind.DANGEROUS_CONTENT,
            )

        return ValidationResult(valid=True, sanitized=markdown)


def nesting_depth(markdown: str) -> int:
    """Return the deepest bracket/parenthesis nesting; closers never go below zero."""

    depth = 0
    deepest = 0
    for char in markdown:
        if char in "[(":
            depth += 1
            if depth > deepest:
                deepest = depth
        elif char in "])":
            depth = max(0, depth - 1)
    return deepest


def flatten_links(markdown: str) -> str:
    return _LINK_RE.sub(r"\1", markdown)


def iter_segments(markdown: str) -> Iterator[tuple[bool, str]]:
    """Yield ``(is_code, text)`` pieces; concatenated they give back ``markdown``."""

    position = 0
    for match in _FENCED_CODE_RE.finditer(markdown):
        if match.start() > position:
            yield False, markdown[position : match.start()]
        yield True, match.group(0)
        position = match.end()
    if position < len(markdown):
        yield False, markdown[position:]


def has_dangerous_patterns(markdown: str) -> bool:
    prose = "\n".join(text for is_code, text in iter_segments(markdown) if not is_code)
    return any(pattern.search(prose) for pattern in DANGEROUS_PATTERNS)


def remove_dangerous_patterns(markdown: str) -> str:
    """Drop dangerous matches outside fenced code and keep everything else verbatim."""

    pieces = []
    for is_code, text in iter_segments(markdown):
        if not is_code:
            for pattern in DANGEROUS_PATTERNS:
                text = pattern.sub("", text)
        pieces.append(text)
    return "".join(pieces)
