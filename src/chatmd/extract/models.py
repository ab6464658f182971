"""Value types exchanged between extractors and their callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

PlaceholderMap = dict[str, str]


def format_token(kind: str, index: int) -> str:
    """Return the placeholder token for the ``index``-th construct of ``kind``."""

    return f"{{{{{kind}-{index}}}}}"


@dataclass(slots=True)
class Extraction:
    """Protected HTML plus the Markdown recorded for each placeholder in it."""

    html: str
    placeholders: PlaceholderMap = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.placeholders)

    def __iter__(self) -> Iterator[str]:
        return iter(self.placeholders)


class PlaceholderAllocator:
    """Hand out sequential tokens for one extraction cycle and record their text."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.placeholders: PlaceholderMap = {}

    def allocate(self, formatted: str) -> str:
        token = format_token(self.kind, len(self.placeholders))
        self.placeholders[token] = formatted
        return token

    def result(self, html: str) -> Extraction:
        return Extraction(html=html, placeholders=self.placeholders)


def substitute(markdown: str, placeholders: PlaceholderMap) -> str:
    """Replace every token in ``markdown`` with its recorded text."""

    result = markdown
    for token, text in placeholders.items():
        if token in result:
            result = result.replace(token, text)
    return result
