"""Allow-list HTML sanitizer for rendered Markdown."""

from __future__ import annotations

from typing import Protocol

import bleach
from bs4 import BeautifulSoup

MARKDOWN_TAGS = frozenset(
    {
        "h1", "h2", "h3", "h4", "h5", "h6",
        "p", "div", "span", "br", "hr",
        "strong", "em", "del", "s", "code", "pre",
        "ul", "ol", "li",
        "table", "thead", "tbody", "tr", "th", "td",
        "a", "img",
        "blockquote",
    }
)

# Elements produced by the formula renderer.
MATH_TAGS = frozenset(
    {
        "math", "semantics", "annotation",
        "mrow", "mi", "mo", "mn", "mtext", "mspace", "ms",
        "msup", "msub", "msubsup", "mfrac", "msqrt", "mroot",
        "mover", "munder", "munderover", "mstyle", "mpadded", "mphantom",
        "menclose", "mtable", "mtr", "mtd",
    }
)

ALLOWED_TAGS = MARKDOWN_TAGS | MATH_TAGS

ALLOWED_ATTRIBUTES = {
    "*": ["class", "title"],
    "a": ["href", "title"],
    "img": ["src", "alt", "title"],
    "math": ["xmlns", "display"],
    "annotation": ["encoding"],
    "mi": ["mathvariant"],
    "mn": ["mathvariant"],
    "mo": ["stretchy", "fence", "separator", "lspace", "rspace", "form", "largeop", "movablelimits", "accent"],
    "mstyle": ["displaystyle", "scriptlevel", "mathvariant"],
    "mfrac": ["linethickness"],
    "mover": ["accent"],
    "munder": ["accentunder"],
    "mspace": ["width"],
    "mtable": ["columnalign", "rowspacing", "columnspacing"],
    "menclose": ["notation"],
}

ALLOWED_PROTOCOLS = ["http", "https", "mailto"]

# Removed together with their content whatever the allow-list says.
FORBIDDEN_TAGS = ["script", "iframe", "object", "embed", "style"]


class Sanitizer(Protocol):
    def sanitize(self, html: str) -> str:
        ...


class HtmlSanitizer:
    """Strip everything outside the Markdown and MathML allow-list."""

    def __init__(
        self,
        *,
        tags: frozenset[str] = ALLOWED_TAGS,
        attributes: dict[str, list[str]] = ALLOWED_ATTRIBUTES,
        protocols: list[str] = ALLOWED_PROTOCOLS,
    ) -> None:
        self._cleaner = bleach.Cleaner(
            tags=tags,
            attributes=attributes,
            protocols=protocols,
            strip=True,
            strip_comments=True,
        )

    def sanitize(self, html: str) -> str:
        return self._cleaner.clean(remove_forbidden(html))


def remove_forbidden(html: str) -> str:
    """Drop forbidden elements with their content and every ``on*`` attribute."""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(FORBIDDEN_TAGS):
        if not tag.decomposed:
            tag.decompose()
    for tag in soup.find_all(True):
        for attribute in [name for name in tag.attrs if name.lower().startswith("on")]:
            del tag[attribute]
    return soup.decode()
