"""Recover TeX sources from rendered, failed and raw math in chat markup.

Three representations can coexist in one message:

* formulas the KaTeX engine rendered, which carry their source in an
  ``<annotation encoding="application/x-tex">`` element;
* formulas KaTeX failed to render, wrapped in ``.katex-error`` with the
  source as visible text;
* notation that was never rendered at all (``\\[...\\]`` and ``\\(...\\)``
  left in the text).

All of them end up as ``$...$`` or ``$$...$$`` Markdown. The module also hosts
the repair pass for inline formulas whose underscores a Markdown engine turned
into ``<em>`` tags.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from typing import Optional

from bs4 import BeautifulSoup, Tag

from . import dom
from .models import Extraction, PlaceholderAllocator, PlaceholderMap, substitute

logger = logging.getLogger(__name__)

TOKEN_KIND = "MATH"

TEX_ENCODING = "application/x-tex"
SOURCE_ATTRIBUTES = ("data-latex-source", "data-math")
BLOCK_SELECTORS = ["p", "li", "blockquote", "td", "th", "dt", "dd"]

EM_START = "§EM_START§"
EM_END = "§EM_END§"

_WHITESPACE_RE = re.compile(r"\s+")
_RAW_BLOCK_RE = re.compile(r"\\\[([\s\S]*?)\\\]")
_RAW_INLINE_RE = re.compile(r"\\\(([\s\S]*?)\\\)")
_BLOCK_REGION_RE = re.compile(r"\$\$([\s\S]*?)\$\$")
_BLANK_LINES_RE = re.compile(r"\n\s*\n")
_EM_RE = re.compile(r"<em[^>]*>([^<]*)</em>", re.IGNORECASE)
_LOOKS_LIKE_TEX_RE = re.compile(r"\\[a-zA-Z]+|\\[^\s]")


class MathExtractor:
    """Replace math with placeholders and restore it as Markdown math."""

    def extract(self, html: str) -> Extraction:
        allocator = PlaceholderAllocator(TOKEN_KIND)
        try:
            container = dom.parse_fragment(html)
            self._extract_display(container, allocator)
            self._extract_inline(container, allocator)
            self._extract_errors(container, allocator)
            result = self._extract_raw(dom.serialize(container), allocator)
            return allocator.result(result)
        except Exception:  # noqa: BLE001 - extraction must always hand back a string
            logger.warning("Math extraction failed; returning input unprotected", exc_info=True)
            return Extraction(html=html or "")

    def restore(self, markdown: str, placeholders: PlaceholderMap) -> str:
        logger.debug("Restoring %d math placeholders", len(placeholders))
        result = substitute(markdown, placeholders)
        return _BLOCK_REGION_RE.sub(
            lambda match: "$$" + _BLANK_LINES_RE.sub("\n", match.group(1)) + "$$",
            result,
        )

    # ------------------------------------------------------------------
    # Rendered formulas
    # ------------------------------------------------------------------
    def _extract_display(self, container: Tag, allocator: PlaceholderAllocator) -> None:
        for display in container.find_all(class_="katex-display"):
            katex = display.find(class_="katex")
            source = _annotation_source(katex) if katex is not None else None
            source = source or _attribute_source(display)
            tex = clean_tex(source or "")
            if not tex:
                continue
            dom.replace_with_token(display, allocator.allocate(format_block(tex)))
            logger.debug("Extracted block math (length=%d)", len(tex))

    def _extract_inline(self, container: Tag, allocator: PlaceholderAllocator) -> None:
        for katex in container.find_all(class_="katex"):
            if katex.find_parent(class_="katex-display") is not None:
                continue
            tex = clean_tex(_annotation_source(katex) or "")
            if not tex:
                continue
            dom.replace_with_token(katex, allocator.allocate(format_inline(tex)))
            logger.debug("Extracted inline math (length=%d)", len(tex))

    # ------------------------------------------------------------------
    # Failed renders
    # ------------------------------------------------------------------
    def _extract_errors(self, container: Tag, allocator: PlaceholderAllocator) -> None:
        for error in container.find_all(class_="katex-error"):
            tex, block = failed_render_source(error.get_text())
            if not tex:
                continue
            formatted = format_block(tex) if block else format_inline(tex)
            dom.replace_with_token(error, allocator.allocate(formatted))
            logger.debug("Extracted failed-render math (length=%d)", len(tex))

    # ------------------------------------------------------------------
    # Raw notation in serialized markup
    # ------------------------------------------------------------------
    def _extract_raw(self, html: str, allocator: PlaceholderAllocator) -> str:
        def _block(match: re.Match) -> str:
            tex = clean_tex(html_lib.unescape(match.group(1)))
            if not tex:
                return match.group(0)
            return allocator.allocate(format_block(tex))

        def _inline(match: re.Match) -> str:
            tex = clean_tex(html_lib.unescape(match.group(1)))
            if not tex:
                return match.group(0)
            return allocator.allocate(format_inline(tex))

        result = _RAW_BLOCK_RE.sub(_block, html)
        return _RAW_INLINE_RE.sub(_inline, result)


def clean_tex(tex: str) -> str:
    """Collapse whitespace runs and trim. TeX commands are never escaped."""

    return _WHITESPACE_RE.sub(" ", tex).strip()


def is_block_source(tex: str) -> bool:
    return tex.startswith("\\[") or "\\begin{" in tex or "\\displaystyle" in tex


def failed_render_source(text: str) -> tuple[str, bool]:
    """Return the TeX inside a failed render and whether it is display math."""

    tex = clean_tex(text)
    if is_block_source(tex):
        return re.sub(r"\\\]$", "", re.sub(r"^\\\[", "", tex)).strip(), True
    return re.sub(r"\\\)$", "", re.sub(r"^\\\(", "", tex)).strip(), False


def format_block(tex: str) -> str:
    return f"\n\n$$\n{tex}\n$$\n\n"


def format_inline(tex: str) -> str:
    return f"${tex}$"


def convert_raw_notation(text: str, block=format_block, inline=format_inline) -> str:
    """Rewrite ``\\[...\\]`` and ``\\(...\\)`` in plain text as Markdown math."""

    def _convert(match: re.Match, formatter) -> str:
        tex = clean_tex(match.group(1))
        return formatter(tex) if tex else match.group(0)

    result = _RAW_BLOCK_RE.sub(lambda match: _convert(match, block), text)
    return _RAW_INLINE_RE.sub(lambda match: _convert(match, inline), result)


def _annotation_source(element: Tag) -> Optional[str]:
    annotation = element.find("annotation", attrs={"encoding": TEX_ENCODING})
    if annotation is None:
        return None
    return annotation.get_text()


def _attribute_source(element: Optional[Tag]) -> Optional[str]:
    current = element
    while isinstance(current, Tag):
        for key in SOURCE_ATTRIBUTES:
            value = current.get(key)
            if value and str(value).strip():
                return str(value).strip()
        current = current.parent
    return None


def formula_source(element: Optional[Tag]) -> Optional[str]:
    """Return the TeX source behind a formula element, if it can be recovered."""

    if element is None:
        return None

    source = _attribute_source(element)
    if source:
        return source

    annotation = _annotation_source(element)
    if annotation and annotation.strip():
        return annotation.strip()

    if "katex-error" in dom.class_list(element):
        error = element
    else:
        error = element.find(class_="katex-error")
    if error is None:
        return None
    text = error.get_text().strip()
    if not text or not _LOOKS_LIKE_TEX_RE.search(text):
        return None
    return text


# ----------------------------------------------------------------------
# Repair of underscores mis-parsed as emphasis inside inline formulas
# ----------------------------------------------------------------------
def repair_unrendered_math(html: str) -> str:
    """Return ``html`` with emphasis inside ``$...$`` turned back into underscores."""

    try:
        container = dom.parse_fragment(html)
        repair_element(container)
        return dom.serialize(container)
    except Exception:  # noqa: BLE001 - repair is best effort and must not break capture
        logger.warning("Formula emphasis repair failed; returning input unchanged", exc_info=True)
        return html or ""


def repair_element(element: Tag) -> int:
    """Repair every block of ``element`` in place and return how many changed."""

    blocks = element.find_all(BLOCK_SELECTORS) or [element]
    repaired = 0
    for block in blocks:
        if block.find(class_=["katex", "katex-display"]) is not None:
            continue
        if block.find("em") is None:
            continue
        if "$" not in block.get_text():
            continue
        repaired += _repair_block(block)

    if repaired:
        logger.debug("Repaired %d blocks with unrendered formulas", repaired)
    return repaired


def _repair_block(block: Tag) -> int:
    original = block.decode_contents()
    marked, count = _EM_RE.subn(lambda match: f"{EM_START}{match.group(1)}{EM_END}", original)
    if not count:
        return 0

    result = resolve_emphasis_markers(marked)
    if result == original:
        return 0

    fragment = BeautifulSoup(result, dom.TREE_BUILDER)
    source = fragment.body if fragment.body is not None else fragment
    block.clear()
    for child in list(source.contents):
        block.append(child.extract())
    return 1


def resolve_emphasis_markers(text: str, start: str = EM_START, end: str = EM_END) -> str:
    """Turn marked spans into ``_x_`` inside single-dollar formulas and ``<em>x</em>`` outside.

    ``$$`` passes through without changing state, ``\\$`` is a literal dollar,
    and a start marker without a matching end marker is kept verbatim.
    """

    parts: list[str] = []
    pos = 0
    in_formula = False
    length = len(text)

    while pos < length:
        char = text[pos]
        if char == "\\" and text.startswith("$", pos + 1):
            parts.append("\\$")
            pos += 2
            continue

        if char == "$":
            if text.startswith("$", pos + 1):
                parts.append("$$")
                pos += 2
                continue
            parts.append("$")
            in_formula = not in_formula
            pos += 1
            continue

        if text.startswith(start, pos):
            content_start = pos + len(start)
            content_end = text.find(end, content_start)
            if content_end == -1:
                parts.append(start)
                pos = content_start
                continue
            content = text[content_start:content_end]
            parts.append(f"_{content}_" if in_formula else f"<em>{content}</em>")
            pos = content_end + len(end)
            continue

        parts.append(char)
        pos += 1

    return "".join(parts)
