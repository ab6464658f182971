"""Protect ``<pre><code>`` blocks from generic HTML to Markdown conversion."""

from __future__ import annotations

import logging
import re
from typing import Optional

from bs4 import Tag

from . import dom
from .models import Extraction, PlaceholderAllocator, PlaceholderMap, substitute

logger = logging.getLogger(__name__)

TOKEN_KIND = "CODE"

_LANGUAGE_CLASS_RES = (re.compile(r"language-(\w+)"), re.compile(r"hljs\s+(\w+)"))
_LEADING_INDENT_RE = re.compile(r"^[ \t]*")


class CodeExtractor:
    """Replace fenced code blocks with placeholders and restore them as Markdown fences."""

    def extract(self, html: str) -> Extraction:
        allocator = PlaceholderAllocator(TOKEN_KIND)
        try:
            container = dom.parse_fragment(html)
            for pre in container.find_all("pre"):
                code = pre.find("code")
                if code is None or pre.find_parent("pre") is not None:
                    continue
                language = detect_language(code, pre)
                content = code.get_text()
                token = allocator.allocate(format_code_block(content, language))
                dom.replace_with_token(pre, token)
                logger.debug("Extracted code block (language=%s, length=%d)", language or "plain", len(content))
            return allocator.result(dom.serialize(container))
        except Exception:  # noqa: BLE001 - extraction must always hand back a string
            logger.warning("Code extraction failed; returning input unprotected", exc_info=True)
            return Extraction(html=html or "")

    def restore(self, markdown: str, placeholders: PlaceholderMap) -> str:
        return substitute(markdown, placeholders)


def detect_language(code: Tag, pre: Optional[Tag] = None) -> str:
    """Return the language hint of a code element, or an empty string."""

    classes = " ".join(dom.class_list(code))
    for pattern in _LANGUAGE_CLASS_RES:
        match = pattern.search(classes)
        if match:
            return match.group(1)

    for element in (code, pre):
        if element is None:
            continue
        data_language = element.get("data-language")
        if data_language:
            return str(data_language).strip()
    return ""


def normalize_indent(raw: str) -> str:
    """Strip the indentation shared by all non-blank lines, keeping relative indent."""

    text = re.sub(r"\r\n?", "\n", raw or "")
    if text.startswith("\n"):
        text = text[1:]
    lines = text.split("\n")
    indents = [len(_LEADING_INDENT_RE.match(line).group(0)) for line in lines if line.strip()]
    if not indents:
        return text

    common = min(indents)
    if common <= 0:
        return text
    return "\n".join(line[common:] for line in lines)


def format_code_block(content: str, language: str) -> str:
    normalized = normalize_indent(content).rstrip()
    return f"\n\n```{language}\n{normalized}\n```\n\n"
