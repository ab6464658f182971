"""Content conversion between rendered chat markup and Markdown."""

from __future__ import annotations

import asyncio
import re
from typing import Optional

from markdownify import ASTERISK, markdownify as to_markdown

from chatmd.config import RenderOptions
from chatmd.extract import CodeExtractor, MathExtractor, TableParser, repair_unrendered_math
from chatmd.render import MarkdownRenderer, RenderResult
from chatmd.render.validator import iter_segments

_EXCESS_BLANK_LINES_RE = re.compile(r"\n{3,}")


class ContentConverter:
    """Translate between rendered chat HTML and Markdown in both directions."""

    def __init__(self, renderer: Optional[MarkdownRenderer] = None, *, repair_math: bool = True) -> None:
        self.renderer = renderer or MarkdownRenderer()
        self.repair_math = repair_math
        self.code = CodeExtractor()
        self.tables = TableParser()
        self.math = MathExtractor()

    def html_to_markdown(self, html: str) -> str:
        if self.repair_math:
            html = repair_unrendered_math(html)

        # Math runs last: it also scans the serialized string left by the others.
        code = self.code.extract(html)
        tables = self.tables.extract(code.html)
        math = self.math.extract(tables.html)

        markdown = to_markdown(
            math.html,
            heading_style="ATX",
            strong_em_symbol=ASTERISK,
            escape_underscores=False,
            escape_misc=False,
        )

        markdown = self.math.restore(markdown, math.placeholders)
        markdown = self.tables.restore(markdown, tables.placeholders)
        markdown = self.code.restore(markdown, code.placeholders)
        return collapse_blank_lines(markdown).strip()

    async def markdown_to_html(self, markdown: str, options: Optional[RenderOptions] = None) -> RenderResult:
        return await self.renderer.render(markdown, options)

    def render_markdown(self, markdown: str, options: Optional[RenderOptions] = None) -> RenderResult:
        """Synchronous variant of :meth:`markdown_to_html` for callers without a loop."""

        return asyncio.run(self.markdown_to_html(markdown, options))


def collapse_blank_lines(markdown: str) -> str:
    """Reduce runs of blank lines to one, leaving fenced code untouched."""

    return "".join(
        text if is_code else _EXCESS_BLANK_LINES_RE.sub("\n\n", text)
        for is_code, text in iter_segments(markdown)
    )
