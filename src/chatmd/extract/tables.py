"""Convert HTML tables into pipe tables behind placeholders."""

from __future__ import annotations

import logging
import re
from typing import Optional

from bs4 import Tag

from . import dom
from .formulas import TEX_ENCODING, clean_tex, convert_raw_notation, failed_render_source
from .models import Extraction, PlaceholderAllocator, PlaceholderMap, substitute

logger = logging.getLogger(__name__)

TOKEN_KIND = "TABLE"

_WHITESPACE_RE = re.compile(r"\s+")


class TableParser:
    """Replace ``<table>`` elements with placeholders and restore them as pipe tables."""

    def extract(self, html: str) -> Extraction:
        allocator = PlaceholderAllocator(TOKEN_KIND)
        try:
            container = dom.parse_fragment(html)
            for table in container.find_all("table"):
                # Nested tables were already consumed with their parent.
                if table.find_parent("table") is not None:
                    continue
                formatted = parse_table(table)
                if not formatted:
                    continue
                dom.replace_with_token(table, allocator.allocate(formatted))
                logger.debug("Extracted table")
            return allocator.result(dom.serialize(container))
        except Exception:  # noqa: BLE001 - extraction must always hand back a string
            logger.warning("Table extraction failed; returning input unprotected", exc_info=True)
            return Extraction(html=html or "")

    def restore(self, markdown: str, placeholders: PlaceholderMap) -> str:
        return substitute(markdown, placeholders)


def parse_table(table: Tag) -> Optional[str]:
    """Return ``table`` as a Markdown pipe table, or ``None`` when it has no rows."""

    rows: list[list[str]] = []
    for section in ("thead", "tbody"):
        for part in table.find_all(section, recursive=False):
            for tr in part.find_all("tr", recursive=False):
                cells = row_cells(tr)
                if cells:
                    rows.append(cells)

    if not rows:
        for tr in table.find_all("tr"):
            cells = row_cells(tr)
            if cells:
                rows.append(cells)

    if not rows:
        return None
    return format_table(rows)


def row_cells(tr: Tag) -> list[str]:
    return [cell_text(cell) for cell in tr.find_all(["th", "td"], recursive=False)]


def cell_text(cell: Tag) -> str:
    for katex in cell.find_all(class_="katex"):
        annotation = katex.find("annotation", attrs={"encoding": TEX_ENCODING})
        if annotation is None:
            continue
        katex.replace_with(f"${clean_tex(annotation.get_text())}$")

    for error in cell.find_all(class_="katex-error"):
        tex, block = failed_render_source(error.get_text())
        if tex:
            error.replace_with(_cell_block(tex) if block else f"${tex}$")

    text = _WHITESPACE_RE.sub(" ", cell.get_text()).strip()
    text = convert_raw_notation(text, block=_cell_block)
    return text.replace("|", "\\|")


def _cell_block(tex: str) -> str:
    # A pipe table row is a single line, so display math stays on it.
    return f"$${tex}$$"


def format_table(rows: list[list[str]]) -> str:
    """Lay rows out as a pipe table sized to the first row."""

    column_count = len(rows[0])
    normalized = [(row + [""] * column_count)[:column_count] for row in rows]

    lines = ["| " + " | ".join(normalized[0]) + " |"]
    lines.append("| " + " | ".join(["---"] * column_count) + " |")
    for row in normalized[1:]:
        lines.append("| " + " | ".join(row) + " |")
    return "\n\n" + "\n".join(lines) + "\n\n"
