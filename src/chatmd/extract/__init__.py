"""Placeholder-based protection of code, tables and math during HTML to Markdown conversion."""

from .code_blocks import CodeExtractor
from .formulas import MathExtractor, formula_source, repair_element, repair_unrendered_math
from .models import Extraction, PlaceholderMap, format_token
from .tables import TableParser

__all__ = [
    "CodeExtractor",
    "Extraction",
    "MathExtractor",
    "PlaceholderMap",
    "TableParser",
    "format_token",
    "formula_source",
    "repair_element",
    "repair_unrendered_math",
]
