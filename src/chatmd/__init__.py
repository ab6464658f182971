"""chatmd - keep code, tables and math intact between chat HTML and Markdown.

The extraction direction protects constructs a generic HTML to Markdown
converter mangles; the rendering direction turns stored Markdown back into
sanitized HTML without ever raising into the caller.
"""

__version__ = "0.1.0"

from .config import RenderOptions
from .extract import CodeExtractor, Extraction, MathExtractor, TableParser
from .pipeline import ContentConverter
from .render import CircuitBreaker, ErrorKind, InputValidator, MarkdownRenderer, RenderResult

__all__ = [
    "CircuitBreaker",
    "CodeExtractor",
    "ContentConverter",
    "ErrorKind",
    "Extraction",
    "InputValidator",
    "MarkdownRenderer",
    "MathExtractor",
    "RenderOptions",
    "RenderResult",
    "TableParser",
    "__version__",
]
