"""Markdown to HTML rendering with validation, deadlines, size caps and sanitizing."""

from __future__ import annotations

import asyncio
import hashlib
import html as html_lib
import json
import logging
import re
import time
from typing import Callable, Optional

from latex2mathml.converter import convert as latex_to_mathml
from markdown_it import MarkdownIt
from mdit_py_plugins.dollarmath import dollarmath_plugin

from chatmd.config import RenderOptions

from .circuit import CircuitBreaker
from .models import (
    ErrorKind,
    OutputTooLargeError,
    RenderAbortedError,
    RenderResult,
    RenderTimeoutError,
)
from .sanitizer import HtmlSanitizer, Sanitizer
from .validator import InputValidator

logger = logging.getLogger(__name__)

CHUNK_SIZE = 20_000

ProgressCallback = Callable[[float], None]

_ADJACENT_FORMULA_RES = (
    re.compile(r"\$([^$]+)\$([、，。；：！？])\$([^$]+)\$"),
    re.compile(r"\$([^$]+)\$(——)\$([^$]+)\$"),
)


class RenderDeadline:
    """Cancellation token with a deadline, checked between chunks."""

    def __init__(self, timeout_ms: int, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.timeout_ms = timeout_ms
        self.started = clock()
        self.cancelled = False

    @property
    def elapsed_ms(self) -> float:
        return (self._clock() - self.started) * 1000

    @property
    def expired(self) -> bool:
        return self.elapsed_ms > self.timeout_ms

    def cancel(self) -> None:
        self.cancelled = True

    def check(self) -> None:
        if self.cancelled:
            raise RenderAbortedError()
        if self.expired:
            raise RenderTimeoutError(f"RENDER_TIMEOUT after {self.elapsed_ms:.0f}ms")


class MarkdownRenderer:
    """Render Markdown to display HTML without ever raising into the caller.

    Every call runs behind ``circuit_breaker``. Invalid input yields a failure
    result with a plain-text fallback; timeouts, aborts and oversized output
    count as breaker failures.
    """

    def __init__(
        self,
        *,
        circuit_breaker: Optional[CircuitBreaker] = None,
        sanitizer: Optional[Sanitizer] = None,
        validator: Optional[InputValidator] = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.sanitizer = sanitizer or HtmlSanitizer()
        self.validator = validator or InputValidator()
        self.chunk_size = chunk_size
        self._engines: dict[str, MarkdownIt] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    async def render(
        self,
        markdown: str,
        options: Optional[RenderOptions] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RenderResult:
        """Render ``markdown``; identical concurrent calls share one render."""

        options = options or RenderOptions()
        key = render_key(markdown, options)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._render_protected(markdown, options, on_progress))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    def circuit_state(self) -> dict[str, object]:
        return self.circuit_breaker.snapshot()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    async def _render_protected(
        self,
        markdown: str,
        options: RenderOptions,
        on_progress: Optional[ProgressCallback],
    ) -> RenderResult:
        fallback = render_plain_text(markdown)

        def _fallback_for(exc: BaseException) -> RenderResult:
            return RenderResult.failed(getattr(exc, "kind", ErrorKind.CIRCUIT_OPEN), fallback)

        return await self.circuit_breaker.execute(
            lambda: self._render_unsafe(markdown, options, on_progress),
            RenderResult.failed(ErrorKind.CIRCUIT_OPEN, fallback),
            fallback_for=_fallback_for,
        )

    async def _render_unsafe(
        self,
        markdown: str,
        options: RenderOptions,
        on_progress: Optional[ProgressCallback],
    ) -> RenderResult:
        validation = self.validator.validate(markdown, options.max_input_size)
        if not validation.valid:
            logger.warning("Validation failed: %s", validation.error)
            return RenderResult.failed(validation.error, render_plain_text(validation.sanitized))

        engine = self.engine(options.code_block_mode)
        html = await self._render_with_timeout(validation.sanitized, engine, options.timeout, on_progress)

        if len(html) > options.max_output_size:
            logger.error("OUTPUT_TOO_LARGE: %d > %d", len(html), options.max_output_size)
            raise OutputTooLargeError()

        if options.sanitize:
            html = self.sanitizer.sanitize(html)
        return RenderResult.ok(html)

    async def _render_with_timeout(
        self,
        markdown: str,
        engine: MarkdownIt,
        timeout_ms: int,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        deadline = RenderDeadline(timeout_ms)
        chunks = chunk_markdown(preprocess_formulas(markdown), self.chunk_size)
        try:
            return await asyncio.wait_for(
                self._render_chunks(chunks, engine, deadline, on_progress),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            deadline.cancel()
            logger.error("RENDER_TIMEOUT after %dms", timeout_ms)
            raise RenderTimeoutError() from None

    async def _render_chunks(
        self,
        chunks: list[str],
        engine: MarkdownIt,
        deadline: RenderDeadline,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        parts: list[str] = []
        total = len(chunks)
        for index, chunk in enumerate(chunks, start=1):
            deadline.check()
            parts.append(engine.render(chunk))
            if on_progress is not None:
                try:
                    on_progress(index / total * 100)
                except Exception:  # noqa: BLE001 - progress reporting never fails a render
                    logger.warning("Progress callback raised", exc_info=True)
            # Yield so a pending timeout can fire between chunks.
            await asyncio.sleep(0)
        return "".join(parts)

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------
    def engine(self, code_block_mode: str = "full") -> MarkdownIt:
        """Return the parser for ``code_block_mode``, building it on first use."""

        engine = self._engines.get(code_block_mode)
        if engine is None:
            engine = build_engine(code_block_mode)
            self._engines[code_block_mode] = engine
        return engine


def build_engine(code_block_mode: str = "full") -> MarkdownIt:
    engine = (
        MarkdownIt("commonmark", {"breaks": True, "html": True})
        .enable("table")
        .enable("strikethrough")
        .use(dollarmath_plugin, renderer=render_formula)
    )
    if code_block_mode == "placeholder":
        engine.add_render_rule("fence", _render_fence_placeholder)
    return engine


def render_formula(content: str, options: dict) -> str:
    """Render TeX to MathML; malformed notation degrades to its escaped source."""

    display = "block" if options.get("display_mode") else "inline"
    try:
        return latex_to_mathml(content, display=display)
    except Exception:  # noqa: BLE001 - the formula renderer must not raise on bad TeX
        logger.debug("Formula rendering failed for %r", content, exc_info=True)
        return f'<span class="math-error">{html_lib.escape(content)}</span>'


def _render_fence_placeholder(self, tokens, idx, options, env) -> str:
    token = tokens[idx]
    info = token.info.strip().split(maxsplit=1) if token.info else []
    language = html_lib.escape(info[0] if info else "text")
    lines = len([line for line in token.content.split("\n") if line])
    return f'<div class="code-placeholder">[Code block hidden: {language}, {lines} lines]</div>\n'


# ----------------------------------------------------------------------
# Text helpers
# ----------------------------------------------------------------------
def render_plain_text(markdown: str) -> str:
    escaped = markdown.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    return f'<pre class="markdown-fallback">{escaped}</pre>'


def preprocess_formulas(markdown: str) -> str:
    """Separate adjacent inline formulas joined only by CJK punctuation or a double dash."""

    for pattern in _ADJACENT_FORMULA_RES:
        markdown = pattern.sub(r"$\1$ \2 $\3$", markdown)
    return markdown


def is_fence_line(line: str) -> bool:
    stripped = line.lstrip()
    return stripped.startswith("```") or stripped.startswith("~~~")


def chunk_markdown(markdown: str, chunk_size: int = CHUNK_SIZE) -> list[str]:
    """Split on line boundaries into chunks of about ``chunk_size`` characters.

    A chunk never ends inside a fenced code block, so each chunk holds an even
    number of fence lines (given balanced input).
    """

    if len(markdown) <= chunk_size:
        return [markdown]

    chunks: list[str] = []
    current = ""
    in_fence = False
    for line in markdown.split("\n"):
        fence = is_fence_line(line)
        piece = line + "\n"
        would_exceed = len(current) + len(piece) > chunk_size
        if would_exceed and current and not (in_fence or fence):
            chunks.append(current)
            current = piece
        else:
            current += piece
        if fence:
            in_fence = not in_fence

    if current:
        chunks.append(current)
    return chunks


def render_key(markdown: str, options: RenderOptions) -> str:
    payload = json.dumps(options.model_dump(), sort_keys=True) + "|" + markdown
    digest = hashlib.sha1(payload.encode("utf-8", errors="surrogatepass")).hexdigest()
    return f"{len(payload)}:{digest}"
