"""Tests for the Markdown renderer."""

import asyncio
import time

import pytest

from chatmd.config import RenderOptions
from chatmd.render import (
    CircuitState,
    ErrorKind,
    HtmlSanitizer,
    MarkdownRenderer,
    RenderAbortedError,
    RenderDeadline,
    RenderTimeoutError,
    chunk_markdown,
    render_plain_text,
)
from chatmd.render.renderer import build_engine, is_fence_line, preprocess_formulas


class SlowEngine:
    """Stand-in parser that blocks on every chunk."""

    def __init__(self, delay: float = 0.02) -> None:
        self.delay = delay
        self.calls = 0

    def render(self, text: str) -> str:
        self.calls += 1
        time.sleep(self.delay)
        return f"<p>{len(text)}</p>"


class CountingEngine:
    def __init__(self) -> None:
        self.inner = build_engine()
        self.calls = 0

    def render(self, text: str) -> str:
        self.calls += 1
        return self.inner.render(text)


class StubRenderer(MarkdownRenderer):
    """Renderer whose parser is replaced by a test double."""

    def __init__(self, stub, **kwargs) -> None:
        super().__init__(**kwargs)
        self.stub = stub

    def engine(self, code_block_mode: str = "full"):
        return self.stub


class TestMarkdownRenderer:
    """Test MarkdownRenderer.render outcomes."""

    @pytest.mark.asyncio
    async def test_renders_markdown(self, renderer):
        result = await renderer.render("# Hello\n\nThis is **bold**.")

        assert result.success
        assert result.error is None
        assert "<h1" in result.html
        assert "<strong>bold</strong>" in result.html
        assert result.display_html == result.html

    @pytest.mark.asyncio
    async def test_dangerous_input_falls_back(self, renderer):
        result = await renderer.render("<script>alert(1)</script>")

        assert not result.success
        assert result.error is ErrorKind.DANGEROUS_CONTENT
        assert result.fallback.startswith('<pre class="markdown-fallback">')
        assert "<script" not in result.fallback

    @pytest.mark.asyncio
    async def test_backtick_info_string_does_not_hide_html(self, renderer):
        result = await renderer.render(
            "```x`\n<script>alert(1)</script>\n```",
            RenderOptions(sanitize=False),
        )

        assert result.error is ErrorKind.DANGEROUS_CONTENT
        assert "<script" not in result.fallback

    @pytest.mark.asyncio
    async def test_oversized_input(self, renderer):
        result = await renderer.render("x" * 50, RenderOptions(max_input_size=10))

        assert result.error is ErrorKind.CONTENT_TOO_LARGE
        assert "[... content truncated]" in result.fallback

    @pytest.mark.asyncio
    async def test_deep_nesting(self, renderer):
        result = await renderer.render("[" * 60 + "]" * 60)
        assert result.error is ErrorKind.NESTING_TOO_DEEP

    @pytest.mark.asyncio
    async def test_validation_failures_do_not_trip_breaker(self, renderer, breaker):
        for _ in range(5):
            await renderer.render("<iframe src=x>")

        assert breaker.state is CircuitState.CLOSED
        assert breaker.failures == 0

    @pytest.mark.asyncio
    async def test_output_too_large(self, renderer, breaker):
        result = await renderer.render("# A heading that renders long", RenderOptions(max_output_size=10))

        assert result.error is ErrorKind.OUTPUT_TOO_LARGE
        assert result.fallback.startswith('<pre class="markdown-fallback">')
        assert breaker.failures == 1

    @pytest.mark.asyncio
    async def test_sanitizer_runs_on_raw_html(self, renderer):
        result = await renderer.render('<object data="x"></object>\n\nText <u>under</u>')

        assert result.success
        assert "<object" not in result.html
        assert "<u>" not in result.html
        assert "under" in result.html

    @pytest.mark.asyncio
    async def test_sanitize_can_be_disabled(self, renderer):
        result = await renderer.render("Text <u>under</u>", RenderOptions(sanitize=False))
        assert "<u>under</u>" in result.html

    @pytest.mark.asyncio
    async def test_full_code_blocks(self, renderer):
        result = await renderer.render('```python\nprint("hello")\n```')

        assert '<code class="language-python">' in result.html
        assert "code-placeholder" not in result.html

    @pytest.mark.asyncio
    async def test_placeholder_code_blocks(self, renderer):
        result = await renderer.render(
            '```python\nprint("hello")\n```',
            RenderOptions(code_block_mode="placeholder"),
        )

        assert result.success
        assert "code-placeholder" in result.html
        assert "[Code block hidden: python, 1 lines]" in result.html
        assert "print" not in result.html

    @pytest.mark.asyncio
    async def test_placeholder_language_is_escaped(self, renderer):
        result = await renderer.render(
            "```<b>lang</b>\nprint(1)\n```",
            RenderOptions(code_block_mode="placeholder", sanitize=False),
        )

        assert "<b>" not in result.html
        assert "&lt;b&gt;lang&lt;/b&gt;" in result.html

    @pytest.mark.asyncio
    async def test_placeholder_without_language(self, renderer):
        result = await renderer.render("```\na\n\nb\n```", RenderOptions(code_block_mode="placeholder"))
        assert "[Code block hidden: text, 2 lines]" in result.html

    @pytest.mark.asyncio
    async def test_math_is_rendered(self, renderer):
        result = await renderer.render("Inline $x^2$ and\n\n$$\na+b\n$$\n", RenderOptions(sanitize=False))

        assert result.success
        assert '<span class="math inline">' in result.html
        assert result.html.count("<math") == 2

    @pytest.mark.asyncio
    async def test_malformed_math_does_not_fail(self, renderer):
        result = await renderer.render(r"Broken $\frac{a}{$ formula")
        assert result.success

    @pytest.mark.asyncio
    async def test_timeout(self, breaker):
        renderer = StubRenderer(SlowEngine(), circuit_breaker=breaker, chunk_size=10)

        result = await renderer.render("line\n" * 50, RenderOptions(timeout=100))

        assert not result.success
        assert result.error is ErrorKind.RENDER_TIMEOUT
        assert result.fallback.startswith('<pre class="markdown-fallback">')
        assert breaker.failures == 1

    @pytest.mark.asyncio
    async def test_repeated_timeouts_open_circuit(self, breaker):
        engine = SlowEngine()
        renderer = StubRenderer(engine, circuit_breaker=breaker, chunk_size=10)
        options = RenderOptions(timeout=50)

        for index in range(3):
            await renderer.render(f"attempt {index}\n" * 40, options)
        calls = engine.calls
        result = await renderer.render("one more\n" * 40, options)

        assert breaker.state is CircuitState.OPEN
        assert result.error is ErrorKind.CIRCUIT_OPEN
        assert result.fallback.startswith('<pre class="markdown-fallback">')
        assert engine.calls == calls
        assert renderer.circuit_state()["state"] == "OPEN"

    @pytest.mark.asyncio
    async def test_identical_concurrent_renders_share_work(self, breaker):
        engine = CountingEngine()
        renderer = StubRenderer(engine, circuit_breaker=breaker)

        first, second = await asyncio.gather(renderer.render("**same**"), renderer.render("**same**"))

        assert first == second
        assert engine.calls == 1

    @pytest.mark.asyncio
    async def test_distinct_concurrent_renders(self, renderer):
        first, second = await asyncio.gather(renderer.render("# One"), renderer.render("# Two"))

        assert "One" in first.html
        assert "Two" in second.html

    @pytest.mark.asyncio
    async def test_different_options_are_not_shared(self, renderer):
        full, placeholder = await asyncio.gather(
            renderer.render("```\nx\n```"),
            renderer.render("```\nx\n```", RenderOptions(code_block_mode="placeholder")),
        )

        assert "code-placeholder" not in full.html
        assert "code-placeholder" in placeholder.html

    @pytest.mark.asyncio
    async def test_progress_is_reported(self, breaker):
        renderer = MarkdownRenderer(circuit_breaker=breaker, chunk_size=20)
        progress: list[float] = []

        result = await renderer.render("paragraph text\n\n" * 10, on_progress=progress.append)

        assert result.success
        assert len(progress) > 1
        assert progress == sorted(progress)
        assert progress[-1] == 100

    @pytest.mark.asyncio
    async def test_failing_progress_callback_is_ignored(self, renderer):
        def explode(_: float) -> None:
            raise ValueError("no")

        result = await renderer.render("text", on_progress=explode)
        assert result.success

    @pytest.mark.asyncio
    async def test_chunked_render_keeps_code_blocks(self, breaker):
        renderer = MarkdownRenderer(circuit_breaker=breaker, chunk_size=30)
        markdown = "intro line\n\n```\n" + "code line\n" * 10 + "```\n\nafter the block\n"

        result = await renderer.render(markdown)

        assert result.html.count("<pre>") == 1
        assert "code line\ncode line" in result.html


class TestRenderDeadline:
    def test_cancel_aborts(self):
        deadline = RenderDeadline(1000)
        deadline.cancel()

        with pytest.raises(RenderAbortedError):
            deadline.check()

    def test_expiry(self):
        now = [0.0]
        deadline = RenderDeadline(100, clock=lambda: now[0])
        deadline.check()
        now[0] = 0.5

        assert deadline.expired
        with pytest.raises(RenderTimeoutError):
            deadline.check()

    def test_aborted_error_kind(self):
        assert RenderAbortedError().kind is ErrorKind.RENDER_ABORTED


class TestChunking:
    """Test line-based chunking."""

    def test_small_input_is_one_chunk(self):
        assert chunk_markdown("short", 100) == ["short"]

    @pytest.mark.parametrize("size", [10, 25, 40, 80])
    def test_fences_are_never_split(self, size):
        markdown = (
            "# Title\n\nSome prose here.\n\n```py\nx = 1\ny = 2\nz = 3\n```\n\n"
            "More prose.\n\n~~~\nplain\n~~~\n\nEnd of document.\n"
        )
        chunks = chunk_markdown(markdown, size)

        assert len(chunks) > 1
        for chunk in chunks:
            fences = [line for line in chunk.split("\n") if is_fence_line(line)]
            assert len(fences) % 2 == 0

    def test_chunks_keep_all_lines(self):
        markdown = "\n".join(f"line {n}" for n in range(100))
        chunks = chunk_markdown(markdown, 50)

        assert "".join(chunks).rstrip("\n") == markdown


class TestTextHelpers:
    def test_plain_text_is_escaped(self):
        assert render_plain_text("<b>&</b>") == '<pre class="markdown-fallback">&lt;b&gt;&amp;&lt;/b&gt;</pre>'

    def test_adjacent_formulas_are_separated(self):
        assert preprocess_formulas("$a$，$b$") == "$a$ ， $b$"
        assert preprocess_formulas("$a$——$b$") == "$a$ —— $b$"

    def test_other_formulas_untouched(self):
        assert preprocess_formulas("$a$, $b$") == "$a$, $b$"


class TestHtmlSanitizer:
    """Test the allow-list sanitizer."""

    def test_strips_forbidden_content(self):
        html = (
            '<p onclick="x()">hi</p><script>alert(1)</script>'
            '<object data="x">obj</object><iframe src="y"></iframe><style>p{}</style>'
        )
        cleaned = HtmlSanitizer().sanitize(html)

        assert "<p>hi</p>" in cleaned
        for fragment in ("script", "alert", "onclick", "object", "obj", "iframe", "style"):
            assert fragment not in cleaned

    def test_blocks_unsafe_links(self):
        cleaned = HtmlSanitizer().sanitize('<a href="javascript:x()">a</a><a href="https://ok">b</a>')

        assert "javascript" not in cleaned
        assert 'href="https://ok"' in cleaned

    def test_keeps_math(self):
        cleaned = HtmlSanitizer().sanitize('<span class="math inline"><math display="inline"><mi>x</mi></math></span>')

        assert "<math" in cleaned
        assert "<mi>x</mi>" in cleaned
