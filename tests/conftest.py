"""Pytest configuration and shared fixtures for chatmd tests."""

from __future__ import annotations

import pytest

from chatmd import config
from chatmd.pipeline import ContentConverter
from chatmd.render import CircuitBreaker, MarkdownRenderer


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def katex_inline(tex: str) -> str:
    return (
        '<span class="katex"><span class="katex-mathml"><math><semantics><mrow><mi>x</mi></mrow>'
        f'<annotation encoding="application/x-tex">{tex}</annotation></semantics></math></span>'
        '<span class="katex-html" aria-hidden="true">rendered</span></span>'
    )


def katex_display(tex: str) -> str:
    return f'<span class="katex-display">{katex_inline(tex)}</span>'


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    """Fresh circuit breaker per test, driven by the fake clock."""
    return CircuitBreaker(clock=clock)


@pytest.fixture
def renderer(breaker: CircuitBreaker) -> MarkdownRenderer:
    return MarkdownRenderer(circuit_breaker=breaker)


@pytest.fixture
def converter(renderer: MarkdownRenderer) -> ContentConverter:
    return ContentConverter(renderer)


@pytest.fixture
def isolated_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Hide config files and CHATMD_* variables from option resolution."""
    monkeypatch.setattr(config, "DEFAULT_CONFIG_PATHS", ())
    for key in config.OPTION_KEYS:
        monkeypatch.delenv(f"{config.ENV_PREFIX}_{key.upper()}", raising=False)


@pytest.fixture
def chat_html() -> str:
    """A captured assistant message mixing prose, code, a table and math."""
    return (
        "<h2>Result</h2>"
        f"<p>Energy {katex_inline('E = mc^2')} holds.</p>"
        '<pre><code class="language-python">    print("hi")\n    print("bye")\n</code></pre>'
        "<table><tr><th>a<th>b<tr><td>1<td>2</table>"
        r"<p>\[ \sum_i   x_i \]</p>"
    )
