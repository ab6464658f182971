"""Command-line interface for the chat content pipeline."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import frontmatter
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import RenderOptions, ensure_options
from .extract import repair_unrendered_math
from .pipeline import ContentConverter
from .render import InputValidator, RenderResult

app = typer.Typer(help="Convert chat-message HTML to Markdown and render Markdown back to safe HTML.")
console = Console()
err_console = Console(stderr=True)


def _read_input(source: Path) -> str:
    if str(source) == "-":
        return sys.stdin.read()
    if not source.exists():
        raise typer.BadParameter(f"Input file {source} does not exist")
    return source.read_text(encoding="utf-8")


def _write_output(text: str, output: Optional[Path]) -> None:
    if output is None:
        console.print(text, markup=False, highlight=False, soft_wrap=True)
        return
    output.write_text(text, encoding="utf-8")
    err_console.print(f"Wrote [bold]{output}[/bold].")


def _format_result(result: RenderResult, *, title: Optional[str]) -> None:
    table = Table(title=f"Render Summary{': ' + title if title else ''}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Success", "yes" if result.success else "no")
    table.add_row("Error", str(result.error) if result.error else "-")
    table.add_row("Output length", str(len(result.display_html)))
    err_console.print(table)


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a configuration TOML file",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    ctx.obj = {"config_path": config_path}


def _resolve_options(ctx: typer.Context, **overrides) -> RenderOptions:
    config_path: Optional[Path] = (ctx.obj or {}).get("config_path")
    try:
        return ensure_options(config_path=config_path, **overrides)
    except (ValidationError, ValueError, OSError) as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command()
def convert(
    source: Path = typer.Argument(..., help="HTML file to convert, or - for stdin"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write Markdown to this file"),
    repair_math: bool = typer.Option(
        True,
        "--repair-math/--no-repair-math",
        help="Undo emphasis that a Markdown engine inserted inside unrendered formulas",
    ),
) -> None:
    """Convert captured chat HTML into Markdown, keeping code, tables and math intact."""

    converter = ContentConverter(repair_math=repair_math)
    _write_output(converter.html_to_markdown(_read_input(source)) + "\n", output)


@app.command()
def render(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="Markdown file to render, or - for stdin"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write HTML to this file"),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="Parsing budget in milliseconds"),
    max_input_size: Optional[int] = typer.Option(None, "--max-input-size", help="Maximum input length"),
    max_output_size: Optional[int] = typer.Option(None, "--max-output-size", help="Maximum HTML length"),
    sanitize: Optional[bool] = typer.Option(None, "--sanitize/--no-sanitize", help="Sanitize the rendered HTML"),
    code_blocks: Optional[str] = typer.Option(
        None,
        "--code-blocks",
        help="Code block mode: full or placeholder",
    ),
) -> None:
    """Render Markdown (optionally with YAML frontmatter) to sanitized HTML."""

    options = _resolve_options(
        ctx,
        timeout=timeout,
        max_input_size=max_input_size,
        max_output_size=max_output_size,
        sanitize=sanitize,
        code_block_mode=code_blocks,
    )
    post = frontmatter.loads(_read_input(source))
    result = ContentConverter().render_markdown(post.content, options)

    _format_result(result, title=post.metadata.get("title"))
    _write_output(result.display_html, output)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def validate(
    source: Path = typer.Argument(..., help="Markdown file to check, or - for stdin"),
    max_size: int = typer.Option(1_000_000, "--max-size", help="Maximum input length"),
) -> None:
    """Run the input checks the renderer applies before parsing."""

    text = frontmatter.loads(_read_input(source)).content
    result = InputValidator().validate(text, max_size)

    table = Table(title="Validation Summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Valid", "yes" if result.valid else "no")
    table.add_row("Error", str(result.error) if result.error else "-")
    table.add_row("Input length", str(len(text)))
    table.add_row("Sanitized length", str(len(result.sanitized)))
    console.print(table)
    if not result.valid:
        raise typer.Exit(code=1)


@app.command("repair-math")
def repair_math_command(
    source: Path = typer.Argument(..., help="HTML file to repair, or - for stdin"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write HTML to this file"),
) -> None:
    """Turn emphasis tags inside unrendered $...$ formulas back into underscores."""

    _write_output(repair_unrendered_math(_read_input(source)), output)


def run() -> None:
    """Entry point for console scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
