"""Configuration helpers for the rendering direction."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class RenderOptions(BaseModel):
    """Limits and switches applied to a single Markdown render."""

    model_config = ConfigDict(extra="forbid")

    max_input_size: int = Field(1_000_000, gt=0, description="Maximum Markdown length in characters")
    max_output_size: int = Field(5_000_000, gt=0, description="Maximum rendered HTML length in characters")
    timeout: int = Field(3000, gt=0, description="Parsing budget in milliseconds")
    sanitize: bool = Field(True, description="Run the HTML sanitizer over rendered output")
    code_block_mode: Literal["full", "placeholder"] = Field(
        "full", description="Render code blocks fully or as a lightweight summary card"
    )


ENV_PREFIX = "CHATMD"
CONFIG_SECTION = "render"
DEFAULT_CONFIG_PATHS = (
    Path.cwd() / "chatmd.toml",
    Path.home() / ".config" / "chatmd" / "config.toml",
)
OPTION_KEYS = tuple(RenderOptions.model_fields)


@dataclasses.dataclass
class ConfigSource:
    """Result of attempting to resolve configuration data."""

    options: Optional[RenderOptions]
    path: Optional[Path]
    error: Optional[Exception]


def _load_from_env() -> dict[str, object]:
    """Return option values found in ``CHATMD_*`` environment variables."""

    env_data: dict[str, object] = {}
    for key in OPTION_KEYS:
        value = os.getenv(f"{ENV_PREFIX}_{key.upper()}")
        if value:
            env_data[key] = value
    return env_data


def _load_toml(path: Path) -> Optional[dict]:
    if not path.exists():
        return None

    try:  # Python 3.11+
        import tomllib  # type: ignore
    except ModuleNotFoundError:  # pragma: no cover - Python <3.11 fallback
        import tomli as tomllib  # type: ignore

    with path.open("rb") as handle:
        data = tomllib.load(handle)
    section = data.get(CONFIG_SECTION, data)
    return section if isinstance(section, dict) else None


def resolve_options(explicit_path: Optional[Path] = None) -> ConfigSource:
    """Discover render options using the first available source.

    The priority order is:
    1. Explicit path provided via CLI argument.
    2. Default configuration files in the working directory or the user's config directory.
    3. Environment variables with the `CHATMD_` prefix.
    """

    errors: list[Exception] = []
    sources: list[tuple[Optional[Path], Optional[dict]]] = []

    if explicit_path is not None:
        if not explicit_path.exists():
            return ConfigSource(
                options=None,
                path=explicit_path,
                error=FileNotFoundError(f"Configuration file {explicit_path} does not exist"),
            )
        try:
            data = _load_toml(explicit_path)
        except (OSError, ValueError) as exc:
            return ConfigSource(options=None, path=explicit_path, error=exc)
        sources.append((explicit_path, data))
    else:
        for path in DEFAULT_CONFIG_PATHS:
            try:
                data = _load_toml(path)
            except (OSError, ValueError) as exc:
                errors.append(exc)
                continue
            if data is not None:
                sources.append((path, data))
                break

    if not sources:
        env_data = _load_from_env()
        if env_data:
            sources.append((None, env_data))

    for path, data in sources:
        if data is None:
            continue
        try:
            options = RenderOptions.model_validate(data)
            return ConfigSource(options=options, path=path, error=None)
        except ValidationError as exc:
            errors.append(exc)

    error = errors[0] if errors else None
    return ConfigSource(options=None, path=None, error=error)


def ensure_options(
    *,
    max_input_size: Optional[int] = None,
    max_output_size: Optional[int] = None,
    timeout: Optional[int] = None,
    sanitize: Optional[bool] = None,
    code_block_mode: Optional[str] = None,
    config_path: Optional[Path] = None,
) -> RenderOptions:
    """Resolve options from the precedence order and apply explicit overrides on top."""

    source = resolve_options(config_path)
    if source.error is not None:
        raise source.error

    options = source.options.model_copy(deep=True) if source.options else RenderOptions()

    overrides = {
        "max_input_size": max_input_size,
        "max_output_size": max_output_size,
        "timeout": timeout,
        "sanitize": sanitize,
        "code_block_mode": code_block_mode,
    }
    updates = {key: value for key, value in overrides.items() if value is not None}
    if updates:
        options = RenderOptions.model_validate({**options.model_dump(), **updates})
    return options
