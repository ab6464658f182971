"""Composition of the extraction and rendering directions."""

from .converters import ContentConverter

__all__ = ["ContentConverter"]
