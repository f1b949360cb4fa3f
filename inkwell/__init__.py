"""Inkwell -- content-generation core for long-form writing tools."""

__version__ = "0.1.0"
