"""Prompt templates and structured-prompt helpers."""
