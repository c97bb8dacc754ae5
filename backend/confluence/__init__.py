"""Confluence: multi-factor trading signal engine."""

__version__ = "1.0.0"
