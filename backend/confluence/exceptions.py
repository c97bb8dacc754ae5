"""
Confluence — Exception Taxonomy

Only ``InvalidBar`` ever reaches a caller of the analysis pipeline.
``InsufficientData`` is raised by resampling and absorbed by the engines;
``UpstreamUnavailable`` is absorbed by the multi-horizon aggregator.
"""

from __future__ import annotations

from typing import Optional


class ConfluenceError(Exception):
    """Base class for all engine errors."""


class InsufficientData(ConfluenceError):
    """A window is shorter than an operation's minimum."""

    def __init__(self, required: int, available: int, what: str = "bars"):
        self.required = required
        self.available = available
        super().__init__(f"need at least {required} {what}, got {available}")


class InvalidBar(ConfluenceError):
    """A bar violates the OHLCV ordering invariant or the series ordering."""

    def __init__(self, reason: str, index: Optional[int] = None):
        self.reason = reason
        self.index = index
        where = f"bar {index}: " if index is not None else ""
        super().__init__(f"{where}{reason}")


class UpstreamUnavailable(ConfluenceError):
    """A resolution could neither be supplied nor derived."""

    def __init__(self, resolution: str, reason: str = "no series supplied"):
        self.resolution = resolution
        self.reason = reason
        super().__init__(f"{resolution}: {reason}")
