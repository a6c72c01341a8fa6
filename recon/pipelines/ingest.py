"""Shared pieces of the article and post ingestion pipelines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")


class ConfigurationError(Exception):
    """Raised when required configuration is missing; aborts the run."""
    pass


class IngestionError(Exception):
    """Raised when a source cannot be read at all."""
    pass


@dataclass
class IngestReport:
    """Outcome counts for one ingestion run."""
    found: int = 0
    added: int = 0
    skipped: int = 0
    failed: int = 0

    def __str__(self) -> str:
        return (
            f"Total Found: {self.found}, Added: {self.added}, "
            f"Skipped: {self.skipped}, Failed: {self.failed}"
        )


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]
