"""Sink connector protocol driven by the stream engine.

The engine provisions a sink with raw properties, connects it, feeds it
records one at a time or in batches, and finally closes it. ``ping`` is a
stateless connectivity probe that may run on an unprovisioned instance.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable


class ConnectionStatus(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


StatusHandler = Callable[[ConnectionStatus, str], None]


@dataclass(frozen=True)
class RecordFailure:
    """One record of a batch that could not be written."""

    index: int
    error: Exception


@dataclass
class BatchReport:
    """Outcome of a best-effort batch collect."""

    total: int = 0
    failures: list[RecordFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.total - len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed_indices(self) -> list[int]:
        return [f.index for f in self.failures]


@runtime_checkable
class SinkConnector(Protocol):
    """Protocol that every key-value sink connector must satisfy."""

    async def provision(self, props: Mapping[str, Any]) -> None:
        """Validate raw properties and keep the resulting config."""
        ...

    async def connect(self, on_status: StatusHandler) -> None:
        """Open the store connection and report the outcome to *on_status*."""
        ...

    async def collect(self, record: Mapping[str, Any]) -> None:
        """Write a single record, propagating the first error."""
        ...

    async def collect_list(self, records: Iterable[Mapping[str, Any]]) -> BatchReport:
        """Write a batch of records, continuing past per-record errors."""
        ...

    async def close(self) -> None:
        """Release the store connection."""
        ...

    async def ping(self, props: Mapping[str, Any]) -> None:
        """Validate *props* and probe the store on a throwaway connection."""
        ...

    async def health(self) -> dict[str, Any]:
        """Return a health-check status dict."""
        ...
