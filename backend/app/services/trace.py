"""
Append-only audit trail shared by every acquisition step.

Each lane builds its own Trace; the orchestrator concatenates them in
chronological order into the PipelineResult.
"""

from typing import Iterable, Iterator

from app.models.extraction import TraceEntry


class Trace:
    """Ordered list of TraceEntry records that can only grow."""

    def __init__(self, entries: Iterable[TraceEntry] = ()):
        self._entries: list[TraceEntry] = list(entries)

    def add(self, step: str, **data) -> TraceEntry:
        entry = TraceEntry(step=step, data=data or None)
        self._entries.append(entry)
        return entry

    def extend(self, entries: Iterable[TraceEntry]) -> None:
        self._entries.extend(entries)

    @property
    def entries(self) -> list[TraceEntry]:
        return list(self._entries)

    @property
    def steps(self) -> list[str]:
        return [entry.step for entry in self._entries]

    def __iter__(self) -> Iterator[TraceEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
