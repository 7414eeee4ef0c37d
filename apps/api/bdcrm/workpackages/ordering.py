"""Ordered view over the phases of one work package.

Phase order is defined by ``position`` alone. Positions may have gaps but must
be unique; a list is loaded once per operation and every "before"/"after"
question is answered by index rather than by comparing positions.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator, Sequence
from typing import Generic, Protocol, TypeVar


class Positioned(Protocol):
    id: uuid.UUID
    position: int


T = TypeVar("T", bound=Positioned)


class DuplicatePositionError(ValueError):
    def __init__(self, positions: Sequence[int]) -> None:
        self.positions = sorted(set(positions))
        super().__init__(f"duplicate phase positions: {', '.join(str(item) for item in self.positions)}")


class OrderedPhases(Generic[T]):
    def __init__(self, phases: Iterable[T]) -> None:
        ordered = sorted(phases, key=lambda phase: phase.position)
        duplicates = [
            current.position
            for previous, current in zip(ordered, ordered[1:])
            if previous.position == current.position
        ]
        if duplicates:
            raise DuplicatePositionError(duplicates)
        self._phases: list[T] = ordered
        self._index: dict[uuid.UUID, int] = {phase.id: index for index, phase in enumerate(ordered)}

    def __iter__(self) -> Iterator[T]:
        return iter(self._phases)

    def __len__(self) -> int:
        return len(self._phases)

    def __contains__(self, phase_id: object) -> bool:
        return phase_id in self._index

    @property
    def first(self) -> T | None:
        return self._phases[0] if self._phases else None

    def get(self, phase_id: uuid.UUID) -> T:
        return self._phases[self._index[phase_id]]

    def is_first(self, phase_id: uuid.UUID) -> bool:
        return self._index.get(phase_id) == 0

    def previous(self, phase_id: uuid.UUID) -> T | None:
        index = self._index[phase_id]
        return self._phases[index - 1] if index > 0 else None

    def after(self, phase_id: uuid.UUID) -> list[T]:
        return self._phases[self._index[phase_id] + 1 :]
