from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class EventPoolStatus:
    event_id: int
    points_pool: int
    points_awarded: int

    @property
    def points_remaining(self) -> int:
        return self.points_pool - self.points_awarded
