"""Append-only step log for one run."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from failcapture.kernel.timebase import Clock


@dataclass(frozen=True)
class StepRecord:
    ts: int
    action: str
    step_id: str | None
    step_index: int
    url: str | None = None


class StepLog:
    """Steps span the whole run; unlike frames they are never evicted."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._steps: list[StepRecord] = []

    def record(self, action: str, step_id: str | None, step_index: int, url: str | None = None) -> StepRecord:
        step = StepRecord(
            ts=int(self._clock()),
            action=str(action),
            step_id=None if step_id is None else str(step_id),
            step_index=int(step_index),
            url=url,
        )
        self._steps.append(step)
        return step

    def to_list(self) -> list[dict[str, Any]]:
        return [asdict(step) for step in self._steps]

    def __len__(self) -> int:
        return len(self._steps)
