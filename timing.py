import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, TextIO

MILESTONE_LABELS = {
    'start': 'Operation Started At',
    'connected': 'Connected At',
    'sent': 'Send Complete At',
    'end': 'Operation Completed At',
}


@dataclass
class Milestone:
    name: str
    wall: float
    monotonic: float


def elapsed_ms(earlier: Milestone, later: Milestone) -> int:
    return int((later.monotonic - earlier.monotonic) * 1000)


class OperationTimer:
    """Records milestones and prints them; never affects the operation."""

    def __init__(self,
                 stream: Optional[TextIO] = None,
                 metrics: bool = True,
                 wall_clock: Callable[[], float] = time.time,
                 monotonic: Callable[[], float] = time.monotonic):
        self.stream = stream if stream is not None else sys.stdout
        self.metrics = metrics
        self.wall_clock = wall_clock
        self.monotonic = monotonic
        self.milestones: dict[str, Milestone] = {}

    def mark(self, name: str) -> Milestone:
        milestone = Milestone(name, self.wall_clock(), self.monotonic())
        self.milestones[name] = milestone
        self._write(f'{MILESTONE_LABELS[name]}: {time.ctime(milestone.wall)}')
        return milestone

    def durations(self) -> dict[str, int]:
        end = self.milestones.get('end')
        if end is None:
            return {}
        result = {}
        if 'connected' in self.milestones:
            result['connected'] = elapsed_ms(self.milestones['connected'], end)
        if 'start' in self.milestones:
            result['total'] = elapsed_ms(self.milestones['start'], end)
        return result

    def report(self):
        if not self.metrics:
            return
        durations = self.durations()
        if 'connected' in durations:
            self._write(f'Connected: {durations["connected"]} ms')
        if 'total' in durations:
            self._write(f'Total Elapsed: {durations["total"]} ms')

    def _write(self, line: str):
        self.stream.write(f'{line}\n')
        self.stream.flush()
