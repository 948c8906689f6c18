from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, Tuple


@dataclass
class EventBusStats:
    published_total: int = 0
    delivered_total: int = 0
    dropped_total: int = 0
    handler_errors_total: int = 0
    subscribers: int = 0
    per_type_published: Dict[str, int] = field(default_factory=dict)
    per_type_dropped: Dict[str, int] = field(default_factory=dict)
    # subscriber name -> events waiting in its queue
    backlog: Dict[str, int] = field(default_factory=dict)

    @property
    def queue_depth(self) -> int:
        return sum(self.backlog.values())


class StatsCounter:
    """Counters for a bus living on a single event loop; no locking needed."""

    def __init__(self) -> None:
        self._published: Counter = Counter()
        self._dropped: Counter = Counter()
        self._delivered = 0
        self._handler_errors = 0
        self._subscribers = 0
        self._backlog: Dict[str, int] = {}

    def snapshot(self) -> EventBusStats:
        return EventBusStats(
            published_total=sum(self._published.values()),
            delivered_total=self._delivered,
            dropped_total=sum(self._dropped.values()),
            handler_errors_total=self._handler_errors,
            subscribers=self._subscribers,
            per_type_published=dict(self._published),
            per_type_dropped=dict(self._dropped),
            backlog=dict(self._backlog),
        )

    def published(self, event_type: str) -> None:
        self._published[event_type] += 1

    def dropped(self, event_type: str) -> None:
        self._dropped[event_type] += 1

    def delivered(self, n: int = 1) -> None:
        self._delivered += int(n)

    def handler_failed(self) -> None:
        self._handler_errors += 1

    def track_backlog(self, queues: Iterable[Tuple[str, int]]) -> None:
        pairs = list(queues)
        self._backlog = {}
        for name, depth in pairs:
            self._backlog[name] = self._backlog.get(name, 0) + int(depth)
        self._subscribers = len(pairs)
