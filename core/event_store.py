# core/event_store.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Sequence, Tuple

from core.events import NormalizedEvent

log = logging.getLogger("calbot.store")


@dataclass(frozen=True)
class _Snapshot:
    events: Tuple[NormalizedEvent, ...]
    uids: FrozenSet[str]
    loaded: bool


class EventStore:
    """Holds the canonical event list and the UID snapshot of the last load.

    Both are kept in one immutable snapshot object that is swapped in a
    single assignment, so a reader never sees events from one load paired
    with the UIDs of another.
    """

    def __init__(self):
        self._snapshot = _Snapshot(events=(), uids=frozenset(), loaded=False)

    @property
    def events(self) -> Tuple[NormalizedEvent, ...]:
        return self._snapshot.events

    @property
    def loaded(self) -> bool:
        return self._snapshot.loaded

    def __len__(self) -> int:
        return len(self._snapshot.events)

    def replace(self, events: Sequence[NormalizedEvent]) -> List[NormalizedEvent]:
        """Install a new canonical list and return the events added since the last load.

        The first load never reports added events.
        """
        previous = self._snapshot
        new_uids = frozenset(event.uid for event in events)

        if previous.loaded:
            added = [event for event in events if event.uid not in previous.uids]
        else:
            added = []

        self._snapshot = _Snapshot(events=tuple(events), uids=new_uids, loaded=True)
        log.info(f"Loaded {len(events)} events ({len(added)} new)")
        return added

    def upcoming(self, limit: int, now: datetime) -> List[NormalizedEvent]:
        """Return the first ``limit`` events starting at or after ``now``"""
        result: List[NormalizedEvent] = []
        if limit <= 0:
            return result

        for event in self._snapshot.events:
            if event.start < now:
                continue
            result.append(event)
            if len(result) >= limit:
                break
        return result
