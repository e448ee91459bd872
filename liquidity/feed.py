"""In-process change feed.

Store writes publish a ``ChangeEvent``; subscribers register a table, the
change kinds they care about and a field-equality filter. Delivery is
synchronous on the publishing thread, so callbacks should only enqueue.
"""

import logging
import threading
from typing import Callable, Dict, FrozenSet, Iterable, List, NamedTuple, Optional

logger = logging.getLogger(__name__)

INSERT = 'insert'
UPDATE = 'update'
DELETE = 'delete'
ALL_KINDS = frozenset({INSERT, UPDATE, DELETE})


class ChangeEvent(NamedTuple):
    table: str
    kind: str
    row: dict

    @property
    def game_id(self) -> Optional[int]:
        if self.table == 'games':
            return self.row.get('id')
        return self.row.get('game_id')

    def to_dict(self):
        return {'table': self.table, 'kind': self.kind, 'row': self.row}


class Subscription:
    def __init__(self, feed: 'ChangeFeed', table: str, kinds: FrozenSet[str],
                 filters: Dict[str, object], callback: Callable[[ChangeEvent], None]):
        self._feed = feed
        self.table = table
        self.kinds = kinds
        self.filters = dict(filters)
        self.callback = callback
        self.active = True

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table or change.kind not in self.kinds:
            return False
        return all(change.row.get(k) == v for k, v in self.filters.items())

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._feed._remove(self)


class ChangeFeed:
    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, table: str, kinds: Optional[Iterable[str]], filters: Optional[Dict[str, object]],
                  callback: Callable[[ChangeEvent], None]) -> Subscription:
        kind_set = frozenset(kinds) if kinds else ALL_KINDS
        unknown = kind_set - ALL_KINDS
        if unknown:
            raise ValueError(f"unknown change kinds: {sorted(unknown)}")
        sub = Subscription(self, table, kind_set, filters or {}, callback)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subscriptions.remove(sub)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, change: ChangeEvent) -> None:
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(change)]
        for sub in targets:
            try:
                sub.callback(change)
            except Exception:
                # One broken subscriber must not starve the others
                logger.exception(f"[feed] subscriber failed table={change.table} kind={change.kind}")
