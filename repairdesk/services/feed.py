"""In-process change feed standing in for realtime store subscriptions.

Subscribers receive a callback per committed change until they cancel. Services
publish only after a successful commit, so a subscriber never sees a history entry
whose ticket change was rolled back.

    sub = change_feed.subscribe(org_id, TOPIC_TICKETS, on_snapshot, on_error)
    ...
    sub.cancel()
"""
from __future__ import annotations
import itertools
import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

TOPIC_TICKETS = 'tickets'
TOPIC_HISTORY = 'history'
TOPIC_CLIENTS = 'clients'
TOPICS = (TOPIC_TICKETS, TOPIC_HISTORY, TOPIC_CLIENTS)


class Subscription:
    def __init__(self, feed: 'ChangeFeed', key: Tuple[str, str], sub_id: int):
        self._feed = feed
        self.key = key
        self.id = sub_id
        self.active = True

    def cancel(self):
        if self.active:
            self.active = False
            self._feed._remove(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.cancel()


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subs: Dict[Tuple[str, str], Dict[int, Tuple[Callable[[Any], None], Optional[Callable[[Exception], None]]]]] = {}

    def subscribe(self, organization_id: str, topic: str, callback: Callable[[Any], None],
                  on_error: Optional[Callable[[Exception], None]] = None) -> Subscription:
        if topic not in TOPICS:
            raise ValueError(f'unknown topic {topic}')
        key = (organization_id, topic)
        with self._lock:
            sub_id = next(self._ids)
            self._subs.setdefault(key, {})[sub_id] = (callback, on_error)
        return Subscription(self, key, sub_id)

    def _remove(self, sub: Subscription):
        with self._lock:
            bucket = self._subs.get(sub.key)
            if bucket:
                bucket.pop(sub.id, None)
                if not bucket:
                    self._subs.pop(sub.key, None)

    def subscriber_count(self, organization_id: str, topic: str) -> int:
        with self._lock:
            return len(self._subs.get((organization_id, topic), {}))

    def publish(self, organization_id: str, topic: str, payload: Any):
        with self._lock:
            targets = list(self._subs.get((organization_id, topic), {}).values())
        for callback, on_error in targets:
            try:
                callback(payload)
            except Exception as exc:  # subscriber failure must not affect the committed write
                if on_error is not None:
                    on_error(exc)
                else:
                    logger.exception('change feed subscriber failed on %s/%s', organization_id, topic)


change_feed = ChangeFeed()

__all__ = ['ChangeFeed', 'Subscription', 'change_feed', 'TOPIC_TICKETS', 'TOPIC_HISTORY', 'TOPIC_CLIENTS']
