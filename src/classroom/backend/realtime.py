"""In-process change feed.

Repositories publish row changes (INSERT / UPDATE / DELETE) per table;
subscribers receive the ones matching their column filter, e.g. every
``documents`` change with ``base_class_id = 'bc-1'``.

Example:
    feed = get_change_feed()
    sub = feed.subscribe("documents", on_change, "base_class_id", "bc-1")
    ...
    sub.close()
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal

import structlog

logger = structlog.get_logger(__name__)

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]
CHANGE_TYPES: tuple[str, ...] = ("INSERT", "UPDATE", "DELETE")


@dataclass
class Change:
    """One row change notification."""

    table: str
    event_type: ChangeType
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    commit_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def row(self) -> dict[str, Any]:
        """The row the change is about (old row for deletes)."""
        if self.event_type == "DELETE":
            return self.old or {}
        return self.new or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "eventType": self.event_type,
            "new": self.new,
            "old": self.old,
            "commitTimestamp": self.commit_timestamp,
        }


ChangeCallback = Callable[[Change], None]


@dataclass
class Subscription:
    id: str
    table: str
    callback: ChangeCallback
    filter_column: str | None
    filter_value: Any
    _feed: "ChangeFeed | None" = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._feed is not None

    def matches(self, change: Change) -> bool:
        if change.table != self.table:
            return False
        if self.filter_column is None:
            return True
        return change.row().get(self.filter_column) == self.filter_value

    def close(self) -> None:
        """Stop receiving changes. Safe to call twice."""
        if self._feed is not None:
            self._feed._remove(self.id)
            self._feed = None


class ChangeFeed:
    """Thread-safe fan-out of row changes to filtered subscribers."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        filter_column: str | None = None,
        filter_value: Any = None,
    ) -> Subscription:
        sub = Subscription(
            id=str(uuid.uuid4()),
            table=table,
            callback=callback,
            filter_column=filter_column,
            filter_value=filter_value,
            _feed=self,
        )
        with self._lock:
            self._subscriptions[sub.id] = sub
        logger.debug("realtime.subscribed", table=table, filter=filter_column, value=filter_value)
        return sub

    def _remove(self, subscription_id: str) -> None:
        with self._lock:
            self._subscriptions.pop(subscription_id, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(
        self,
        table: str,
        event_type: ChangeType,
        new: dict[str, Any] | None = None,
        old: dict[str, Any] | None = None,
    ) -> int:
        """Deliver a change to every matching subscriber.

        A failing subscriber is logged and does not affect the others.

        Returns:
            Number of subscribers notified
        """
        if event_type not in CHANGE_TYPES:
            raise ValueError(f"Unknown change type: {event_type}")

        change = Change(table=table, event_type=event_type, new=new, old=old)
        with self._lock:
            targets = [s for s in self._subscriptions.values() if s.matches(change)]

        for sub in targets:
            try:
                sub.callback(change)
            except Exception as e:
                logger.error(
                    "realtime.subscriber_failed",
                    table=table,
                    event_type=event_type,
                    subscription=sub.id,
                    error=str(e),
                )
        return len(targets)


# Global instance
_change_feed: ChangeFeed | None = None


def get_change_feed() -> ChangeFeed:
    """Get the process-wide change feed."""
    global _change_feed
    if _change_feed is None:
        _change_feed = ChangeFeed()
    return _change_feed


def reset_change_feed() -> None:
    """Drop all subscriptions (tests)."""
    global _change_feed
    _change_feed = None
