"""Live bookmark list for one signed-in owner.

``BookmarksSubscription`` fetches the owner's bookmarks once, then keeps the
in-memory list current by applying change-feed events. It never re-fetches
on its own; ``resync()`` is the explicit recovery path after the feed drops.

Merge policy:

* insert: placed by ``created_at`` (newest first), so an in-order insert is a
  prepend. An insert whose id is already present replaces that entry.
* update: replaces the entry with the same id in place. Unknown ids are
  dropped and logged, since they mean the list has drifted from the store.
* delete: removes the entry with the same id, if any.

Every event can be applied twice with the same result.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.services.common import parse_timestamp
from app.services.feed import (
    EVENT_DELETE,
    EVENT_INSERT,
    EVENT_UPDATE,
    ChangeEvent,
    ChangeFeed,
    FeedSubscription,
    feed as default_feed,
)
from app.services.queries import list_bookmarks


log = logging.getLogger(__name__)


class BookmarksSubscription:
    def __init__(self, identity, change_feed: ChangeFeed | None = None):
        self.identity = identity
        self.feed = change_feed or default_feed
        self.bookmarks: list[dict] = []
        self.is_loading = True
        self.has_error = False
        self._subscription: FeedSubscription | None = None

    @property
    def owner_id(self) -> str:
        return self.identity.id

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.is_active

    @property
    def cursor(self) -> int | None:
        return self._subscription.cursor if self._subscription else None

    def __enter__(self) -> BookmarksSubscription:
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> BookmarksSubscription:
        # Head first: anything committed during the fetch is replayed, and
        # replays are harmless because every merge is idempotent.
        try:
            since = self.feed.head(self.owner_id)
        except SQLAlchemyError:
            log.exception("could not read change feed head for %s", self.owner_id)
            db.session.rollback()
            since = None

        try:
            self.bookmarks = [row.as_dict() for row in list_bookmarks(self.identity)]
        except SQLAlchemyError:
            log.exception("failed to fetch bookmarks for %s", self.owner_id)
            db.session.rollback()
            self.bookmarks = []
            self.has_error = True
        self.is_loading = False

        self._subscription = self.feed.subscribe(self.owner_id, since=since)
        if not self.is_subscribed:
            log.warning("bookmark feed is not live for %s", self.owner_id)
        return self

    def _index_of(self, bookmark_id) -> int | None:
        for index, row in enumerate(self.bookmarks):
            if row.get("id") == bookmark_id:
                return index
        return None

    def _insert_position(self, record: dict) -> int:
        created = parse_timestamp(record.get("created_at"))
        if created is None:
            return 0
        for index, row in enumerate(self.bookmarks):
            existing = parse_timestamp(row.get("created_at"))
            if existing is None or existing <= created:
                return index
        return len(self.bookmarks)

    def apply(self, event: ChangeEvent) -> bool:
        """Merge one event; returns True when the list changed."""
        if event.event_type == EVENT_INSERT:
            record = event.new or {}
            if not record.get("id"):
                return False
            index = self._index_of(record["id"])
            if index is not None:
                if self.bookmarks[index] == record:
                    return False
                self.bookmarks[index] = record
                return True
            self.bookmarks.insert(self._insert_position(record), record)
            return True

        if event.event_type == EVENT_UPDATE:
            record = event.new or {}
            index = self._index_of(record.get("id"))
            if index is None:
                log.warning(
                    "dropped update for unknown bookmark %s; list may be out of sync",
                    record.get("id"),
                )
                return False
            if self.bookmarks[index] == record:
                return False
            self.bookmarks[index] = record
            return True

        if event.event_type == EVENT_DELETE:
            index = self._index_of(event.record_id)
            if index is None:
                return False
            del self.bookmarks[index]
            return True

        log.warning("ignored change event of type %r", event.event_type)
        return False

    def pump(self, timeout: float = 0.0) -> list[ChangeEvent]:
        if not self.is_subscribed:
            return []
        events = self._subscription.poll(timeout)
        if not self.is_subscribed:
            log.warning("bookmark feed dropped for %s", self.owner_id)
        return [event for event in events if self.apply(event)]

    def resync(self) -> BookmarksSubscription:
        self.close()
        self.bookmarks = []
        self.is_loading = True
        self.has_error = False
        return self.start()

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
