"""Per-owner change feed for bookmarks.

Every bookmark mutation appends a row to ``bookmark_changes`` in the same
transaction. Subscribers read the log after their cursor, so delivery works
across processes; the in-process condition only shortens the wait when the
writer lives in the same process.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import BookmarkChange
from app.services.security import scope_session_to_owner


log = logging.getLogger(__name__)

EVENT_INSERT = "insert"
EVENT_UPDATE = "update"
EVENT_DELETE = "delete"

FEED_EVENTS = {EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE}

STATUS_SUBSCRIBED = "SUBSCRIBED"
STATUS_CHANNEL_ERROR = "CHANNEL_ERROR"
STATUS_CLOSED = "CLOSED"

READ_BATCH_SIZE = 500


@dataclass(frozen=True)
class ChangeEvent:
    cursor: int
    event_type: str
    new: dict | None = None
    old: dict | None = None
    commit_timestamp: str | None = None

    @property
    def record_id(self) -> str | None:
        row = self.new or self.old or {}
        return row.get("id")

    @classmethod
    def from_row(cls, row: BookmarkChange) -> ChangeEvent:
        return cls(
            cursor=row.id,
            event_type=row.event_type,
            new=row.new,
            old=row.old,
            commit_timestamp=row.created_at.isoformat() if row.created_at else None,
        )

    def as_dict(self) -> dict:
        return {
            "cursor": self.cursor,
            "eventType": self.event_type,
            "new": self.new,
            "old": self.old,
            "commit_timestamp": self.commit_timestamp,
        }


def record_change(
    owner_id: str,
    bookmark_id: str,
    event_type: str,
    new: dict | None = None,
    old: dict | None = None,
) -> None:
    if event_type not in FEED_EVENTS:
        raise ValueError(f"unsupported change event: {event_type}")
    change = BookmarkChange(
        user_id=owner_id,
        bookmark_id=bookmark_id,
        event_type=event_type,
        new=new,
        old=old,
    )
    db.session.add(change)


class ChangeFeed:
    def __init__(self, app=None):
        self._condition = threading.Condition()
        self._versions: dict[str, int] = {}
        self.poll_interval = 2.0
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.poll_interval = float(app.config.get("FEED_POLL_INTERVAL", 2.0))
        app.extensions["change_feed"] = self

    def notify(self, owner_id: str) -> None:
        with self._condition:
            self._versions[owner_id] = self._versions.get(owner_id, 0) + 1
            self._condition.notify_all()

    def version(self, owner_id: str) -> int:
        with self._condition:
            return self._versions.get(owner_id, 0)

    def wait(self, owner_id: str, seen_version: int, timeout: float) -> int:
        deadline = time.monotonic() + timeout
        with self._condition:
            while self._versions.get(owner_id, 0) == seen_version:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._condition.wait(remaining)
            return self._versions.get(owner_id, 0)

    def head(self, owner_id: str) -> int:
        scope_session_to_owner(owner_id)
        latest = (
            db.session.query(func.max(BookmarkChange.id))
            .filter(BookmarkChange.user_id == owner_id)
            .scalar()
        )
        return latest or 0

    def read(
        self, owner_id: str, since: int, limit: int = READ_BATCH_SIZE
    ) -> list[ChangeEvent]:
        scope_session_to_owner(owner_id)
        rows = (
            BookmarkChange.query.filter(BookmarkChange.user_id == owner_id)
            .filter(BookmarkChange.id > since)
            .order_by(BookmarkChange.id.asc())
            .limit(limit)
            .all()
        )
        return [ChangeEvent.from_row(row) for row in rows]

    def subscribe(self, owner_id: str, since: int | None = None) -> FeedSubscription:
        subscription = FeedSubscription(self, owner_id, since)
        subscription.open()
        return subscription


class FeedSubscription:
    def __init__(self, feed: ChangeFeed, owner_id: str, since: int | None = None):
        self.feed = feed
        self.owner_id = owner_id
        self.cursor = since
        self.status = STATUS_CLOSED

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_SUBSCRIBED

    def open(self) -> None:
        try:
            if self.cursor is None:
                self.cursor = self.feed.head(self.owner_id)
            else:
                self.feed.read(self.owner_id, self.cursor, limit=1)
        except SQLAlchemyError:
            log.exception("change feed subscribe failed for owner %s", self.owner_id)
            db.session.rollback()
            self.status = STATUS_CHANNEL_ERROR
            return
        self.status = STATUS_SUBSCRIBED

    def _read(self) -> list[ChangeEvent]:
        try:
            events = self.feed.read(self.owner_id, self.cursor)
        except SQLAlchemyError:
            log.exception("change feed read failed for owner %s", self.owner_id)
            db.session.rollback()
            self.status = STATUS_CHANNEL_ERROR
            return []
        if events:
            self.cursor = events[-1].cursor
        return events

    def poll(self, timeout: float = 0.0) -> list[ChangeEvent]:
        if not self.is_active:
            return []

        deadline = time.monotonic() + timeout
        while True:
            seen = self.feed.version(self.owner_id)
            events = self._read()
            if events or not self.is_active:
                return events
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return []
            self.feed.wait(
                self.owner_id, seen, min(remaining, self.feed.poll_interval)
            )

    def close(self) -> None:
        self.status = STATUS_CLOSED


feed = ChangeFeed()
