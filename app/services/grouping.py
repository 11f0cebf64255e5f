from __future__ import annotations

from dataclasses import dataclass, field


COLLAPSED_SESSION_KEY = "collapsed_categories"


def _field(bookmark, name: str):
    if isinstance(bookmark, dict):
        return bookmark.get(name)
    return getattr(bookmark, name, None)


def category_key(label: str) -> str:
    return label.lower()


@dataclass
class CategoryGroup:
    key: str
    label: str
    bookmarks: list = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.bookmarks)


@dataclass
class BookmarkSections:
    uncategorized: list = field(default_factory=list)
    groups: list[CategoryGroup] = field(default_factory=list)

    @property
    def categorized_count(self) -> int:
        return sum(group.count for group in self.groups)

    @property
    def total(self) -> int:
        return len(self.uncategorized) + self.categorized_count


def group_bookmarks(bookmarks) -> BookmarkSections:
    sections = BookmarkSections()
    by_key: dict[str, CategoryGroup] = {}
    for bookmark in bookmarks:
        label = _field(bookmark, "category")
        if not label:
            sections.uncategorized.append(bookmark)
            continue
        key = category_key(label)
        group = by_key.get(key)
        if group is None:
            group = by_key[key] = CategoryGroup(key=key, label=label)
        group.bookmarks.append(bookmark)

    sections.groups = sorted(
        by_key.values(), key=lambda group: (group.label.casefold(), group.label)
    )
    return sections


class ExpansionState:
    """Per-category collapsed flags; every group starts expanded."""

    def __init__(self, collapsed=None):
        self.collapsed = set(collapsed or ())

    @classmethod
    def from_session(cls, session) -> ExpansionState:
        return cls(session.get(COLLAPSED_SESSION_KEY) or ())

    def save(self, session) -> None:
        session[COLLAPSED_SESSION_KEY] = sorted(self.collapsed)

    def is_expanded(self, key: str) -> bool:
        return key not in self.collapsed

    def toggle(self, key: str) -> bool:
        if key in self.collapsed:
            self.collapsed.discard(key)
            return True
        self.collapsed.add(key)
        return False
