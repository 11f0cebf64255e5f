from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import Bookmark, Category, User, utcnow
from app.services.common import optional_text, parse_tags
from app.services.feed import (
    EVENT_DELETE,
    EVENT_INSERT,
    EVENT_UPDATE,
    feed,
    record_change,
)
from app.services.security import resolve_identity, scope_session_to_owner


BOOKMARK_FIELDS = ("title", "url", "description", "notes", "category", "tags")
CATEGORY_FIELDS = ("name", "color")
PROFILE_FIELDS = ("full_name", "avatar_url", "bio", "theme")


def _owner_id(identity=None) -> str:
    owner = resolve_identity(identity)
    scope_session_to_owner(owner.id)
    return owner.id


def _commit() -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


def _normalize_tags(value) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return parse_tags(value)
    tags = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return tags or None


def bookmark_values(values: dict) -> dict:
    """Full set of editable bookmark fields; absent optionals become None."""
    return {
        "title": (values.get("title") or "").strip(),
        "url": (values.get("url") or "").strip(),
        "description": optional_text(values.get("description")),
        "notes": optional_text(values.get("notes")),
        "category": optional_text(values.get("category")),
        "tags": _normalize_tags(values.get("tags")),
    }


def _escape_like(query: str) -> str:
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# Bookmarks


def list_bookmarks(identity=None) -> list[Bookmark]:
    owner_id = _owner_id(identity)
    return (
        Bookmark.query.filter_by(user_id=owner_id)
        .order_by(Bookmark.created_at.desc())
        .all()
    )


def get_bookmark(bookmark_id: str, identity=None) -> Bookmark | None:
    owner_id = _owner_id(identity)
    return Bookmark.query.filter_by(id=bookmark_id, user_id=owner_id).first()


def search_bookmarks(query: str, identity=None) -> list[Bookmark]:
    owner_id = _owner_id(identity)
    pattern = f"%{_escape_like(query.strip())}%"
    return (
        Bookmark.query.filter_by(user_id=owner_id)
        .filter(
            or_(
                Bookmark.title.ilike(pattern, escape="\\"),
                Bookmark.description.ilike(pattern, escape="\\"),
                Bookmark.url.ilike(pattern, escape="\\"),
            )
        )
        .order_by(Bookmark.created_at.desc())
        .all()
    )


def create_bookmark(values: dict, identity=None) -> Bookmark:
    owner_id = _owner_id(identity)
    bookmark = Bookmark(user_id=owner_id, **bookmark_values(values))
    db.session.add(bookmark)
    try:
        db.session.flush()
        record_change(owner_id, bookmark.id, EVENT_INSERT, new=bookmark.as_dict())
    except SQLAlchemyError:
        db.session.rollback()
        raise
    _commit()
    feed.notify(owner_id)
    return bookmark


def update_bookmark(bookmark_id: str, values: dict, identity=None) -> Bookmark | None:
    owner_id = _owner_id(identity)
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=owner_id).first()
    if bookmark is None:
        return None

    old = bookmark.as_dict()
    for field, value in bookmark_values(values).items():
        setattr(bookmark, field, value)
    bookmark.updated_at = utcnow()
    try:
        db.session.flush()
        record_change(
            owner_id, bookmark.id, EVENT_UPDATE, new=bookmark.as_dict(), old=old
        )
    except SQLAlchemyError:
        db.session.rollback()
        raise
    _commit()
    feed.notify(owner_id)
    return bookmark


def delete_bookmark(bookmark_id: str, identity=None) -> int:
    owner_id = _owner_id(identity)
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=owner_id).first()
    if bookmark is None:
        return 0

    old = bookmark.as_dict()
    db.session.delete(bookmark)
    record_change(owner_id, bookmark_id, EVENT_DELETE, old=old)
    _commit()
    feed.notify(owner_id)
    return 1


# Categories


def list_categories(identity=None) -> list[Category]:
    owner_id = _owner_id(identity)
    return Category.query.filter_by(user_id=owner_id).order_by(Category.name.asc()).all()


def create_category(values: dict, identity=None) -> Category:
    owner_id = _owner_id(identity)
    category = Category(
        user_id=owner_id,
        name=(values.get("name") or "").strip(),
        color=optional_text(values.get("color")),
    )
    db.session.add(category)
    _commit()
    return category


def update_category(category_id: str, values: dict, identity=None) -> Category | None:
    owner_id = _owner_id(identity)
    category = Category.query.filter_by(id=category_id, user_id=owner_id).first()
    if category is None:
        return None
    if "name" in values:
        category.name = (values.get("name") or "").strip()
    if "color" in values:
        category.color = optional_text(values.get("color"))
    _commit()
    return category


def delete_category(category_id: str, identity=None) -> int:
    owner_id = _owner_id(identity)
    deleted = Category.query.filter_by(id=category_id, user_id=owner_id).delete(
        synchronize_session=False
    )
    _commit()
    return deleted


# Users


def get_user(identity=None) -> User | None:
    owner_id = _owner_id(identity)
    return db.session.get(User, owner_id)


def create_user(values: dict, identity=None) -> User:
    owner = resolve_identity(identity)
    scope_session_to_owner(owner.id)
    user = User(id=owner.id, email=values.get("email") or owner.email)
    for field in PROFILE_FIELDS:
        if field in values:
            setattr(user, field, optional_text(values.get(field)))
    db.session.add(user)
    _commit()
    return user


def update_user(values: dict, identity=None) -> User | None:
    owner_id = _owner_id(identity)
    user = db.session.get(User, owner_id)
    if user is None:
        return None
    for field in PROFILE_FIELDS:
        if field in values:
            setattr(user, field, optional_text(values.get(field)))
    _commit()
    return user
