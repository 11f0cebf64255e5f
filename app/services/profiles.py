from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import User
from app.services.identity import Identity, admin_identity_client


log = logging.getLogger(__name__)

ADMIN_PAGE_SIZE = 100


def upsert_profile(identity: Identity) -> User:
    """Create or refresh the profile row for ``identity``.

    Runs on the privileged connection, outside any owner scope. Only the
    denormalised identity fields are written; ``bio`` and ``theme`` belong
    to the user and are left alone.
    """
    try:
        profile = db.session.get(User, identity.id)
        if profile is None:
            profile = User(id=identity.id)
            db.session.add(profile)
        profile.email = identity.email
        profile.full_name = identity.full_name
        profile.avatar_url = identity.avatar_url
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return profile


def retry_missing_profiles(page_size: int = ADMIN_PAGE_SIZE) -> int:
    client = admin_identity_client()
    created = 0
    page = 1
    while True:
        identities = client.list_users(page=page, per_page=page_size)
        if not identities:
            break
        known = {
            row_id
            for (row_id,) in db.session.query(User.id).filter(
                User.id.in_([identity.id for identity in identities])
            )
        }
        for identity in identities:
            if identity.id in known or not identity.email:
                continue
            upsert_profile(identity)
            created += 1
        if len(identities) < page_size:
            break
        page += 1

    if created:
        log.info("backfilled %d missing user profiles", created)
    return created
