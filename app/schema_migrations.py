from __future__ import annotations

from flask import current_app
from sqlalchemy import inspect, text

from app.extensions import db


OWNER_CLAIM = "(current_setting('request.jwt.claims', true)::json ->> 'sub')"

OWNER_COLUMNS = {
    "users": "id",
    "bookmarks": "user_id",
    "categories": "user_id",
    "bookmark_changes": "user_id",
}


def enable_row_level_security() -> bool:
    engine = db.engine
    if engine.dialect.name != "postgresql":
        return False
    if not current_app.config.get("DB_ROW_LEVEL_SECURITY"):
        return False

    inspector = inspect(engine)
    existing = set(
        db.session.execute(
            text(
                """
                SELECT tablename || '.' || policyname
                FROM pg_policies
                WHERE schemaname = current_schema()
                """
            )
        ).scalars()
    )

    for table, column in OWNER_COLUMNS.items():
        if not inspector.has_table(table):
            continue

        db.session.execute(text(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY"))
        db.session.execute(
            text(f"GRANT SELECT, INSERT, UPDATE, DELETE ON {table} TO authenticated")
        )
        policy = f"{table}_owner_access"
        if f"{table}.{policy}" in existing:
            continue
        db.session.execute(
            text(
                f"""
                CREATE POLICY {policy} ON {table}
                TO authenticated
                USING ({column} = {OWNER_CLAIM})
                WITH CHECK ({column} = {OWNER_CLAIM})
                """
            )
        )

    db.session.execute(
        text("GRANT USAGE ON SEQUENCE bookmark_changes_id_seq TO authenticated")
    )
    db.session.commit()
    return True
