import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.services.identity import IdentityError
from app.services.profiles import retry_missing_profiles


log = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def run_profile_retry(app):
    with app.app_context():
        try:
            retry_missing_profiles()
        except IdentityError as exc:
            log.warning("profile retry skipped: %s", exc.message)
        except SQLAlchemyError:
            log.exception("profile retry failed")
            db.session.rollback()
        finally:
            db.session.remove()


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return
    if not app.config.get("SUPABASE_SERVICE_ROLE_KEY"):
        app.logger.info("profile retry job disabled: no service role key configured")
        return

    interval_minutes = app.config["PROFILE_RETRY_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_profile_retry,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="profile_retry",
            replace_existing=True,
        )
        scheduler.start()
