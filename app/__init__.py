from flask import Flask

from app.api import api_bp
from app.auth import auth_bp
from app.config import Config
from app.extensions import db, login_manager, migrate
from app.jobs.scheduler import start_scheduler
from app.schema_migrations import enable_row_level_security
from app.services.feed import feed
from app.web import web_bp


def create_app(config_object=Config):
    app = Flask(__name__, template_folder="../templates", static_folder="../static")
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    feed.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(web_bp)
    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        enable_row_level_security()
        print("Initialized Smart Bookmarks database.")

    @app.cli.command("retry-profiles")
    def retry_profiles_command():
        from app.services.profiles import retry_missing_profiles

        created = retry_missing_profiles()
        print(f"Backfilled {created} user profiles.")

    @app.context_processor
    def inject_globals():
        return {"app_name": "Smart Bookmarks"}

    with app.app_context():
        db.create_all()
        enable_row_level_security()

    start_scheduler(app)
    return app
