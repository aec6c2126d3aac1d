from __future__ import annotations

from pathlib import Path

from flask import Flask, jsonify, redirect, request, url_for

from .config import Config
from .extensions import csrf, db, login_manager, migrate
from .db_utils import ensure_database_schema
from .services.draft_store import (
    DEFAULT_QUOTA_BYTES,
    JsonFileStorage,
    LocalDraftStore,
    MemoryStorage,
)


BASE_DIR = Path(__file__).resolve().parent.parent


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(
        __name__,
        instance_relative_config=True,
        static_folder=str(BASE_DIR / "static"),
        static_url_path="/static",
    )
    app.config.from_object(config_class)
    app.config.setdefault("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    register_extensions(app)
    register_blueprints(app)
    register_commands(app)

    with app.app_context():
        ensure_database_schema()

    return app


def register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.login_view = "auth.login"
    login_manager.login_message_category = "info"
    login_manager.unauthorized_handler(_unauthorized)
    csrf.init_app(app)
    app.extensions["draft_store"] = _build_draft_store(app)


def register_blueprints(app: Flask) -> None:
    from .auth import bp as auth_bp
    from .drafts import bp as drafts_bp
    from .generation import bp as generation_bp
    from .main import bp as main_bp
    from .stories import bp as stories_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)
    app.register_blueprint(stories_bp)
    app.register_blueprint(generation_bp)
    app.register_blueprint(drafts_bp)


def register_commands(app: Flask) -> None:
    from .cli import export_story_command

    app.cli.add_command(export_story_command)


def _build_draft_store(app: Flask) -> LocalDraftStore:
    quota = app.config.get("DRAFT_STORE_QUOTA_BYTES")
    if app.config.get("DRAFT_STORE_BACKEND") == "memory":
        storage = MemoryStorage(quota_bytes=quota)
    else:
        storage = JsonFileStorage(app.config["DRAFT_STORE_PATH"], quota_bytes=quota)
    return LocalDraftStore(storage, total_budget_bytes=quota or DEFAULT_QUOTA_BYTES)


def _unauthorized():
    if request.path.startswith("/api/"):
        return (
            jsonify({"error": "Unauthorized", "message": "Please sign in to continue."}),
            401,
        )
    return redirect(url_for(login_manager.login_view, next=request.path))


__all__ = ["create_app", "db"]
