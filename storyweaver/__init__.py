from __future__ import annotations

import os
from pathlib import Path

from flask import Flask
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Config reads the environment at import time, so .env must be loaded first.
load_dotenv(BASE_DIR / ".env")

from .config import Config  # noqa: E402
from .extensions import db  # noqa: E402
from .db_utils import ensure_database_schema  # noqa: E402


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    if "TEXT_GENERATOR_MODEL_PATH" not in app.config:
        env_model_path = os.environ.get("TEXT_GENERATOR_MODEL_PATH")
        if env_model_path:
            app.config["TEXT_GENERATOR_MODEL_PATH"] = env_model_path

    register_extensions(app)
    register_blueprints(app)

    with app.app_context():
        ensure_database_schema()

    return app


def register_extensions(app: Flask) -> None:
    db.init_app(app)


def register_blueprints(app: Flask) -> None:
    from .story import bp as story_bp

    app.register_blueprint(story_bp)


__all__ = ["create_app", "db"]
