import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
PACKAGE_DIR = Path(__file__).resolve().parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'stories.db'}"


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    PROMPT_CONFIG_PATH = os.environ.get("PROMPT_CONFIG_PATH", str(PACKAGE_DIR / "prompt_config.json"))

    ARK_API_KEY = os.environ.get("ARK_API_KEY", "")
    ARK_BASE_URL = os.environ.get("ARK_BASE_URL", "https://ark.cn-beijing.volces.com/api/v3")
    STORY_TEXT_MODEL = os.environ.get("STORY_TEXT_MODEL", "doubao-seed-1-6-flash-250828")
    STORY_IMAGE_MODEL = os.environ.get("STORY_IMAGE_MODEL", "doubao-seedream-4-0-250828")
    STORY_IMAGE_SIZE = os.environ.get("STORY_IMAGE_SIZE", "1920x1080")
    STORY_DEFAULT_STYLE = os.environ.get("STORY_DEFAULT_STYLE", "realistic style")
    STORY_SAVE_RETRIES = int(os.environ.get("STORY_SAVE_RETRIES", "3"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    ARK_API_KEY = ""
