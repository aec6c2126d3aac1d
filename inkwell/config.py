import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def _instance_path() -> Path:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return instance_path


def _default_sqlite_uri() -> str:
    return f"sqlite:///{_instance_path() / 'inkwell.db'}"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_TIME_LIMIT = None
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    PROMPT_CONFIG_PATH = os.environ.get("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))

    # Chat-completions endpoint used for story generation.
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_API_BASE_URL = os.environ.get("OPENAI_API_BASE_URL", "https://api.openai.com/v1")
    AI_MODEL = os.environ.get("AI_MODEL", "gpt-4o-mini")
    AI_MAX_RETRIES = _env_int("AI_MAX_RETRIES", 3)
    AI_RETRY_DELAY_MS = _env_int("AI_RETRY_DELAY_MS", 1500)
    AI_TIMEOUT_MS = _env_int("AI_TIMEOUT_MS", 30000)

    DRAFT_STORE_BACKEND = os.environ.get("DRAFT_STORE_BACKEND", "file")
    DRAFT_STORE_PATH = os.environ.get("DRAFT_STORE_PATH", str(_instance_path() / "drafts.json"))
    DRAFT_STORE_QUOTA_BYTES = _env_int("DRAFT_STORE_QUOTA_BYTES", 5 * 1024 * 1024)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    OPENAI_API_KEY = None
    AI_RETRY_DELAY_MS = 0
    DRAFT_STORE_BACKEND = "memory"
