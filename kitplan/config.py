import os
from dotenv import load_dotenv

from kitplan.db_config import current_environment

load_dotenv()


class Config:
    """Settings shared by every environment; values come from the environment / .env."""
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # JSON log file; stdout only when unset
    LOG_FILE = os.environ.get("LOG_FILE")
    LOG_JSON_CONSOLE = os.environ.get("LOG_JSON_CONSOLE", "").lower() in ("1", "true", "yes")

    # Guards POST /api/stations/reset
    ADMIN_PIN = os.environ.get("ADMIN_PIN", "1234")


class LocalConfig(Config):
    ENV = "local"
    DEBUG = True


class SandboxConfig(Config):
    ENV = "sandbox"
    DEBUG = False


class ProductionConfig(Config):
    ENV = "production"
    DEBUG = False
    LOG_JSON_CONSOLE = os.environ.get("LOG_JSON_CONSOLE", "true").lower() in ("1", "true", "yes")


CONFIGS = {
    "local": LocalConfig,
    "sandbox": SandboxConfig,
    "production": ProductionConfig,
}


def get_config():
    """Config class for FLASK_ENV / ENVIRONMENT (local, sandbox or production; local when unknown)."""
    return CONFIGS[current_environment()]
