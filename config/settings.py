# config/settings.py
import os
from dotenv import load_dotenv

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
load_dotenv(os.path.join(BASE_DIR, ".env"))  # load environment overrides


def _as_bool(val, default=False):
    if val is None:
        return default
    return str(val).lower() in ("1", "true", "yes", "on")


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # create missing tables on startup (embedded station database)
    AUTO_CREATE_TABLES = _as_bool(os.getenv("AUTO_CREATE_TABLES"), True)

    # logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = os.getenv("LOG_DIR", "./logs")
    LOG_JSON = os.getenv("LOG_JSON", "1") == "1"  # JSON lines or plain text
    LOG_TO_FILE = _as_bool(os.getenv("LOG_TO_FILE"), True)
    LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", 5 * 1024 * 1024))
    LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", 5))
    APP_NAME = os.getenv("APP_NAME", "block-tracker")

    # ========= synchronization =========
    # base url of the peer exposing POST /api/sync; empty means "no remote"
    SYNC_REMOTE_URL = os.getenv("SYNC_REMOTE_URL", "")
    SYNC_INTERVAL_SECONDS = float(os.getenv("SYNC_INTERVAL_SECONDS", 30))
    SYNC_TIMEOUT_SECONDS = float(os.getenv("SYNC_TIMEOUT_SECONDS", 10))
    SYNC_MAX_BACKOFF_SECONDS = float(os.getenv("SYNC_MAX_BACKOFF_SECONDS", 300))
    # start the periodic timer together with the app
    SYNC_AUTO_START = _as_bool(os.getenv("SYNC_AUTO_START"), False)
    # ===================================


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DEV_DATABASE_URI", "sqlite:///" + os.path.join(BASE_DIR, "station.db")
    )


class ProductionConfig(BaseConfig):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URI")


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URI", "sqlite:///:memory:")
    AUTO_CREATE_TABLES = False
    LOG_TO_FILE = False
    LOG_JSON = False
    SYNC_AUTO_START = False


config_map = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config(config_name):
    return config_map.get(config_name, DevelopmentConfig)
