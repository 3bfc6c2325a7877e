# config.py
import os
BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env(*names, default=None):
    # first non-empty value wins
    for name in names:
        value = os.environ.get(name)
        if value not in (None, ""):
            return value
    return default


def _flag(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def engine_options_for(uri, timeout_seconds):
    """Engine options that keep reads from the record source bounded."""
    options = {"pool_pre_ping": True}
    if uri and uri.startswith(("postgresql", "postgres")):
        options["connect_args"] = {
            "connect_timeout": int(timeout_seconds),
            "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
        }
    return options


class Config:
    # --- Record source (system of record) ---
    SQLALCHEMY_DATABASE_URI = _env("DATABASE_URL", default=f"sqlite:///{os.path.join(BASE_DIR, 'progress.db')}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SOURCE_TIMEOUT_SECONDS = float(_env("SOURCE_TIMEOUT_SECONDS", default="10"))
    SQLALCHEMY_ENGINE_OPTIONS = engine_options_for(SQLALCHEMY_DATABASE_URI, SOURCE_TIMEOUT_SECONDS)

    # --- Averages store (MongoDB) ---
    MONGO_URI = _env("MONGO_URI", "MONGODB_URI")
    MONGO_DB_NAME = _env("MONGO_DB_NAME", "MONGODB_DB_NAME")
    AVERAGES_COLLECTION = _env("AVERAGES_COLLECTION", default="class_averages")
    MONGO_TIMEOUT_MS = int(_env("MONGO_TIMEOUT_MS", default="5000"))

    # One ordered bulk_write instead of an update_one per classroom
    AVERAGES_BATCH_WRITE = _flag("AVERAGES_BATCH_WRITE")

    # None -> pymongo.MongoClient
    AVERAGES_CLIENT_FACTORY = None


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    MONGO_URI = "mongodb://localhost:27017"
    MONGO_DB_NAME = "school_progress_test"
    MONGO_TIMEOUT_MS = 500
    AVERAGES_BATCH_WRITE = False
