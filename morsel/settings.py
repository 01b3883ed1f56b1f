"""Configuration for the MongoDB connection used by pieces.

Applications can build a new ``MongoSettings`` at startup and hand it to
``configure`` (or call ``morsel.connect``) before the first piece touches the
database. If nothing is configured, the environment-backed defaults apply.
"""
import os

from loguru import logger
from pydantic import BaseModel, Field


class MongoSettings(BaseModel):
    """Where pieces are stored unless a class binds its own database or collection."""

    uri: str = Field(
        default_factory=lambda: os.getenv("MONGO_URI", "mongodb://localhost:27017")
    )
    db_name: str = Field(default_factory=lambda: os.getenv("MONGO_DB_NAME", "morsel"))
    timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("MONGO_TIMEOUT_MS", "5000")), gt=0
    )


_settings: MongoSettings = MongoSettings()


def get_settings() -> MongoSettings:
    return _settings


def configure(new_settings: MongoSettings) -> MongoSettings:
    """Replace the active settings. Clients created earlier are not touched."""
    global _settings
    _settings = new_settings
    logger.info(f"MongoSettings configured with uri={new_settings.uri} db_name={new_settings.db_name}")
    return _settings
