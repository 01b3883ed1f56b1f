"""MongoDB client helpers and the per-class collection binding used by pieces."""
from functools import lru_cache
from typing import Any, Dict, Optional

from loguru import logger
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from .settings import configure, get_settings


@lru_cache
def get_client() -> MongoClient:
    """Return a cached client configured via ``morsel.settings``."""
    current = get_settings()
    logger.info(f"Creating MongoClient for {current.uri}")
    return MongoClient(current.uri, serverSelectionTimeoutMS=current.timeout_ms)


def get_db(name: Optional[str] = None) -> Database:
    """Return the named database, or the one from ``settings.db_name``."""
    return get_client()[name or get_settings().db_name]


def ping() -> Dict[str, Any]:
    get_db().command("ping")
    return {"ok": True}


def connect(uri: Optional[str] = None, db_name: Optional[str] = None, timeout_ms: Optional[int] = None) -> MongoClient:
    """Point every unbound piece class at a new server and/or database."""
    updates = {
        name: value
        for name, value in (("uri", uri), ("db_name", db_name), ("timeout_ms", timeout_ms))
        if value is not None
    }
    configure(get_settings().model_copy(update=updates))
    reset_client()
    return get_client()


def reset_client():
    """Close and forget the cached client."""
    if get_client.cache_info().currsize:
        get_client().close()
    get_client.cache_clear()


def reset():
    """Drop the cached client and every class binding made with use_collection/use_db."""
    reset_client()
    pending = list(CollectionBinding.__subclasses__())
    while pending:
        cls = pending.pop()
        cls.unbind()
        pending.extend(cls.__subclasses__())


class CollectionBinding:
    """
    Resolves the collection a class persists to.

    Bindings made with ``use_collection``/``use_db`` belong to the class they
    were made on and are not inherited. ``__collection__`` names the
    collection (default: the class name) and ``__database__`` overrides the
    configured database name for the class and its subclasses.
    """
    __collection__: Optional[str] = None
    __database__: Optional[str] = None

    @classmethod
    def collection_name(cls) -> str:
        return cls.__dict__.get("__collection__") or cls.__name__

    @classmethod
    def use_collection(cls, collection: Any):
        """Bind the class to a specific collection object (pymongo or in-memory)."""
        cls._bound_collection = collection
        return collection

    @classmethod
    def use_db(cls, db: Database):
        cls._bound_db = db
        return db

    @classmethod
    def unbind(cls):
        for attr in ("_bound_collection", "_bound_db"):
            if attr in cls.__dict__:
                delattr(cls, attr)

    @classmethod
    def db(cls) -> Database:
        bound = cls.__dict__.get("_bound_db")
        if bound is not None:
            return bound
        return get_db(cls.__database__)

    @classmethod
    def collection(cls) -> Collection:
        bound = cls.__dict__.get("_bound_collection")
        if bound is not None:
            return bound
        return cls.db()[cls.collection_name()]
