"""morsel: auto-persisted objects over MongoDB.

Example usage:

    from morsel import Piece

    class Person(Piece):
        __collection__ = "people"

    bob = Person(name="Bob")
    bob.age = 42
    assert Person.find_by_name("Bob").age == 42
"""

from .collection import CollectionBinding, connect, get_client, get_db, ping, reset, reset_client
from .errors import MorselError, PieceNotFoundError, WrapError
from .memory import InMemoryCollection
from .piece import Piece
from .settings import MongoSettings, configure, get_settings
from .wrapper import unwrap, wrap

__all__ = [
    "CollectionBinding",
    "InMemoryCollection",
    "MongoSettings",
    "MorselError",
    "Piece",
    "PieceNotFoundError",
    "WrapError",
    "configure",
    "connect",
    "get_client",
    "get_db",
    "get_settings",
    "ping",
    "reset",
    "reset_client",
    "unwrap",
    "wrap",
]
