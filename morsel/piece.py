"""
Pieces: objects that live in a MongoDB collection.

A piece pushes itself into its collection when it is created and keeps only
the document id. Reading an unknown attribute fetches that field from the
document, assigning one writes it with ``$set``::

    class Person(Piece):
        __collection__ = "people"

    bob = Person(name="Bob")
    bob.age = 42
    bob.inc("age")
    Person.find_by_name("Bob") == bob   # True
"""
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

from bson import ObjectId
from loguru import logger

from .collection import CollectionBinding
from .errors import PieceNotFoundError
from .wrapper import unwrap, wrap

FINDER_PREFIX = "find_by_"


class PieceMeta(type):
    """
    Adds ``Cls.find_by_<field>(value, conditions=None)`` finders to piece classes.
    ``find_by_id`` searches the document id, like ``piece.id``.
    """

    def __getattr__(cls, name: str):
        if name.startswith(FINDER_PREFIX) and len(name) > len(FINDER_PREFIX):
            field = name[len(FINDER_PREFIX):]
            if field == "id":
                field = "_id"

            def finder(value: Any, conditions: Optional[Mapping[str, Any]] = None):
                search = {field: value}
                if conditions:
                    search.update(conditions)
                return cls.first(search)

            finder.__name__ = name
            finder.__qualname__ = f"{cls.__qualname__}.{name}"
            return finder
        raise AttributeError(f"type object {cls.__name__!r} has no attribute {name!r}")


def _query(conditions: Any, extra: Dict[str, Any]) -> Dict[str, Any]:
    if conditions is None:
        conditions = {}
    elif isinstance(conditions, Piece):
        conditions = {"_id": conditions.id}
    elif not isinstance(conditions, Mapping):
        conditions = {"_id": conditions}
    return wrap({**conditions, **extra})


class Piece(CollectionBinding, metaclass=PieceMeta):
    """
    Base class for auto-persisted objects.

    ``Piece(object_id)`` attaches to an existing document. ``Piece(mapping)``
    or ``Piece(**fields)`` inserts a new document holding those fields, and
    ``Piece()`` inserts an empty one so the object always has an id.
    """

    def __init__(self, id_or_fields: Union[ObjectId, Mapping[str, Any], None] = None, **fields: Any):
        if isinstance(id_or_fields, ObjectId):
            if fields:
                raise TypeError("Fields cannot be given when attaching to an existing document")
            self._id = id_or_fields
            return

        if id_or_fields is None:
            document: Dict[str, Any] = {}
        elif isinstance(id_or_fields, Mapping):
            document = dict(id_or_fields)
        else:
            raise TypeError(
                f"{type(self).__name__}() takes an ObjectId or a mapping of fields, "
                f"not {type(id_or_fields).__name__}"
            )
        document.update(fields)

        collection = self.collection()
        result = collection.insert_one(wrap(document))
        self._id = result.inserted_id
        logger.debug(f"[{collection.name}] created {type(self).__name__} {self._id}")

    @classmethod
    def attach(cls, doc_id: Any) -> "Piece":
        """Wrap an existing document id of any type without touching the database."""
        piece = cls.__new__(cls)
        object.__setattr__(piece, "_id", doc_id)
        return piece

    @property
    def id(self):
        return self._id

    def __eq__(self, other):
        if not isinstance(other, Piece):
            return NotImplemented
        # Pieces without an id are never equal
        return self._id is not None and self._id == other._id

    def __hash__(self):
        return hash(self._id)

    def __repr__(self):
        return f"<{type(self).__name__} {self._id}>"

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")
        return self.get(name)

    def __setattr__(self, name: str, value: Any):
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        else:
            self.set(name, value)

    def _find_own(self, projection: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        collection = self.collection()
        doc = collection.find_one({"_id": self._id}, projection)
        if doc is None:
            raise PieceNotFoundError(collection.name, self._id)
        return doc

    def get(self, name: str, default: Any = None) -> Any:
        """
        Read a single field, which may be a dotted path into embedded documents.
        Useful for fields whose names clash with piece methods, e.g. ``count``.
        """
        value: Any = self._find_own({name: 1})
        for part in name.split("."):
            if isinstance(value, Mapping) and part in value:
                value = value[part]
            else:
                return default
        return unwrap(value)

    def has(self, name: str) -> bool:
        """True unless the field is missing, None or False. 0, "" and [] count as set."""
        value = self.get(name)
        return value is not None and value is not False

    def to_dict(self) -> Dict[str, Any]:
        return unwrap(self._find_own())

    def exists(self) -> bool:
        return self.collection().count_documents({"_id": self._id}, limit=1) > 0

    def update(self, element: Mapping[str, Any]):
        """
        Send an update document for this record. Operator documents
        (``{"$set": ...}``) modify it, anything else replaces it.
        """
        collection = self.collection()
        element = wrap(element)
        logger.debug(f"[{collection.name}] update {self._id}: {element}")
        if element and all(key.startswith("$") for key in element):
            return collection.update_one({"_id": self._id}, element)
        return collection.replace_one({"_id": self._id}, element)

    def set(self, *args: Any, **fields: Any):
        """
        ``set(name, value)``, ``set({name: value, ...})`` or ``set(name=value)``;
        stores the values with an atomic ``$set``.
        """
        if len(args) == 2:
            values = {args[0]: args[1]}
        elif len(args) == 1:
            values = dict(args[0])
        elif not args:
            values = {}
        else:
            raise TypeError(f"set() takes a name and value or a mapping, got {len(args)} arguments")
        values.update(fields)
        if not values:
            return None
        return self.update({"$set": wrap(values)})

    def unset(self, *names: str):
        if not names:
            return None
        return self.update({"$unset": {name: "" for name in names}})

    def inc(self, name: str, increment: Union[int, float] = 1):
        """Atomically add to a numeric field. The database rejects non-numeric ones."""
        return self.update({"$inc": {name: increment}})

    def push(self, name: str, *values: Any):
        """Append one or more values to an array field with ``$push``."""
        if not values:
            return None
        if len(values) == 1:
            return self.update({"$push": {name: wrap(values[0])}})
        return self.update({"$push": {name: {"$each": wrap(list(values))}}})

    def delete(self):
        collection = self.collection()
        logger.debug(f"[{collection.name}] delete {self._id}")
        return collection.delete_one({"_id": self._id})

    @classmethod
    def first(cls, conditions: Any = None, **kwargs: Any) -> Optional["Piece"]:
        """
        Retrieve a single piece matching the conditions, or None.
        A non-mapping argument is taken as the document id.
        """
        record = cls.collection().find_one(_query(conditions, kwargs), {"_id": 1})
        if record is not None:
            return cls.attach(record["_id"])
        return None

    @classmethod
    def where(cls, conditions: Any = None, **kwargs: Any) -> Iterator["Piece"]:
        for record in cls.collection().find(_query(conditions, kwargs), {"_id": 1}):
            yield cls.attach(record["_id"])

    @classmethod
    def count(cls, conditions: Any = None, **kwargs: Any) -> int:
        return cls.collection().count_documents(_query(conditions, kwargs))

    @classmethod
    def upsert(cls, key_or_keys: Union[str, Sequence[str]], fields: Mapping[str, Any]) -> "Piece":
        """
        Replace the document whose key field(s) match the values in ``fields``,
        inserting it if there is none. Returns the piece for that document.
        """
        keys: List[str] = [key_or_keys] if isinstance(key_or_keys, str) else list(key_or_keys)
        document = wrap(fields)
        search = {key: document.get(key) for key in keys}

        collection = cls.collection()
        result = collection.replace_one(search, document, upsert=True)
        logger.debug(f"[{collection.name}] upsert on {search}: matched={result.matched_count} upserted={result.upserted_id}")
        if result.upserted_id is not None:
            return cls.attach(result.upserted_id)
        return cls.first(search)
