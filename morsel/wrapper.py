"""
Conversion between Python values and what can be stored in a document.

``wrap`` is applied to everything a piece writes and ``unwrap`` to everything
it reads. Pieces are stored as references, dataclasses and pydantic models as
object records that name their class so they can be rebuilt on the way out.
"""
import dataclasses
import datetime
import importlib
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping

from bson import ObjectId
from bson.binary import Binary
from bson.decimal128 import Decimal128
from bson.regex import Regex
from pydantic import BaseModel

from .errors import WrapError

PIECE_MARKER = "__piece__"
OBJECT_MARKER = "__object__"

_PASSTHROUGH = (str, int, float, bool, bytes, datetime.datetime, ObjectId, Binary, Decimal128, Regex, re.Pattern)


def class_path(cls: type) -> str:
    return f"{cls.__module__}:{cls.__qualname__}"


def load_class(path: str) -> type:
    module_name, _, qualname = path.partition(":")
    if not qualname:
        raise WrapError(f"Malformed class path {path!r}")
    try:
        obj: Any = importlib.import_module(module_name)
        for part in qualname.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise WrapError(f"Cannot import {path!r}: {e}") from e
    if not isinstance(obj, type):
        raise WrapError(f"{path!r} is not a class")
    return obj


def _wrap_key(key: Any) -> str:
    if isinstance(key, Enum):
        key = key.value
    if not isinstance(key, str):
        raise WrapError(f"Document keys must be strings, got {type(key).__name__}: {key!r}")
    return key


def wrap(value: Any) -> Any:
    """Convert a value into something the driver can store."""
    from .piece import Piece

    if value is None:
        return None
    if isinstance(value, Piece):
        return {PIECE_MARKER: class_path(type(value)), "_id": value.id}
    # Enum before the scalars: IntEnum and StrEnum are ints and strs too
    if isinstance(value, Enum):
        return wrap(value.value)
    if isinstance(value, _PASSTHROUGH):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time.min)
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Mapping):
        return {_wrap_key(k): wrap(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [wrap(v) for v in value]
    if isinstance(value, BaseModel):
        return {OBJECT_MARKER: class_path(type(value)), "fields": wrap(value.model_dump())}
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: wrap(getattr(value, f.name)) for f in dataclasses.fields(value)}
        return {OBJECT_MARKER: class_path(type(value)), "fields": fields}
    raise WrapError(f"Cannot store value of type {type(value).__name__}: {value!r}")


def _unwrap_object(path: str, fields: Dict[str, Any]) -> Any:
    cls = load_class(path)
    fields = unwrap(fields)
    if issubclass(cls, BaseModel):
        return cls.model_validate(fields)
    if not dataclasses.is_dataclass(cls):
        raise WrapError(f"{path!r} is neither a dataclass nor a pydantic model")

    init_names = {f.name for f in dataclasses.fields(cls) if f.init}
    obj = cls(**{k: v for k, v in fields.items() if k in init_names})
    for k, v in fields.items():
        if k not in init_names:
            # works for frozen dataclasses too
            object.__setattr__(obj, k, v)
    return obj


def unwrap(value: Any) -> Any:
    """Reverse ``wrap`` on a value read from a document."""
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, list):
        return [unwrap(v) for v in value]
    if isinstance(value, Mapping):
        if PIECE_MARKER in value and set(value) == {PIECE_MARKER, "_id"}:
            from .piece import Piece

            cls = load_class(value[PIECE_MARKER])
            if not issubclass(cls, Piece):
                raise WrapError(f"{value[PIECE_MARKER]!r} is not a Piece class")
            return cls.attach(value["_id"])
        if OBJECT_MARKER in value and set(value) == {OBJECT_MARKER, "fields"}:
            return _unwrap_object(value[OBJECT_MARKER], value["fields"])
        return {k: unwrap(v) for k, v in value.items()}
    return value
