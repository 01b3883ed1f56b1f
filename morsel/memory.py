import copy
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from bson import ObjectId
from bson.decimal128 import Decimal128
from loguru import logger
from pymongo.errors import DuplicateKeyError, OperationFailure

_MISSING = object()


@dataclass
class InsertOneResult:
    inserted_id: Any
    acknowledged: bool = True


@dataclass
class UpdateResult:
    matched_count: int
    modified_count: int
    upserted_id: Any = None
    acknowledged: bool = True


@dataclass
class DeleteResult:
    deleted_count: int
    acknowledged: bool = True


def _get_path(doc: Mapping[str, Any], path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def _set_path(doc: Dict[str, Any], path: str, value: Any):
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        nxt = current.get(part)
        if nxt is None:
            nxt = current[part] = {}
        elif not isinstance(nxt, dict):
            raise OperationFailure(f"Cannot create field {part!r} in element {{{part}: {nxt!r}}}")
        current = nxt
    current[parts[-1]] = value


def _unset_path(doc: Dict[str, Any], path: str):
    parts = path.split(".")
    current: Any = doc
    for part in parts[:-1]:
        current = current.get(part) if isinstance(current, dict) else None
        if current is None:
            return
    if isinstance(current, dict):
        current.pop(parts[-1], None)


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


def _compare(value: Any, op: str, arg: Any) -> bool:
    try:
        if op == "$gt":
            return value > arg
        if op == "$gte":
            return value >= arg
        if op == "$lt":
            return value < arg
        return value <= arg
    except TypeError:
        # mismatched types never match, as in MongoDB
        return False


def _match_value(value: Any, cond: Any) -> bool:
    if isinstance(cond, Mapping) and cond and all(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$exists":
                if (value is not _MISSING) != bool(arg):
                    return False
            elif op == "$eq":
                if not _match_value(value, arg):
                    return False
            elif op == "$ne":
                if _match_value(value, arg):
                    return False
            elif op == "$in":
                if not any(_match_value(value, a) for a in arg):
                    return False
            elif op == "$nin":
                if any(_match_value(value, a) for a in arg):
                    return False
            elif op in ("$gt", "$gte", "$lt", "$lte"):
                if value is _MISSING or not _compare(value, op, arg):
                    return False
            else:
                raise OperationFailure(f"unknown operator: {op}")
        return True

    if value is _MISSING:
        return cond is None
    if value == cond:
        return True
    # array fields match any of their elements
    return isinstance(value, list) and not isinstance(cond, list) and cond in value


def matches(doc: Mapping[str, Any], query: Optional[Mapping[str, Any]]) -> bool:
    for key, cond in (query or {}).items():
        if key == "$and":
            if not all(matches(doc, q) for q in cond):
                return False
        elif key == "$or":
            if not any(matches(doc, q) for q in cond):
                return False
        elif key.startswith("$"):
            raise OperationFailure(f"unknown top level operator: {key}")
        elif not _match_value(_get_path(doc, key), cond):
            return False
    return True


def project(doc: Dict[str, Any], projection: Union[None, List[str], Mapping[str, Any]]) -> Dict[str, Any]:
    if projection is None:
        return copy.deepcopy(doc)
    if not isinstance(projection, Mapping):
        projection = {name: 1 for name in projection}

    include_id = bool(projection.get("_id", 1))
    fields = {k: v for k, v in projection.items() if k != "_id"}
    if fields and all(not v for v in fields.values()):
        result = copy.deepcopy(doc)
        for name in fields:
            _unset_path(result, name)
    else:
        result = {}
        for name in fields:
            value = _get_path(doc, name)
            if value is not _MISSING:
                _set_path(result, name, copy.deepcopy(value))
    if include_id and "_id" in doc:
        result = {"_id": doc["_id"], **result}
    else:
        result.pop("_id", None)
    return result


def _apply_update(doc: Dict[str, Any], update: Mapping[str, Any]):
    for op, changes in update.items():
        for path, arg in changes.items():
            if path == "_id" or path.startswith("_id."):
                raise OperationFailure("Performing an update on the path '_id' would modify the immutable field '_id'")
            if op == "$set":
                _set_path(doc, path, copy.deepcopy(arg))
            elif op == "$unset":
                _unset_path(doc, path)
            elif op == "$inc":
                current = _get_path(doc, path)
                if current is _MISSING:
                    current = 0
                if not isinstance(current, (int, float, Decimal128)) or isinstance(current, bool):
                    raise OperationFailure(f"Cannot apply $inc to a value of non-numeric type at {path!r}")
                if isinstance(current, Decimal128) or isinstance(arg, Decimal128):
                    _set_path(doc, path, Decimal128(_as_decimal(current) + _as_decimal(arg)))
                else:
                    _set_path(doc, path, current + arg)
            elif op == "$push":
                current = _get_path(doc, path)
                if current is _MISSING:
                    current = []
                    _set_path(doc, path, current)
                elif not isinstance(current, list):
                    raise OperationFailure(f"The field {path!r} must be an array")
                if isinstance(arg, Mapping) and "$each" in arg:
                    current.extend(copy.deepcopy(arg["$each"]))
                else:
                    current.append(copy.deepcopy(arg))
            else:
                raise OperationFailure(f"Unknown modifier: {op}")


def _check_update(update: Mapping[str, Any]):
    if not update or not all(k.startswith("$") for k in update):
        raise ValueError("update only works with $ operators")


def _check_replacement(replacement: Mapping[str, Any]):
    if any(k.startswith("$") for k in replacement):
        raise ValueError("replacement can not include $ operators")


class InMemoryCollection:
    """
    A process-local stand-in for a pymongo ``Collection``.

    Implements just the calls pieces make, with MongoDB's matching rules for
    equality, dotted paths, arrays and a handful of query operators.
    """

    def __init__(self, name: str = "memory"):
        self.name = name
        # Storage: _id -> document, in insertion order
        self._docs: Dict[Any, Dict[str, Any]] = {}

    def _matching(self, query: Optional[Mapping[str, Any]]) -> Iterator[Dict[str, Any]]:
        for doc in list(self._docs.values()):
            if matches(doc, query):
                yield doc

    def insert_one(self, document: Dict[str, Any]) -> InsertOneResult:
        if "_id" not in document:
            # the driver sets the id on the caller's document too
            document["_id"] = ObjectId()
        if document["_id"] in self._docs:
            raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} dup key: {{ _id: {document['_id']!r} }}", 11000)
        self._docs[document["_id"]] = copy.deepcopy(document)
        logger.debug(f"[{self.name}] inserted {document['_id']}")
        return InsertOneResult(document["_id"])

    def find(self, filter: Optional[Mapping[str, Any]] = None, projection=None) -> Iterator[Dict[str, Any]]:
        for doc in self._matching(filter):
            yield project(doc, projection)

    def find_one(self, filter: Any = None, projection=None) -> Optional[Dict[str, Any]]:
        if filter is not None and not isinstance(filter, Mapping):
            filter = {"_id": filter}
        return next(self.find(filter, projection), None)

    def count_documents(self, filter: Mapping[str, Any], limit: int = 0) -> int:
        count = 0
        for _ in self._matching(filter):
            count += 1
            if limit and count >= limit:
                break
        return count

    def _upsert_seed(self, filter: Mapping[str, Any]) -> Dict[str, Any]:
        seed: Dict[str, Any] = {}
        for key, cond in filter.items():
            if key.startswith("$"):
                continue
            if isinstance(cond, Mapping) and any(k.startswith("$") for k in cond):
                continue
            _set_path(seed, key, copy.deepcopy(cond))
        return seed

    def update_one(self, filter: Mapping[str, Any], update: Mapping[str, Any], upsert: bool = False) -> UpdateResult:
        _check_update(update)
        doc = next(self._matching(filter), None)
        if doc is not None:
            # all operators apply or none do
            updated = copy.deepcopy(doc)
            _apply_update(updated, update)
            self._docs[doc["_id"]] = updated
            return UpdateResult(1, int(updated != doc))
        if not upsert:
            return UpdateResult(0, 0)

        new_doc = self._upsert_seed(filter)
        _apply_update(new_doc, update)
        return UpdateResult(0, 0, self.insert_one(new_doc).inserted_id)

    def replace_one(self, filter: Mapping[str, Any], replacement: Mapping[str, Any], upsert: bool = False) -> UpdateResult:
        _check_replacement(replacement)
        doc = next(self._matching(filter), None)
        if doc is not None:
            if "_id" in replacement and replacement["_id"] != doc["_id"]:
                raise OperationFailure("The _id field cannot be changed")
            before = copy.deepcopy(doc)
            doc.clear()
            doc["_id"] = before["_id"]
            doc.update(copy.deepcopy(dict(replacement)))
            return UpdateResult(1, int(doc != before))
        if not upsert:
            return UpdateResult(0, 0)

        new_doc = copy.deepcopy(dict(replacement))
        filter_id = filter.get("_id", _MISSING)
        if "_id" not in new_doc and filter_id is not _MISSING and not isinstance(filter_id, Mapping):
            new_doc["_id"] = filter_id
        return UpdateResult(0, 0, self.insert_one(new_doc).inserted_id)

    def delete_one(self, filter: Mapping[str, Any]) -> DeleteResult:
        doc = next(self._matching(filter), None)
        if doc is None:
            return DeleteResult(0)
        del self._docs[doc["_id"]]
        logger.debug(f"[{self.name}] deleted {doc['_id']}")
        return DeleteResult(1)

    def drop(self):
        self._docs.clear()
