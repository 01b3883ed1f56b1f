import datetime
import os
import unittest
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from bson import ObjectId
from bson.decimal128 import Decimal128
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from morsel.errors import PieceNotFoundError
from morsel.memory import InMemoryCollection
from morsel.piece import Piece

MONGO_TEST_URI = os.getenv("MORSEL_TEST_MONGO_URI", "mongodb://localhost:27017/")


def _mongo_available() -> bool:
    try:
        client = MongoClient(MONGO_TEST_URI, serverSelectionTimeoutMS=500)
        try:
            client.admin.command("ping")
        finally:
            client.close()
        return True
    except PyMongoError:
        return False


class Person(Piece):
    __collection__ = "people"


class Book(Piece):
    pass


@dataclass
class Address:
    street: str
    city: str


class PieceTestMixin:
    """Shared Piece behaviour, run against each collection backend."""

    def make_collection(self, name: str) -> Any:
        raise NotImplementedError

    def setUp(self):
        self.people = Person.use_collection(self.make_collection("people"))
        self.books = Book.use_collection(self.make_collection("books"))

    def tearDown(self):
        Person.unbind()
        Book.unbind()

    def test_create_inserts_fields(self):
        bob = Person(name="Bob", age=42)
        self.assertIsInstance(bob.id, ObjectId)
        raw = self.people.find_one({"_id": bob.id})
        self.assertEqual(raw["name"], "Bob")
        self.assertEqual(raw["age"], 42)

    def test_create_from_mapping_merges_keywords(self):
        ann = Person({"name": "Ann"}, age=7)
        self.assertEqual(ann.name, "Ann")
        self.assertEqual(ann.age, 7)

    def test_create_without_fields_inserts_empty_document(self):
        blank = Person()
        self.assertEqual(self.people.find_one({"_id": blank.id}), {"_id": blank.id})

    def test_attach_to_existing_id_does_not_insert(self):
        bob = Person(name="Bob")
        again = Person(bob.id)
        self.assertEqual(again, bob)
        self.assertEqual(self.people.count_documents({}), 1)
        self.assertEqual(again.name, "Bob")

    def test_rejects_other_arguments(self):
        with self.assertRaises(TypeError):
            Person("not an id")
        with self.assertRaises(TypeError):
            Person(ObjectId(), name="Bob")

    def test_assignment_writes_through(self):
        bob = Person(name="Bob")
        bob.age = 43
        bob.address = Address("Main St", "Springfield")
        self.assertEqual(self.people.find_one({"_id": bob.id})["age"], 43)
        self.assertEqual(bob.address, Address("Main St", "Springfield"))

    def test_missing_field_reads_none(self):
        bob = Person(name="Bob")
        self.assertIsNone(bob.nickname)
        self.assertEqual(bob.get("nickname", "bobby"), "bobby")

    def test_private_attributes_stay_local(self):
        bob = Person(name="Bob")
        bob._cache = "local"
        self.assertEqual(bob._cache, "local")
        self.assertNotIn("_cache", self.people.find_one({"_id": bob.id}))
        with self.assertRaises(AttributeError):
            bob._nothing

    def test_has(self):
        bob = Person(name="Bob", admin=False, tags=[], score=0, nickname="", spouse=None)
        self.assertTrue(bob.has("name"))
        self.assertFalse(bob.has("admin"))
        self.assertFalse(bob.has("spouse"))
        self.assertFalse(bob.has("missing"))
        # only None and False count as unset
        self.assertTrue(bob.has("tags"))
        self.assertTrue(bob.has("score"))
        self.assertTrue(bob.has("nickname"))

    def test_dotted_get(self):
        bob = Person(name="Bob", meta={"visits": {"count": 3}})
        self.assertEqual(bob.get("meta.visits.count"), 3)
        self.assertIsNone(bob.get("meta.visits.missing"))

    def test_set_forms(self):
        bob = Person()
        bob.set("name", "Bob")
        bob.set({"age": 42, "city": "Paris"})
        bob.set(age=43)
        doc = bob.to_dict()
        self.assertEqual(doc["name"], "Bob")
        self.assertEqual(doc["city"], "Paris")
        self.assertEqual(doc["age"], 43)
        self.assertIsNone(bob.set())

    def test_unset(self):
        bob = Person(name="Bob", age=42)
        bob.unset("age")
        self.assertNotIn("age", bob.to_dict())

    def test_inc(self):
        bob = Person(age=40)
        bob.inc("age")
        bob.inc("age", 2)
        bob.inc("visits")
        self.assertEqual(bob.age, 43)
        self.assertEqual(bob.visits, 1)

    def test_push_one_and_many(self):
        bob = Person(tags=["a"])
        bob.push("tags", "b")
        bob.push("tags", "c", "d")
        bob.push("scores", 1)
        self.assertEqual(bob.tags, ["a", "b", "c", "d"])
        self.assertEqual(bob.scores, [1])

    def test_update_with_operators_and_replacement(self):
        bob = Person(name="Bob", age=42)
        bob.update({"$set": {"age": 50}})
        self.assertEqual(bob.age, 50)
        self.assertEqual(bob.name, "Bob")

        bob.update({"name": "Robert"})
        self.assertEqual(bob.to_dict(), {"_id": bob.id, "name": "Robert"})

    def test_update_wraps_values(self):
        author = Person(name="Herbert")
        bob = Person(name="Bob")
        bob.update({"$set": {"born": datetime.date(2000, 1, 1), "mentor": author, "balance": Decimal("1.50")}})
        raw = self.people.find_one({"_id": bob.id})
        self.assertEqual(raw["born"], datetime.datetime(2000, 1, 1))
        self.assertIsInstance(raw["balance"], Decimal128)
        self.assertEqual(bob.mentor, author)
        self.assertEqual(bob.balance, Decimal("1.50"))

        bob.update({"name": "Robert", "home": Address("Main St", "Springfield")})
        raw = self.people.find_one({"_id": bob.id})
        self.assertEqual(raw["home"]["fields"], {"street": "Main St", "city": "Springfield"})
        self.assertEqual(bob.home, Address("Main St", "Springfield"))

    def test_inc_wraps_increment(self):
        bob = Person(balance=Decimal("1.25"))
        bob.inc("balance", Decimal("0.25"))
        self.assertEqual(bob.balance, Decimal("1.50"))

    def test_first_by_conditions_and_id(self):
        bob = Person(name="Bob", age=42)
        Person(name="Ann", age=42)
        self.assertEqual(Person.first({"name": "Bob"}), bob)
        self.assertEqual(Person.first(name="Bob", age=42), bob)
        self.assertEqual(Person.first(bob.id), bob)
        self.assertIsNone(Person.first({"name": "Zed"}))
        self.assertIsInstance(Person.first(bob.id), Person)

    def test_magic_finder(self):
        bob = Person(name="Bob", age=42)
        Person(name="Bob", age=7)
        self.assertIsNotNone(Person.find_by_name("Bob"))
        self.assertEqual(Person.find_by_name("Bob", {"age": 42}), bob)
        self.assertIsNone(Person.find_by_name("Zed"))

    def test_find_by_id_uses_document_id(self):
        bob = Person(name="Bob")
        self.assertEqual(Person.find_by_id(bob.id), bob)
        self.assertIsNone(Person.find_by_id(ObjectId()))

    def test_unknown_class_attribute(self):
        with self.assertRaises(AttributeError):
            Person.frobnicate
        with self.assertRaises(AttributeError):
            Person.find_by_

    def test_upsert_inserts_then_replaces(self):
        first = Book.upsert("isbn", {"isbn": "123", "title": "Dune"})
        self.assertEqual(Book.count(), 1)
        second = Book.upsert(["isbn"], {"isbn": "123", "title": "Dune Messiah"})
        self.assertEqual(Book.count(), 1)
        self.assertEqual(first, second)
        self.assertEqual(second.title, "Dune Messiah")

    def test_upsert_with_compound_key(self):
        Book.upsert(["author", "title"], {"author": "Herbert", "title": "Dune", "year": 1965})
        Book.upsert(["author", "title"], {"author": "Herbert", "title": "Dune", "year": 1966})
        Book.upsert(["author", "title"], {"author": "Herbert", "title": "Children of Dune"})
        self.assertEqual(Book.count(author="Herbert"), 2)
        self.assertEqual(Book.find_by_title("Dune").year, 1966)

    def test_where_and_count(self):
        Person(name="Bob", team="red")
        Person(name="Ann", team="red")
        Person(name="Zed", team="blue")
        reds = list(Person.where(team="red"))
        self.assertEqual(len(reds), 2)
        self.assertEqual({p.name for p in reds}, {"Bob", "Ann"})
        self.assertEqual(Person.count({"team": "blue"}), 1)
        self.assertEqual(Person.count(), 3)

    def test_delete(self):
        bob = Person(name="Bob")
        self.assertTrue(bob.exists())
        bob.delete()
        self.assertFalse(bob.exists())
        with self.assertRaises(PieceNotFoundError):
            bob.name

    def test_piece_references(self):
        author = Person(name="Herbert")
        dune = Book(title="Dune", author=author)
        self.assertEqual(dune.author, author)
        self.assertIsInstance(dune.author, Person)
        self.assertEqual(dune.author.name, "Herbert")
        self.assertEqual(Book.find_by_author(author), dune)

    def test_equality_and_hash(self):
        bob = Person(name="Bob")
        ann = Person(name="Ann")
        self.assertNotEqual(bob, ann)
        self.assertEqual({bob, Person(bob.id), ann}, {bob, ann})
        self.assertNotEqual(Person.attach(None), Person.attach(None))
        self.assertNotEqual(bob, bob.id)

    def test_collection_name(self):
        self.assertEqual(Person.collection_name(), "people")
        self.assertEqual(Book.collection_name(), "Book")


class TestPieceInMemory(PieceTestMixin, unittest.TestCase):
    def make_collection(self, name: str) -> Any:
        return InMemoryCollection(name)


@unittest.skipUnless(_mongo_available(), "MongoDB is not reachable")
class TestPieceMongo(PieceTestMixin, unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.client = MongoClient(MONGO_TEST_URI)
        cls.db = cls.client["morsel_test"]

    @classmethod
    def tearDownClass(cls):
        cls.client.drop_database("morsel_test")
        cls.client.close()

    def make_collection(self, name: str) -> Any:
        collection = self.db[name]
        collection.drop()
        return collection


if __name__ == "__main__":
    unittest.main()
