"""
Unit Tests - MongoDB expense store adapter
"""
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from models.expense import ExpenseCategory
from services.store import ExpenseStore


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self.sort_spec = None

    def sort(self, field, direction):
        self.sort_spec = (field, direction)
        return self

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Records the calls made by the adapter and replays canned documents."""

    name = "expenses"

    def __init__(self, docs=None, error=None):
        self.docs = docs or []
        self.error = error
        self.calls = []
        self.cursor = None

    def _check(self):
        if self.error:
            raise self.error

    def find(self, query):
        self.calls.append(("find", query))
        self._check()
        self.cursor = FakeCursor(self.docs)
        return self.cursor

    async def find_one(self, query):
        self.calls.append(("find_one", query))
        self._check()
        return self.docs[0] if self.docs else None

    async def insert_one(self, doc):
        self.calls.append(("insert_one", doc))
        self._check()
        return SimpleNamespace(inserted_id=ObjectId("65f000000000000000000001"))

    async def update_one(self, query, update):
        self.calls.append(("update_one", query, update))
        self._check()
        return SimpleNamespace(matched_count=len(self.docs))

    async def delete_one(self, query):
        self.calls.append(("delete_one", query))
        self._check()
        return SimpleNamespace(deleted_count=len(self.docs))


def stored_doc(**overrides):
    doc = {
        "_id": ObjectId("65f000000000000000000001"),
        "userId": "default_user",
        "amount": 50.0,
        "category": "Food",
        "date": "2024-03-15",
        "description": "",
        "createdAt": datetime(2024, 3, 15, 10, 0, 0),
        "updatedAt": datetime(2024, 3, 15, 10, 0, 0),
    }
    doc.update(overrides)
    return doc


class TestExpenseStore:

    @pytest.mark.asyncio
    async def test_insert_serializes_and_scopes_record(self):
        collection = FakeCollection()
        store = ExpenseStore(collection, "default_user")
        now = datetime(2024, 3, 15, tzinfo=timezone.utc)

        new_id = await store.insert({
            "amount": 50,
            "category": ExpenseCategory.FOOD,
            "date": date(2024, 3, 15),
            "description": "",
            "createdAt": now,
            "updatedAt": now,
        })

        assert new_id == "65f000000000000000000001"
        _, doc = collection.calls[0]
        assert doc["userId"] == "default_user"
        assert doc["category"] == "Food"
        assert doc["date"] == "2024-03-15"

    @pytest.mark.asyncio
    async def test_get_by_id_converts_document(self):
        store = ExpenseStore(FakeCollection([stored_doc()]), "default_user")

        expense = await store.get_by_id("65f000000000000000000001")

        assert expense.id == "65f000000000000000000001"
        assert expense.date == date(2024, 3, 15)
        assert expense.category == ExpenseCategory.FOOD
        assert expense.created_at.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_malformed_id_is_absent_without_query(self):
        collection = FakeCollection([stored_doc()])
        store = ExpenseStore(collection, "default_user")

        assert await store.get_by_id("not-an-object-id") is None
        assert await store.update("not-an-object-id", {"amount": 1}) is False
        assert await store.delete("not-an-object-id") is False
        assert collection.calls == []

    @pytest.mark.asyncio
    async def test_update_and_delete_report_not_found(self):
        store = ExpenseStore(FakeCollection([]), "default_user")

        assert await store.update("65f000000000000000000001", {"amount": 1}) is False
        assert await store.delete("65f000000000000000000001") is False

    @pytest.mark.asyncio
    async def test_date_range_query_is_half_open_and_sorted(self):
        collection = FakeCollection([stored_doc()])
        store = ExpenseStore(collection, "default_user")

        expenses = await store.query_by_date_range(date(2024, 3, 1), date(2024, 4, 1))

        assert len(expenses) == 1
        assert collection.calls[0] == (
            "find",
            {"userId": "default_user", "date": {"$gte": "2024-03-01", "$lt": "2024-04-01"}},
        )
        assert collection.cursor.sort_spec == ("date", -1)

    @pytest.mark.asyncio
    async def test_category_query(self):
        collection = FakeCollection([stored_doc()])
        store = ExpenseStore(collection, "default_user")

        await store.query_by_category("Food")

        assert collection.calls[0] == ("find", {"userId": "default_user", "category": "Food"})

    @pytest.mark.asyncio
    async def test_invalid_documents_are_skipped(self):
        collection = FakeCollection([stored_doc(), stored_doc(amount=-5)])
        store = ExpenseStore(collection, "default_user")

        assert len(await store.query_all()) == 1

    @pytest.mark.asyncio
    async def test_driver_errors_propagate_as_connection_error(self):
        failure = PyMongoError("connection refused")
        store = ExpenseStore(FakeCollection(error=failure), "default_user")

        with pytest.raises(ConnectionError) as excinfo:
            await store.query_all()
        assert excinfo.value.__cause__ is failure

        with pytest.raises(ConnectionError):
            await store.insert({"amount": 1})
        with pytest.raises(ConnectionError):
            await store.get_by_id("65f000000000000000000001")
