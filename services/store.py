"""MongoDB adapter for one user's expense collection."""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection # Type hint for collection
from pydantic import ValidationError

from models.expense import Expense

logger = logging.getLogger(__name__)


def _to_document(record: Dict[str, Any]) -> Dict[str, Any]:
    """Converts service-side values into their stored representation."""
    doc = dict(record)
    doc.pop("id", None)
    if isinstance(doc.get("date"), date):
        doc["date"] = doc["date"].isoformat()
    if "category" in doc and hasattr(doc["category"], "value"):
        doc["category"] = doc["category"].value
    return doc


def _as_utc(value: Any) -> Any:
    # PyMongo hands back naive datetimes that are already UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ExpenseStore:
    """
    Document store for expenses, scoped to a single user id.

    Driver failures are re-raised as ConnectionError with the original cause attached.
    """

    def __init__(self, collection: AsyncIOMotorCollection, user_id: str):
        self._collection = collection
        self._user_id = user_id

    def _scoped(self, query: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        scoped = {"userId": self._user_id}
        if query:
            scoped.update(query)
        return scoped

    def _to_expense(self, doc: Dict[str, Any]) -> Expense:
        doc = dict(doc)
        doc["id"] = str(doc.pop("_id"))
        doc.pop("userId", None)
        doc["createdAt"] = _as_utc(doc.get("createdAt"))
        doc["updatedAt"] = _as_utc(doc.get("updatedAt"))
        return Expense(**doc)

    async def _find(self, query: Dict[str, Any], description: str) -> List[Expense]:
        logger.info(f"Fetching {description} from collection '{self._collection.name}' for user '{self._user_id}'...")
        expenses = []
        try:
            cursor = self._collection.find(self._scoped(query)).sort("date", -1)
            async for doc in cursor:
                try:
                    expenses.append(self._to_expense(doc))
                except ValidationError as e:
                    logger.error(f"Data validation error for document ID {doc.get('_id', 'N/A')}: {e}")
                    continue
        except Exception as e:
            logger.error(f"Database error fetching {description}: {e}")
            raise ConnectionError(f"Database error fetching {description}: {e}") from e
        logger.info(f"Fetched {len(expenses)} expenses.")
        return expenses

    async def insert(self, record: Dict[str, Any]) -> str:
        try:
            result = await self._collection.insert_one(self._scoped(_to_document(record)))
        except Exception as e:
            logger.error(f"Database error inserting expense: {e}")
            raise ConnectionError(f"Database error inserting expense: {e}") from e
        return str(result.inserted_id)

    async def get_by_id(self, expense_id: str) -> Optional[Expense]:
        try:
            oid = ObjectId(expense_id)
        except (InvalidId, TypeError):
            logger.debug(f"Malformed expense id '{expense_id}', treating as absent.")
            return None
        try:
            doc = await self._collection.find_one(self._scoped({"_id": oid}))
        except Exception as e:
            logger.error(f"Database error fetching expense {expense_id}: {e}")
            raise ConnectionError(f"Database error fetching expense {expense_id}: {e}") from e
        if doc is None:
            return None
        return self._to_expense(doc)

    async def update(self, expense_id: str, partial: Dict[str, Any]) -> bool:
        try:
            oid = ObjectId(expense_id)
        except (InvalidId, TypeError):
            return False
        try:
            result = await self._collection.update_one(self._scoped({"_id": oid}), {"$set": _to_document(partial)})
        except Exception as e:
            logger.error(f"Database error updating expense {expense_id}: {e}")
            raise ConnectionError(f"Database error updating expense {expense_id}: {e}") from e
        return result.matched_count > 0

    async def delete(self, expense_id: str) -> bool:
        try:
            oid = ObjectId(expense_id)
        except (InvalidId, TypeError):
            return False
        try:
            result = await self._collection.delete_one(self._scoped({"_id": oid}))
        except Exception as e:
            logger.error(f"Database error deleting expense {expense_id}: {e}")
            raise ConnectionError(f"Database error deleting expense {expense_id}: {e}") from e
        return result.deleted_count > 0

    async def query_all(self) -> List[Expense]:
        return await self._find({}, "all expenses")

    async def query_by_date_range(self, start: date, end: date) -> List[Expense]:
        """Expenses with start <= date < end. ISO date strings order lexicographically."""
        query = {"date": {"$gte": start.isoformat(), "$lt": end.isoformat()}}
        return await self._find(query, f"expenses between {start} and {end}")

    async def query_by_category(self, category: str) -> List[Expense]:
        return await self._find({"category": category}, f"expenses in category '{category}'")
