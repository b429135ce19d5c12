"""In-memory collaborators for service and route tests."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from models.expense import Expense


class FakeExpenseStore:
    """In-memory stand-in for ExpenseStore with the same async contract."""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.query_count = 0
        self._next_id = 1

    def _expense(self, expense_id: str) -> Expense:
        return Expense(id=expense_id, **self.docs[expense_id])

    def _sorted(self, ids: List[str]) -> List[Expense]:
        expenses = [self._expense(expense_id) for expense_id in ids]
        return sorted(expenses, key=lambda expense: expense.date, reverse=True)

    async def insert(self, record: Dict[str, Any]) -> str:
        expense_id = f"{self._next_id:024x}"
        self._next_id += 1
        self.docs[expense_id] = {k: v for k, v in record.items() if k != "id"}
        return expense_id

    async def get_by_id(self, expense_id: str) -> Optional[Expense]:
        if expense_id not in self.docs:
            return None
        return self._expense(expense_id)

    async def update(self, expense_id: str, partial: Dict[str, Any]) -> bool:
        if expense_id not in self.docs:
            return False
        self.docs[expense_id].update(partial)
        return True

    async def delete(self, expense_id: str) -> bool:
        return self.docs.pop(expense_id, None) is not None

    async def query_all(self) -> List[Expense]:
        self.query_count += 1
        return self._sorted(list(self.docs))

    async def query_by_date_range(self, start, end) -> List[Expense]:
        self.query_count += 1
        return self._sorted([i for i, doc in self.docs.items() if start <= doc["date"] < end])

    async def query_by_category(self, category: str) -> List[Expense]:
        self.query_count += 1
        return self._sorted([
            i for i, doc in self.docs.items()
            if getattr(doc["category"], "value", doc["category"]) == category
        ])


class FailingCacheBackend:
    """Backend that fails on every call, like an unreachable Redis."""

    async def get(self, key):
        raise ConnectionError("cache down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("cache down")

    async def delete(self, key):
        raise ConnectionError("cache down")

    async def keys(self, pattern):
        raise ConnectionError("cache down")

    async def flush(self):
        raise ConnectionError("cache down")

    async def close(self):
        raise ConnectionError("cache down")


class TickingClock:
    """Returns a strictly increasing UTC time, one second per call."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


