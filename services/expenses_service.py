"""Service layer for handling expense-related logic."""
import fnmatch
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from models.expense import Expense, ExpenseCreate, ExpenseUpdate
from services.cache import CacheService, CacheTTL
from services.store import ExpenseStore
from utils.dates import month_range, utc_now

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("amount", "category", "date", "description")

# Keys whose values may change after any create/update/delete
AGGREGATE_KEY_PATTERNS = (
    "all_expenses",
    "expenses_category_*",
    "total_month_*",
    "category_totals_*",
)


def default_ttl_policy(ttl: CacheTTL) -> Dict[str, int]:
    """Maps each cache key class to its TTL in seconds."""
    return {
        "expense": ttl.medium,
        "all_expenses": ttl.medium,
        "expenses_category": ttl.medium,
        "category_totals": ttl.medium,
        "total_month": ttl.long,
    }


def merge_expense_patch(existing: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow merge of a partial update into the stored fields. Patch values always win."""
    merged = {field: existing[field] for field in MUTABLE_FIELDS if field in existing}
    for field, value in patch.items():
        if field not in MUTABLE_FIELDS:
            continue
        merged[field] = value
    return merged


def _dump_expenses(expenses: List[Expense]) -> List[Dict[str, Any]]:
    return [expense.model_dump(mode="json", by_alias=True) for expense in expenses]


class ExpenseService:
    """
    Expense CRUD plus cached aggregates (monthly totals, category breakdowns).

    The store is authoritative; the cache holds re-derivable projections only.
    Every mutation drops all listing and aggregate keys, since any of them
    may depend on the record that changed.
    """

    def __init__(
        self,
        cache: CacheService,
        store: ExpenseStore,
        ttl_policy: Optional[Dict[str, int]] = None,
        clock: Callable = utc_now,
    ):
        self._cache = cache
        self._store = store
        self._ttl = ttl_policy or default_ttl_policy(CacheTTL())
        self._clock = clock

    # --- Cache helpers ---

    async def _cached_expenses(self, key: str) -> Optional[List[Expense]]:
        cached = await self._cache.get(key)
        if cached is None:
            return None
        try:
            return [Expense.model_validate(item) for item in cached]
        except (ValidationError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry '{key}': {e}")
            await self._cache.delete(key)
            return None

    async def _invalidate(self, expense_id: Optional[str] = None) -> None:
        keys = {
            key for key in await self._cache.list_keys("*")
            if any(fnmatch.fnmatchcase(key, pattern) for pattern in AGGREGATE_KEY_PATTERNS)
        }
        if expense_id:
            keys.add(f"expense_{expense_id}")
        for key in keys:
            await self._cache.delete(key)
        logger.debug(f"Invalidated {len(keys)} cache keys: {sorted(keys)}")

    # --- CRUD ---

    async def create_expense(self, data: ExpenseCreate) -> Expense:
        now = self._clock()
        record = data.model_dump()
        record["createdAt"] = now
        record["updatedAt"] = now
        expense_id = await self._store.insert(record)
        expense = Expense(id=expense_id, **record)
        logger.info(f"Created expense {expense_id}: {expense.amount} ({expense.category.value}) on {expense.date}")
        await self._invalidate()
        return expense

    async def get_all_expenses(self) -> List[Expense]:
        key = "all_expenses"
        cached = await self._cached_expenses(key)
        if cached is not None:
            return cached
        expenses = await self._store.query_all()
        await self._cache.set(key, _dump_expenses(expenses), self._ttl["all_expenses"])
        return expenses

    async def get_expense_by_id(self, expense_id: str) -> Optional[Expense]:
        key = f"expense_{expense_id}"
        cached = await self._cache.get(key)
        if cached is not None:
            try:
                return Expense.model_validate(cached)
            except ValidationError as e:
                logger.warning(f"Discarding unreadable cache entry '{key}': {e}")
        expense = await self._store.get_by_id(expense_id)
        if expense is None:
            return None
        await self._cache.set(key, expense.model_dump(mode="json", by_alias=True), self._ttl["expense"])
        return expense

    async def update_expense(
        self, expense_id: str, patch: Union[ExpenseUpdate, Dict[str, Any]]
    ) -> Optional[Expense]:
        existing = await self._store.get_by_id(expense_id)
        if existing is None:
            logger.info(f"Update skipped, expense {expense_id} not found.")
            return None

        if isinstance(patch, ExpenseUpdate):
            changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        else:
            changes = dict(patch)
        merged = merge_expense_patch(existing.model_dump(), changes)
        merged["updatedAt"] = self._clock()

        if not await self._store.update(expense_id, merged):
            # Removed between the read and the write
            logger.info(f"Expense {expense_id} disappeared before update.")
            await self._invalidate(expense_id)
            return None

        logger.info(f"Updated expense {expense_id} with fields {sorted(changes)}")
        await self._invalidate(expense_id)
        return await self.get_expense_by_id(expense_id)

    async def delete_expense(self, expense_id: str) -> bool:
        existing = await self._store.get_by_id(expense_id)
        if existing is None:
            logger.info(f"Delete skipped, expense {expense_id} not found.")
            return False
        deleted = await self._store.delete(expense_id)
        await self._invalidate(expense_id)
        if deleted:
            logger.info(f"Deleted expense {expense_id}")
        return deleted

    # --- Aggregates ---

    async def get_total_for_month(self, month: str) -> float:
        key = f"total_month_{month}"
        cached = await self._cache.get(key)
        if isinstance(cached, (int, float)):
            return float(cached)
        start, end = month_range(month)
        expenses = await self._store.query_by_date_range(start, end)
        total = round(sum(expense.amount for expense in expenses), 2)
        await self._cache.set(key, total, self._ttl["total_month"])
        return total

    async def get_category_totals(self, month: Optional[str] = None) -> Dict[str, float]:
        key = f"category_totals_{month or 'all'}"
        cached = await self._cache.get(key)
        if isinstance(cached, dict):
            return cached
        if month:
            start, end = month_range(month)
            expenses = await self._store.query_by_date_range(start, end)
        else:
            expenses = await self._store.query_all()

        totals: Dict[str, float] = {}
        for expense in expenses:
            label = expense.category.value
            totals[label] = totals.get(label, 0.0) + expense.amount
        totals = {label: round(amount, 2) for label, amount in totals.items()}
        await self._cache.set(key, totals, self._ttl["category_totals"])
        return totals

    async def get_expenses_by_category(self, category: str) -> List[Expense]:
        category = getattr(category, "value", category)
        key = f"expenses_category_{category}"
        cached = await self._cached_expenses(key)
        if cached is not None:
            return cached
        expenses = await self._store.query_by_category(category)
        await self._cache.set(key, _dump_expenses(expenses), self._ttl["expenses_category"])
        return expenses

    async def get_remaining_budget(self, month: str, monthly_budget: float) -> float:
        """Budget left for the month, floored at zero."""
        total = await self.get_total_for_month(month)
        return max(0.0, round(monthly_budget - total, 2))

    async def flush_cache(self) -> bool:
        logger.warning("Flushing all cached expense data.")
        return await self._cache.flush_all()
