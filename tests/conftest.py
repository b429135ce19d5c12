"""
Pytest fixtures for the expense tracker tests
"""
import os
import pytest

# Keep the rate limiter and real backends out of the way under test
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CACHE_BACKEND"] = "memory"

from services.cache import CacheService, MemoryCacheBackend
from services.expenses_service import ExpenseService
from tests.fakes import FakeExpenseStore, TickingClock


@pytest.fixture
def store():
    return FakeExpenseStore()


@pytest.fixture
def cache():
    return CacheService(MemoryCacheBackend())


@pytest.fixture
def service(cache, store):
    return ExpenseService(cache, store, clock=TickingClock())


@pytest.fixture
def sample_expense_data():
    """Sample expense payload"""
    return {
        "amount": 50,
        "category": "Food",
        "date": "2024-03-15",
        "description": "Groceries",
    }
