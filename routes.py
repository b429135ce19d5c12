"""API Routes for expenses"""
import asyncio
import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request

from models.expense import Expense, ExpenseCategory, ExpenseCreate, ExpenseUpdate
from services.expenses_service import ExpenseService
from utils.dates import is_valid_month, month_of

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_BUDGET = 20000.0
CATEGORY_LABELS = [category.value for category in ExpenseCategory]
INVALID_CATEGORY_MESSAGE = "Invalid category. Must be one of: " + ", ".join(CATEGORY_LABELS)
INVALID_MONTH_MESSAGE = "Invalid month format. Use YYYY-MM"

# --- Dependency Functions ---
def get_expense_service(request: Request) -> ExpenseService:
    """Dependency to get the expense service from the request state."""
    service = getattr(request.state, "expense_service", None)
    if service is None:
        logger.error("Expense service not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return service


def get_monthly_budget(request: Request) -> float:
    """Dependency returning the configured monthly budget."""
    return getattr(request.state, "monthly_budget", DEFAULT_MONTHLY_BUDGET)


# Type hints for the dependencies
ExpenseServiceDep = Annotated[ExpenseService, Depends(get_expense_service)]
MonthlyBudgetDep = Annotated[float, Depends(get_monthly_budget)]


def _serialize(expense: Expense) -> Dict[str, Any]:
    return expense.model_dump(mode="json", by_alias=True)


def _server_error(message: str, error: Exception) -> HTTPException:
    """Logs the failure and returns a generic 500 that does not leak internals."""
    if isinstance(error, ConnectionError):
        logger.error(f"{message}: {error}")
    else:
        logger.exception(f"Unexpected error - {message}: {error}")
    return HTTPException(status_code=500, detail=message)


# --- API Routes ---

@router.get("/expenses", summary="Get All Expenses", description="Retrieves all expense records, sorted by date descending.")
async def get_expenses(service: ExpenseServiceDep):
    logger.info("GET /expenses endpoint called.")
    try:
        expenses = await service.get_all_expenses()
    except Exception as e:
        raise _server_error("Failed to fetch expenses", e)
    return {"success": True, "data": [_serialize(expense) for expense in expenses], "count": len(expenses)}


@router.get("/expenses/reports/monthly/{month}", summary="Monthly Report", description="Total, category breakdown and budget status for one month.")
async def get_monthly_report(month: str, service: ExpenseServiceDep, monthly_budget: MonthlyBudgetDep):
    logger.info(f"GET /expenses/reports/monthly/{month} endpoint called.")
    if not is_valid_month(month):
        raise HTTPException(status_code=400, detail=INVALID_MONTH_MESSAGE)
    try:
        total_expenses, category_totals, remaining_budget = await asyncio.gather(
            service.get_total_for_month(month),
            service.get_category_totals(month),
            service.get_remaining_budget(month, monthly_budget),
        )
    except Exception as e:
        raise _server_error("Failed to generate monthly report", e)
    return {
        "success": True,
        "data": {
            "month": month,
            "totalExpenses": total_expenses,
            "categoryTotals": category_totals,
            "monthlyBudget": monthly_budget,
            "remainingBudget": remaining_budget,
            "budgetExceeded": remaining_budget <= 0,
        },
    }


@router.get("/expenses/category/{category}", summary="Expenses By Category")
async def get_expenses_by_category(category: str, service: ExpenseServiceDep):
    logger.info(f"GET /expenses/category/{category} endpoint called.")
    if category not in CATEGORY_LABELS:
        raise HTTPException(status_code=400, detail=INVALID_CATEGORY_MESSAGE)
    try:
        expenses = await service.get_expenses_by_category(category)
    except Exception as e:
        raise _server_error("Failed to fetch expenses by category", e)
    return {"success": True, "data": [_serialize(expense) for expense in expenses], "count": len(expenses)}


@router.get("/expenses/categories/totals", summary="Category Totals", description="Summed amounts per category, for one month or all time.")
async def get_category_totals(
    service: ExpenseServiceDep,
    month: Optional[str] = Query(None, description="Month in YYYY-MM format. Omit for all-time totals."),
):
    logger.info(f"GET /expenses/categories/totals endpoint called (month={month}).")
    if month and not is_valid_month(month):
        raise HTTPException(status_code=400, detail=INVALID_MONTH_MESSAGE)
    try:
        category_totals = await service.get_category_totals(month or None)
    except Exception as e:
        raise _server_error("Failed to fetch category totals", e)
    return {"success": True, "data": category_totals, "month": month or "all-time"}


@router.get("/expenses/{expense_id}", summary="Get Expense")
async def get_expense(expense_id: str, service: ExpenseServiceDep):
    logger.info(f"GET /expenses/{expense_id} endpoint called.")
    try:
        expense = await service.get_expense_by_id(expense_id)
    except Exception as e:
        raise _server_error("Failed to fetch expense", e)
    if expense is None:
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"success": True, "data": _serialize(expense)}


@router.post("/expenses", status_code=201, summary="Create Expense", description="Stores a new expense and reports the budget status of its month.")
async def create_expense(
    expense_data: Annotated[ExpenseCreate, Body(...)],
    service: ExpenseServiceDep,
    monthly_budget: MonthlyBudgetDep,
):
    """
    Creates an expense, then returns it together with the remaining budget and
    category totals of the month it falls in. `budgetExceeded` reflects the
    state after this expense was added.
    """
    logger.info(f"POST /expenses endpoint called: {expense_data.amount} ({expense_data.category.value}) on {expense_data.date}")
    try:
        expense = await service.create_expense(expense_data)
        month = month_of(expense.date)
        remaining_budget = await service.get_remaining_budget(month, monthly_budget)
        category_totals = await service.get_category_totals(month)
    except Exception as e:
        raise _server_error("Failed to create expense", e)
    return {
        "success": True,
        "data": _serialize(expense),
        "remainingBudget": remaining_budget,
        "categoryTotals": category_totals,
        "budgetExceeded": remaining_budget <= 0,
    }


@router.put("/expenses/{expense_id}", summary="Update Expense", description="Applies a partial update; only fields present in the body change.")
async def update_expense(
    expense_id: str,
    update_data: Annotated[ExpenseUpdate, Body(...)],
    service: ExpenseServiceDep,
):
    logger.info(f"PUT /expenses/{expense_id} endpoint called.")
    try:
        expense = await service.update_expense(expense_id, update_data)
    except Exception as e:
        raise _server_error("Failed to update expense", e)
    if expense is None:
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"success": True, "data": _serialize(expense)}


@router.delete("/expenses/{expense_id}", summary="Delete Expense")
async def delete_expense(expense_id: str, service: ExpenseServiceDep):
    logger.warning(f"DELETE /expenses/{expense_id} endpoint called.")
    try:
        deleted = await service.delete_expense(expense_id)
    except Exception as e:
        raise _server_error("Failed to delete expense", e)
    if not deleted:
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"success": True, "message": "Expense deleted successfully"}


@router.post("/cache/flush", summary="Flush Cache", description="Drops every cached listing and aggregate. Stored expenses are untouched.")
async def flush_cache(service: ExpenseServiceDep):
    logger.warning("POST /cache/flush endpoint called.")
    flushed = await service.flush_cache()
    if not flushed:
        raise HTTPException(status_code=503, detail="Cache service not available.")
    return {"success": True, "message": "Cache flushed"}
