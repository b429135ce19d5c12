"""Main FastAPI application"""
import os
import logging
import logging.config
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from routes import router as api_router, DEFAULT_MONTHLY_BUDGET
from services.cache import CacheTTL, build_cache
from services.expenses_service import ExpenseService, default_ttl_policy
from services.store import ExpenseStore

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException

# Load environment variables from .env (searches current dir and parents)
load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            "markup": False
        },
    },
    "loggers": {
        "uvicorn": {
             "handlers": ["default"],
             "level": "INFO",
             "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": { # Root logger for our application
            "handlers": ["default"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

MONGODB_URI = os.getenv("MONGODB_URI")
DB_NAME = os.getenv("DB_NAME", "expense_tracker")
EXPENSES_COLLECTION = os.getenv("EXPENSES_COLLECTION", "expenses")
DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "default_user")
MONTHLY_BUDGET = float(os.getenv("MONTHLY_BUDGET", DEFAULT_MONTHLY_BUDGET))
CACHE_BACKEND = os.getenv("CACHE_BACKEND", "memory")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

if not MONGODB_URI:
    logger.error("MONGODB_URI environment variable not set! Database connection will fail.")

# Application state to hold the database client and the service built on it
app_state = {}

# --- Rate Limiter Setup ---
DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT", "120/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
limiter = Limiter(key_func=get_remote_address, default_limits=[DEFAULT_RATE_LIMIT], enabled=RATE_LIMIT_ENABLED)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: build the cache, connect to MongoDB and assemble the service
    cache = build_cache(CACHE_BACKEND, REDIS_URL)
    app_state["cache"] = cache
    app_state["monthly_budget"] = MONTHLY_BUDGET
    logger.info(f"Configuration: MONTHLY_BUDGET = {MONTHLY_BUDGET}, DEFAULT_USER_ID = {DEFAULT_USER_ID}")

    logger.info(f"Connecting to MongoDB at {MONGODB_URI}...")
    try:
        app_state["db_client"] = AsyncIOMotorClient(MONGODB_URI)
        collection = app_state["db_client"][DB_NAME].get_collection(EXPENSES_COLLECTION)
        await app_state["db_client"].admin.command('ping')
        logger.info(f"Successfully connected to MongoDB database: {DB_NAME}")
        await collection.create_index([("userId", 1), ("date", -1)])
        store = ExpenseStore(collection, DEFAULT_USER_ID)
        app_state["expense_service"] = ExpenseService(
            cache,
            store,
            ttl_policy=default_ttl_policy(CacheTTL.from_env()),
        )
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        app_state["expense_service"] = None

    yield # Application runs here

    # Shutdown: release the cache and MongoDB connection
    await cache.close()
    if app_state.get("db_client"):
        logger.info("Closing MongoDB connection...")
        app_state["db_client"].close()
        logger.info("MongoDB connection closed.")


app = FastAPI(
    title="Expense Tracker API",
    description="API for tracking expenses, monthly totals and budgets.",
    version="0.1.0",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # Adjust in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Renders errors in the same envelope as successful responses."""
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "body"
        problems.append(f"{field}: {error.get('msg')}")
    logger.warning(f"Validation error on {request.method} {request.url.path}: {problems}")
    return JSONResponse(status_code=400, content={"success": False, "message": "; ".join(problems)})


app.include_router(
    api_router,
    prefix="/api",
    tags=["api"],
)


@app.middleware("http")
async def add_app_config_to_request(request: Request, call_next):
    """Adds the expense service and configuration settings to the request state."""
    request.state.expense_service = app_state.get("expense_service")
    request.state.monthly_budget = app_state.get("monthly_budget", MONTHLY_BUDGET)
    response = await call_next(request)
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=True
    )
