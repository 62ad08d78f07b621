from contextlib import asynccontextmanager
from fastapi import FastAPI

from gym_accounting.core.database import init_db
from gym_accounting.core.logging import configure_logging
from gym_accounting.api import accounting, config, sync
from gym_accounting.services.scheduler import start_scheduler, stop_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    # Startup
    configure_logging()
    await init_db()
    start_scheduler()
    yield
    # Shutdown
    stop_scheduler()


# Create FastAPI application
app = FastAPI(
    title="Gym Accounting Sync",
    description="Exports gym payments to QuickBooks and Xero",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(config.router)
app.include_router(sync.router)
app.include_router(accounting.router)
