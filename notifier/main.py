# main.py
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from notifier import database
from notifier.config import get_settings
from notifier.routes import router

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[
        logging.StreamHandler(),
    ],
)
# APScheduler logs every job execution at INFO
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logger = logging.getLogger("main")
logger.info("Application starting...")


# ---------------------------------------------------------------------------
# App lifespan (startup/shutdown)
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown tasks."""
    logger.info("Startup: initializing database...")
    try:
        await database.init_db_async()
        dsn = database.get_database_dsn()
        logger.info("Connected to database: %s", dsn)
    except Exception as e:
        logger.critical("Database initialization failed: %s", e)
        raise

    scheduler_enabled = get_settings().scheduler_enabled
    if scheduler_enabled:
        logger.info("Startup: starting reminder scheduler...")
        try:
            from notifier.features.reminders import start_reminder_scheduler
            await start_reminder_scheduler()
        except Exception as e:
            logger.error("Failed to start reminder scheduler: %s", e)
    else:
        logger.info("Reminder scheduler disabled (SCHEDULER_ENABLED=false)")

    yield  # app runs during this block

    # Cleanup
    if scheduler_enabled:
        logger.info("Shutdown: stopping reminder scheduler...")
        try:
            from notifier.features.reminders import stop_reminder_scheduler
            await stop_reminder_scheduler()
        except Exception as e:
            logger.error("Error stopping reminder scheduler: %s", e)

    logger.info("Shutdown: closing database connection pool...")
    try:
        await database.shutdown_db_async()
        logger.info("Cleanup complete.")
    except Exception as e:
        logger.error("Error during shutdown cleanup: %s", e)


# ---------------------------------------------------------------------------
# FastAPI Application
# ---------------------------------------------------------------------------
app = FastAPI(
    title="TimeFlow Notifier",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Base Routes
# ---------------------------------------------------------------------------

@app.get("/", tags=["Health"])
async def root():
    """Basic health check to verify the service is running."""
    from notifier.features.reminders import is_scheduler_running
    return {"status": "ok", "message": "TimeFlow notifier is running.", "scheduler_running": is_scheduler_running()}


app.include_router(router)
