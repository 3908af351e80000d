"""Main application entry point."""
from fastapi import FastAPI
import logging

from app.config import settings, configure_logging
from app.database import init_db
from app.exceptions import register_exception_handlers
from app.scheduler import start_scheduler, stop_scheduler
from app.api.notifications import router as notifications_router


configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Gift Reminder Notifications",
    description="Per-user reminders for upcoming events over mail, Slack, Discord and push",
    version="1.0.0",
    debug=settings.debug
)

register_exception_handlers(app)
app.include_router(notifications_router)


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    logger.info("Application starting up...")
    init_db()

    if settings.scheduler_enabled:
        start_scheduler()
    else:
        logger.info("Scheduler disabled, reminders must be sent with scripts/send_reminders.py")

    logger.info("Application startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on application shutdown."""
    # Stop the reminder scheduler
    stop_scheduler()


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
