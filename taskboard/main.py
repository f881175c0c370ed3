"""
Main FastAPI application
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select

from taskboard.config import get_settings
from taskboard.database import AsyncSessionLocal, create_tables
from taskboard.exceptions import TaskboardError
from taskboard.models import User, UserRole
from taskboard.services.notifications import NotificationDispatcher
from taskboard.utils.logger import setup_logging
from taskboard.api import tasks, notifications, users

settings = get_settings()
logger = logging.getLogger(__name__)


async def seed_default_admin(session) -> None:
    """Create the default admin account when the directory has no admin"""
    result = await session.execute(select(User.id).where(User.role == UserRole.ADMIN).limit(1))
    if result.scalar_one_or_none() is not None:
        logger.info("Admin user already exists")
        return

    session.add(User(
        username=settings.DEFAULT_ADMIN_USERNAME,
        full_name="Administrator",
        email=settings.DEFAULT_ADMIN_EMAIL or None,
        role=UserRole.ADMIN,
        is_active=True,
    ))
    await session.commit()
    logger.info(f"Created default admin user '{settings.DEFAULT_ADMIN_USERNAME}'")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    await create_tables()
    logger.info("Database tables created")

    async with AsyncSessionLocal() as session:
        await seed_default_admin(session)

    app.state.dispatcher = NotificationDispatcher()
    if not app.state.dispatcher.email_sender.enabled:
        logger.warning("SMTP_HOST not set - notification emails are disabled")

    yield

    # Let queued emails finish before the process exits
    await app.state.dispatcher.drain()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TaskboardError)
async def taskboard_error_handler(request: Request, exc: TaskboardError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "retryable": exc.retryable},
    )


# Include routers
app.include_router(tasks.router, prefix="/api/tasks", tags=["Tasks"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(users.router, prefix="/api/users", tags=["Users"])


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "taskboard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
