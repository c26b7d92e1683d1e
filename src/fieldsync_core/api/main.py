"""FieldSync Core FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import get_settings
from .routers import assignments, chat, documents, notifications, realtime, stats, tasks, time_entries, users

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("fieldsync-core")

settings = get_settings()
logger.info("Starting FieldSync Core API")

# Create FastAPI app
app = FastAPI(
    title="FieldSync Core API",
    description="Field task coordination: assignment, SMS codes, chat and a realtime change feed",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include all business logic routers with /api/v1 prefix
app.include_router(tasks.router, prefix="/api/v1/tasks")
app.include_router(assignments.router, prefix="/api/v1/assignments")
app.include_router(assignments.sms_router, prefix="/api/v1/sms-requests")
app.include_router(chat.router, prefix="/api/v1/messages")
app.include_router(users.router, prefix="/api/v1/users")
app.include_router(time_entries.router, prefix="/api/v1/time-entries")
app.include_router(documents.router, prefix="/api/v1/documents")
app.include_router(notifications.router, prefix="/api/v1/notifications")
app.include_router(notifications.push_router, prefix="/api/v1/push")
app.include_router(stats.router, prefix="/api/v1/stats")
app.include_router(realtime.router, prefix="/api/v1/realtime")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "FieldSync Core API",
        "version": "1.0.0",
        "docs": "/docs",
        "realtime_topics": "/api/v1/realtime/{topic}",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
