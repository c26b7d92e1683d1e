"""API routers for FieldSync Core."""

from . import assignments, chat, documents, notifications, realtime, stats, tasks, time_entries, users

__all__ = [
    "assignments",
    "chat",
    "documents",
    "notifications",
    "realtime",
    "stats",
    "tasks",
    "time_entries",
    "users",
]
