"""Employee time tracking (check-in/out and pauses).

The most recent entry of the current business day decides the clock state:
- ``check_in`` / ``pause_end`` → in
- ``pause_start`` → paused
- ``check_out`` or no entry → out

Being "in" is the precondition for accepting a task.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from . import models
from .config import get_settings
from .models import TimeEntryType, utcnow

logger = logging.getLogger("fieldsync-core.time_tracking")

CLOCK_OUT = "out"
CLOCK_IN = "in"
CLOCK_PAUSED = "paused"

# Clock state → entry types that may be recorded next
ALLOWED_ENTRIES: dict[str, tuple[TimeEntryType, ...]] = {
    CLOCK_OUT: (TimeEntryType.CHECK_IN,),
    CLOCK_IN: (TimeEntryType.PAUSE_START, TimeEntryType.CHECK_OUT),
    CLOCK_PAUSED: (TimeEntryType.PAUSE_END, TimeEntryType.CHECK_OUT),
}


def day_bounds(day: Optional[date] = None, now: Optional[datetime] = None, tz_name: Optional[str] = None) -> tuple[datetime, datetime]:
    """
    Return the [start, end) of a business day as naive UTC datetimes.

    Args:
        day: Calendar day in the business timezone (defaults to today)
        now: Naive UTC reference time used to determine "today"
        tz_name: IANA timezone name (defaults to the configured timezone)
    """
    tz = ZoneInfo(tz_name or get_settings().timezone)
    if day is None:
        reference = (now or utcnow()).replace(tzinfo=timezone.utc)
        day = reference.astimezone(tz).date()
    start_local = datetime.combine(day, time.min, tzinfo=tz)
    end_local = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start_local.astimezone(timezone.utc).replace(tzinfo=None),
        end_local.astimezone(timezone.utc).replace(tzinfo=None),
    )


def entries_for_day(
    db: Session,
    user_id: UUID,
    day: Optional[date] = None,
    now: Optional[datetime] = None,
) -> list[models.TimeEntry]:
    """Return the user's entries of one business day, oldest first."""
    start, end = day_bounds(day, now)
    return db.query(models.TimeEntry).filter(
        models.TimeEntry.user_id == user_id,
        models.TimeEntry.timestamp >= start,
        models.TimeEntry.timestamp < end,
    ).order_by(models.TimeEntry.timestamp.asc()).all()


def clock_state(entries: list[models.TimeEntry]) -> str:
    """Derive the clock state from a day's entries (oldest first)."""
    if not entries:
        return CLOCK_OUT
    latest = entries[-1].entry_type
    if latest in (TimeEntryType.CHECK_IN, TimeEntryType.PAUSE_END):
        return CLOCK_IN
    if latest == TimeEntryType.PAUSE_START:
        return CLOCK_PAUSED
    return CLOCK_OUT


def current_clock_state(db: Session, user_id: UUID, now: Optional[datetime] = None) -> str:
    return clock_state(entries_for_day(db, user_id, now=now))


def is_checked_in(db: Session, user_id: UUID, now: Optional[datetime] = None) -> bool:
    """True when the user's most recent entry today is ``check_in`` or ``pause_end``."""
    start, end = day_bounds(now=now)
    latest = db.query(models.TimeEntry.entry_type).filter(
        models.TimeEntry.user_id == user_id,
        models.TimeEntry.timestamp >= start,
        models.TimeEntry.timestamp < end,
    ).order_by(models.TimeEntry.timestamp.desc()).first()
    return latest is not None and latest[0] in (TimeEntryType.CHECK_IN, TimeEntryType.PAUSE_END)


def worked_seconds(entries: list[models.TimeEntry], now: Optional[datetime] = None) -> int:
    """
    Sum the worked time of a day's entries, excluding pauses.

    An open check-in counts until ``now``; checking out during a pause ends the
    pause at the check-out time.
    """
    now = now or utcnow()
    total = timedelta()
    check_in_at: Optional[datetime] = None
    pause_started_at: Optional[datetime] = None
    paused = timedelta()

    for entry in entries:
        if entry.entry_type == TimeEntryType.CHECK_IN:
            check_in_at = entry.timestamp
            pause_started_at = None
            paused = timedelta()
        elif entry.entry_type == TimeEntryType.PAUSE_START:
            pause_started_at = entry.timestamp
        elif entry.entry_type == TimeEntryType.PAUSE_END:
            if pause_started_at is not None:
                paused += entry.timestamp - pause_started_at
                pause_started_at = None
        elif entry.entry_type == TimeEntryType.CHECK_OUT:
            if check_in_at is not None:
                if pause_started_at is not None:
                    paused += entry.timestamp - pause_started_at
                total += entry.timestamp - check_in_at - paused
            check_in_at = None
            pause_started_at = None
            paused = timedelta()

    if check_in_at is not None:
        open_pause = now - pause_started_at if pause_started_at is not None else timedelta()
        total += now - check_in_at - paused - open_pause

    return max(int(total.total_seconds()), 0)


def record_entry(
    db: Session,
    user_id: UUID,
    entry_type: TimeEntryType,
    now: Optional[datetime] = None,
) -> models.TimeEntry:
    """
    Record a clock event for the user.

    Args:
        db: Database session
        user_id: User clocking
        entry_type: Event to record
        now: Timestamp (naive UTC); defaults to the current time

    Returns:
        Created TimeEntry

    Raises:
        ValueError: If the event does not follow the current clock state
    """
    now = now or utcnow()
    state = current_clock_state(db, user_id, now=now)
    if entry_type not in ALLOWED_ENTRIES[state]:
        allowed = ", ".join(t.value for t in ALLOWED_ENTRIES[state])
        raise ValueError(f"Cannot record {entry_type.value} while clocked {state}. Allowed: {allowed}")

    entry = models.TimeEntry(user_id=user_id, entry_type=entry_type, timestamp=now)
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info(f"User {user_id} recorded {entry_type.value}")
    return entry
