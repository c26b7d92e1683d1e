"""Admin overview statistics."""
from collections import Counter
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models, schemas
from .crud import get_profiles
from .models import TaskStatus, SmsRequestStatus, UserStatus
from .state_machine import ACTIVE_STATUSES
from .time_tracking import day_bounds, worked_seconds


def get_stats(db: Session, now: Optional[datetime] = None) -> schemas.StatsResponse:
    """
    Compute the admin overview.

    Active tasks are assigned, in progress, waiting for a code or awaiting review.
    Hours today sum each employee's worked time of the current business day.
    """
    status_counts = Counter(dict(
        db.query(models.Task.status, func.count(models.Task.id)).group_by(models.Task.status).all()
    ))
    total = sum(status_counts.values())

    # (user_id, status) → count over assigned tasks
    per_user_status = db.query(
        models.TaskAssignment.user_id, models.Task.status, func.count(models.Task.id)
    ).join(models.Task, models.Task.id == models.TaskAssignment.task_id).group_by(
        models.TaskAssignment.user_id, models.Task.status
    ).all()
    per_user: dict = {}
    for user_id, status, count in per_user_status:
        per_user.setdefault(user_id, Counter())[status] += count

    start, end = day_bounds(now=now)
    entries_by_user: dict = {}
    for entry in db.query(models.TimeEntry).filter(
        models.TimeEntry.timestamp >= start,
        models.TimeEntry.timestamp < end,
    ).order_by(models.TimeEntry.timestamp.asc()).all():
        entries_by_user.setdefault(entry.user_id, []).append(entry)

    employees = get_profiles(db, role=models.AppRole.EMPLOYEE)
    per_employee = []
    for profile in employees:
        counts = per_user.get(profile.user_id, Counter())
        seconds = worked_seconds(entries_by_user.get(profile.user_id, []), now=now)
        per_employee.append(schemas.EmployeeStats(
            user_id=profile.user_id,
            full_name=profile.full_name,
            status=profile.status,
            total_tasks=sum(counts.values()),
            completed_tasks=counts[TaskStatus.COMPLETED],
            active_tasks=sum(counts[s] for s in ACTIVE_STATUSES),
            hours_today=round(seconds / 3600, 2),
        ))

    open_requests = db.query(func.count(models.SmsCodeRequest.id)).filter(
        models.SmsCodeRequest.status != SmsRequestStatus.FULFILLED
    ).scalar() or 0

    return schemas.StatsResponse(
        total_tasks=total,
        pending_tasks=status_counts[TaskStatus.PENDING],
        active_tasks=sum(status_counts[s] for s in ACTIVE_STATUSES),
        completed_tasks=status_counts[TaskStatus.COMPLETED],
        cancelled_tasks=status_counts[TaskStatus.CANCELLED],
        employees=len(employees),
        employees_online=sum(1 for p in employees if p.status != UserStatus.OFFLINE),
        open_sms_requests=open_requests,
        per_employee=per_employee,
    )
