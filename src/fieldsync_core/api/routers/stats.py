"""Admin overview endpoint."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fieldsync_core import schemas
from fieldsync_core.api.dependencies import CurrentUser, require_admin_user
from fieldsync_core.stats import get_stats

from ...database import get_db

router = APIRouter(tags=["stats"])


@router.get("/", response_model=schemas.StatsResponse)
def read_stats(
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """Task counts, employee presence and today's worked hours (admin only)."""
    return get_stats(db)
