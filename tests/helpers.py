"""Helpers shared by the server tests."""
from uuid import UUID, uuid4

from fieldsync_core import models


def make_user(db, role: models.AppRole, first_name: str, last_name: str = "Tester") -> UUID:
    """Insert a profile with its role and return the user id."""
    profile = models.Profile(
        user_id=uuid4(),
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}.{uuid4().hex[:8]}@example.com",
    )
    profile.role = models.UserRole(role=role)
    db.add(profile)
    db.commit()
    return profile.user_id


def auth(user_id: UUID) -> dict:
    """Identity header as forwarded by the gateway."""
    return {"X-User-Id": str(user_id)}
