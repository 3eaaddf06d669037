# app/services/user_service.py
from sqlmodel import Session

from app.core.errors import NotFound
from app.models.user import User
from app.repositories.user_repo import UserRepository
from app.schemas.user import CallerContext


class UserService:
    """
    Read-only view of the user directory.

    Profiles are created and edited by the registration service; here we
    only look them up.
    """

    def __init__(self, repo: UserRepository):
        self.repo = repo

    def get_me(self, session: Session, caller: CallerContext) -> User:
        """Return the caller's own profile."""
        user = self.repo.get_by_id(session, caller.id)
        if not user:
            raise NotFound("User not found", code="user_not_found")
        return user

    def list_available_workers(
        self,
        session: Session,
        area: str | None = None,
    ) -> list[User]:
        """
        Active delivery workers, optionally narrowed to an area.

        A worker matches when the (case-insensitive) area text is contained
        in their home area or in any of their assigned areas.
        """
        workers = self.repo.list_active_workers(session)
        needle = (area or "").strip().lower()
        if not needle:
            return workers

        return [
            w
            for w in workers
            if needle in w.area.lower()
            or any(needle in a.lower() for a in w.assigned_areas)
        ]
