# app/repositories/user_repo.py
import uuid

from sqlmodel import Session, select

from app.models.user import User


class UserRepository:
    """
    Read access to the user directory.

    Responsibilities:
      - Pure DB operations (queries)
      - No FastAPI, no HTTP, no business logic
    """

    def get_by_id(self, session: Session, user_id: uuid.UUID) -> User | None:
        """Return a User by primary key, or None if not found."""
        return session.get(User, user_id)

    def get_many(self, session: Session, user_ids: set[uuid.UUID]) -> dict[uuid.UUID, User]:
        """Bulk lookup keyed by id; unknown ids are simply absent."""
        if not user_ids:
            return {}
        stmt = select(User).where(User.id.in_(user_ids))
        return {u.id: u for u in session.exec(stmt).all()}

    def list_active_workers(self, session: Session) -> list[User]:
        """All active delivery workers, ordered by name."""
        stmt = (
            select(User)
            .where(User.role == "delivery_worker")
            .where(User.status == "active")
            .order_by(User.name)
        )
        return session.exec(stmt).all()
