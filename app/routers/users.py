# app/routers/users.py
from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import get_current_caller, require_roles
from app.database import get_session
from app.repositories.user_repo import UserRepository
from app.schemas.user import CallerContext, UserRead, WorkerRead
from app.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["Users"])

repo = UserRepository()
service = UserService(repo)


@router.get("/me", response_model=UserRead)
def read_me(
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(get_current_caller),
):
    """
    Return the authenticated user's profile.

    Auth:
      - Requires valid Supabase JWT and an active account.
    """
    return service.get_me(session, caller)


@router.get(
    "/workers/available",
    response_model=list[WorkerRead],
    dependencies=[Depends(require_roles("admin", "company_rep"))],
)
def list_available_workers(
    session: Session = Depends(get_session),
    area: str | None = None,
):
    """
    Active delivery workers, optionally filtered by area.

    Auth:
      - admin or company_rep (used when assigning orders).
    """
    return service.list_available_workers(session, area)
