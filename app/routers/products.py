# app/routers/products.py
import uuid

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from app.core.auth import get_current_caller, require_roles
from app.database import get_session
from app.repositories.product_repo import ProductRepository
from app.repositories.user_repo import UserRepository
from app.schemas.product import ProductCreate, ProductRead, StockUpdate
from app.schemas.user import CallerContext
from app.services.product_service import ProductService

router = APIRouter(prefix="/products", tags=["Products"])

repo = ProductRepository()
service = ProductService(repo, UserRepository())


@router.get(
    "",
    response_model=list[ProductRead],
    dependencies=[Depends(get_current_caller)],
)
def list_products(
    session: Session = Depends(get_session),
    skip: int = 0,
    limit: int = 50,
    company_id: uuid.UUID | None = None,
):
    """
    List active products, optionally for one company.
    """
    return service.list_products(
        session, skip=skip, limit=limit, company_id=company_id
    )


@router.get(
    "/{product_id}",
    response_model=ProductRead,
    dependencies=[Depends(get_current_caller)],
)
def get_product(
    product_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    """
    Get a single product by id.
    """
    return service.get_product(session, product_id)


@router.post(
    "",
    response_model=ProductRead,
    status_code=status.HTTP_201_CREATED,
)
def create_product(
    payload: ProductCreate,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("company_rep", "admin")),
):
    """
    Add a product to a catalogue.

    Auth:
      - company_rep (own catalogue) or admin (any company).
    """
    return service.create_product(session, caller, payload)


@router.patch("/{product_id}/stock", response_model=ProductRead)
def update_stock(
    product_id: uuid.UUID,
    payload: StockUpdate,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("company_rep", "admin")),
):
    """
    Set a product's stock level.

    Auth:
      - the owning company_rep, or admin.
    """
    return service.update_stock(session, caller, product_id, payload)
