# app/services/product_service.py
import logging
import uuid

from sqlmodel import Session

from app.core.errors import AccessDenied, Conflict, NotFound, ValidationFailed
from app.models.product import Product
from app.repositories.product_repo import ProductRepository
from app.repositories.user_repo import UserRepository
from app.schemas.product import ProductCreate, StockUpdate
from app.schemas.user import CallerContext

logger = logging.getLogger(__name__)


class ProductService:
    """
    Company catalogues.

    Responsibilities:
      - barcode uniqueness
      - ownership: company reps manage their own catalogue, admins any
      - absolute stock corrections (orders move stock through
        ProductRepository.decrement_stock / restore_stock instead)
    """

    def __init__(self, repo: ProductRepository, user_repo: UserRepository):
        self.repo = repo
        self.user_repo = user_repo

    # ----- Helpers -----

    @staticmethod
    def _ensure_owner(product: Product, caller: CallerContext) -> None:
        if caller.is_admin:
            return
        if caller.role != "company_rep" or product.company_id != caller.id:
            raise AccessDenied("You can only manage your own products")

    # ----- Products -----

    def list_products(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
        company_id: uuid.UUID | None = None,
    ) -> list[Product]:
        return self.repo.list_products(session, skip=skip, limit=limit, company_id=company_id)

    def get_product(self, session: Session, product_id: uuid.UUID) -> Product:
        product = self.repo.get_by_id(session, product_id)
        if not product:
            raise NotFound("Product not found", code="product_not_found")
        return product

    def create_product(
        self,
        session: Session,
        caller: CallerContext,
        payload: ProductCreate,
    ) -> Product:
        """
        Add a product to a catalogue.

        - company_rep: always their own catalogue
        - admin: must name an existing company_rep in `company_id`
        - barcode, when given, must be unique
        """
        if caller.is_admin:
            if payload.company_id is None:
                raise ValidationFailed(
                    "company_id is required when an admin creates a product",
                    code="missing_fields",
                    fields=["company_id"],
                )
            company = self.user_repo.get_by_id(session, payload.company_id)
            if company is None or company.role != "company_rep":
                raise NotFound("Company not found", code="company_not_found")
            company_id = company.id
        elif caller.role == "company_rep":
            company_id = caller.id
        else:
            raise AccessDenied("Only companies and admins can add products")

        if payload.barcode and self.repo.get_by_barcode(session, payload.barcode):
            raise Conflict(
                "A product with this barcode already exists",
                code="duplicate_barcode",
                barcode=payload.barcode,
            )

        product = Product(
            company_id=company_id,
            **payload.model_dump(exclude={"company_id"}),
        )
        product = self.repo.create(session, product)
        logger.info("Product %s created in catalogue %s", product.id, company_id)
        return product

    def update_stock(
        self,
        session: Session,
        caller: CallerContext,
        product_id: uuid.UUID,
        payload: StockUpdate,
    ) -> Product:
        """
        Set the absolute stock level (restock / stock count).
        """
        product = self.get_product(session, product_id)
        self._ensure_owner(product, caller)

        previous = product.stock_quantity
        product.stock_quantity = payload.stock_quantity
        product = self.repo.update(session, product)
        logger.info(
            "Stock for product %s: %d -> %d by %s",
            product.id,
            previous,
            product.stock_quantity,
            caller.id,
        )
        return product
