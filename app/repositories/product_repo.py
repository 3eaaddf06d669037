# app/repositories/product_repo.py
import uuid

from sqlalchemy import update
from sqlmodel import Session, select

from app.models.product import Product


class ProductRepository:
    """
    Data access layer for Product.

    - CRUD helpers commit (used by the catalogue endpoints).
    - Stock helpers only flush; they run inside the order workflow's
      transaction and the caller commits or rolls back.
    """

    # ----- Products -----

    def get_by_id(self, session: Session, product_id: uuid.UUID) -> Product | None:
        return session.get(Product, product_id)

    def get_by_barcode(self, session: Session, barcode: str) -> Product | None:
        stmt = select(Product).where(Product.barcode == barcode)
        return session.exec(stmt).first()

    def list_products(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
        company_id: uuid.UUID | None = None,
        only_active: bool = True,
    ) -> list[Product]:
        stmt = select(Product)
        if company_id is not None:
            stmt = stmt.where(Product.company_id == company_id)
        if only_active:
            stmt = stmt.where(Product.is_active == True)  # noqa: E712
        stmt = stmt.order_by(Product.name).offset(skip).limit(limit)
        return session.exec(stmt).all()

    def create(self, session: Session, product: Product) -> Product:
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    def update(self, session: Session, product: Product) -> Product:
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    # ----- Stock -----

    def decrement_stock(
        self,
        session: Session,
        product_id: uuid.UUID,
        quantity: int,
    ) -> bool:
        """
        Atomically take `quantity` units out of stock.

        Returns False (and changes nothing) if fewer than `quantity`
        units are left.
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .where(Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = session.exec(stmt)
        self._expire_cached(session, product_id)
        return result.rowcount == 1

    def restore_stock(
        self,
        session: Session,
        product_id: uuid.UUID,
        quantity: int,
    ) -> None:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        session.exec(stmt)
        self._expire_cached(session, product_id)

    @staticmethod
    def _expire_cached(session: Session, product_id: uuid.UUID) -> None:
        # Bulk UPDATE bypasses the identity map; force a reload on next access
        cached = session.identity_map.get(session.identity_key(Product, product_id))
        if cached is not None:
            session.expire(cached)
