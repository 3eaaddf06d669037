# app/repositories/delivery_repo.py
import uuid

from sqlalchemy import func
from sqlmodel import Session, select, col

from app.models.delivery import Delivery, DeliveryIssue, DeliveryItem


class DeliveryRepository:
    """
    Data access layer for deliveries, their item snapshots and issues.

    No commits here; the delivery workflow commits once per operation.
    """

    # ---- Deliveries ----

    def get_by_id(self, session: Session, delivery_id: uuid.UUID) -> Delivery | None:
        return session.get(Delivery, delivery_id)

    def number_exists(self, session: Session, delivery_number: str) -> bool:
        stmt = select(Delivery.id).where(Delivery.delivery_number == delivery_number)
        return session.exec(stmt).first() is not None

    def get_active_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
        terminal_statuses: set[str],
    ) -> Delivery | None:
        """Latest non-terminal delivery for an order, if any."""
        stmt = (
            select(Delivery)
            .where(Delivery.order_id == order_id)
            .where(col(Delivery.status).not_in(terminal_statuses))
            .order_by(col(Delivery.assigned_at).desc())
        )
        return session.exec(stmt).first()

    def _filters(
        self,
        worker_id: uuid.UUID | None = None,
        company_id: uuid.UUID | None = None,
        status: str | None = None,
        area: str | None = None,
    ) -> list:
        clauses = []
        if worker_id is not None:
            clauses.append(Delivery.delivery_worker_id == worker_id)
        if company_id is not None:
            clauses.append(Delivery.company_id == company_id)
        if status:
            clauses.append(Delivery.status == status)
        if area:
            clauses.append(col(Delivery.delivery_area).ilike(f"%{area}%"))
        return clauses

    def list_deliveries(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 10,
        **filters,
    ) -> tuple[list[Delivery], int]:
        """
        Paginated listing, newest assignment first, plus the total count.
        """
        clauses = self._filters(**filters)
        stmt = (
            select(Delivery)
            .where(*clauses)
            .order_by(col(Delivery.assigned_at).desc())
            .offset(skip)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Delivery).where(*clauses)
        return session.exec(stmt).all(), int(session.exec(count_stmt).one())

    def create(self, session: Session, delivery: Delivery) -> Delivery:
        session.add(delivery)
        session.flush()
        session.refresh(delivery)
        return delivery

    def update(self, session: Session, delivery: Delivery) -> Delivery:
        session.add(delivery)
        session.flush()
        return delivery

    # ---- Items ----

    def list_items(self, session: Session, delivery_id: uuid.UUID) -> list[DeliveryItem]:
        stmt = (
            select(DeliveryItem)
            .where(DeliveryItem.delivery_id == delivery_id)
            .order_by(DeliveryItem.position)
        )
        return session.exec(stmt).all()

    def create_items(self, session: Session, items: list[DeliveryItem]) -> list[DeliveryItem]:
        session.add_all(items)
        session.flush()
        return items

    # ---- Issues ----

    def list_issues(self, session: Session, delivery_id: uuid.UUID) -> list[DeliveryIssue]:
        stmt = (
            select(DeliveryIssue)
            .where(DeliveryIssue.delivery_id == delivery_id)
            .order_by(DeliveryIssue.sequence)
        )
        return session.exec(stmt).all()

    def append_issue(self, session: Session, issue: DeliveryIssue) -> DeliveryIssue:
        stmt = select(func.coalesce(func.max(DeliveryIssue.sequence), 0)).where(
            DeliveryIssue.delivery_id == issue.delivery_id
        )
        issue.sequence = int(session.exec(stmt).one()) + 1
        session.add(issue)
        session.flush()
        return issue
