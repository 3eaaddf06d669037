# app/repositories/order_repo.py
import uuid
from datetime import datetime

from sqlalchemy import func, or_
from sqlmodel import Session, select, col

from app.models.order import Order, OrderItem, OrderTimelineEntry, OrderSequence


class OrderRepository:
    """
    Data access layer for orders, their items and timeline.

    NOTE:
      - No commits here; order workflows are multi-step transactions.
        The service is responsible for calling session.commit().
    """

    # ---- Orders ----

    def get_by_id(self, session: Session, order_id: uuid.UUID) -> Order | None:
        return session.get(Order, order_id)

    def get_by_number(self, session: Session, order_number: str) -> Order | None:
        stmt = select(Order).where(Order.order_number == order_number)
        return session.exec(stmt).first()

    def filtered_query(
        self,
        scope: dict[str, uuid.UUID],
        statuses: list[str] | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
    ):
        """
        Build a WHERE clause list for order listing.

        `scope` maps an Order column name to the caller's id, e.g.
        {"shopkeeper_id": <uuid>}; empty means no scoping (admin).
        """
        clauses = []
        for column_name, value in scope.items():
            clauses.append(getattr(Order, column_name) == value)
        if statuses:
            clauses.append(col(Order.status).in_(statuses))
        if start_date is not None:
            clauses.append(Order.created_at >= start_date)
        if end_date is not None:
            clauses.append(Order.created_at <= end_date)
        if search:
            pattern = f"%{search}%"
            matching_items = select(OrderItem.order_id).where(
                col(OrderItem.product_name).ilike(pattern)
            )
            clauses.append(
                or_(
                    col(Order.order_number).ilike(pattern),
                    col(Order.id).in_(matching_items),
                )
            )
        return clauses

    def list_orders(
        self,
        session: Session,
        clauses: list,
        skip: int = 0,
        limit: int = 10,
    ) -> list[Order]:
        stmt = (
            select(Order)
            .where(*clauses)
            .order_by(col(Order.created_at).desc())
            .offset(skip)
            .limit(limit)
        )
        return session.exec(stmt).all()

    def count_by_status(self, session: Session, clauses: list) -> dict[str, int]:
        stmt = (
            select(Order.status, func.count())
            .where(*clauses)
            .group_by(Order.status)
        )
        return {status: count for status, count in session.exec(stmt).all()}

    def sum_final_amount(self, session: Session, clauses: list) -> float:
        stmt = select(func.coalesce(func.sum(Order.final_amount), 0)).where(*clauses)
        return float(session.exec(stmt).one())

    def count_overdue(
        self,
        session: Session,
        clauses: list,
        terminal_statuses: set[str],
        created_before: datetime,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(Order)
            .where(*clauses)
            .where(col(Order.status).not_in(terminal_statuses))
            .where(Order.created_at < created_before)
        )
        return int(session.exec(stmt).one())

    def create_order(self, session: Session, order: Order) -> Order:
        """
        Insert an Order without committing, but ensure id is populated.
        """
        session.add(order)
        session.flush()  # Assign PK
        session.refresh(order)
        return order

    def update_order(self, session: Session, order: Order) -> Order:
        session.add(order)
        session.flush()
        session.refresh(order)
        return order

    # ---- Order numbers ----

    def next_sequence_value(self, session: Session, name: str = "order") -> int:
        """
        Increment and return the named counter.

        The row is locked (FOR UPDATE on Postgres) until the surrounding
        transaction ends.
        """
        stmt = select(OrderSequence).where(OrderSequence.name == name).with_for_update()
        seq = session.exec(stmt).first()
        if seq is None:
            seq = OrderSequence(name=name, value=0)
        seq.value += 1
        session.add(seq)
        session.flush()
        return seq.value

    # ---- Order items ----

    def list_items_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[OrderItem]:
        stmt = (
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.position)
        )
        return session.exec(stmt).all()

    def list_items_for_orders(
        self,
        session: Session,
        order_ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, list[OrderItem]]:
        grouped: dict[uuid.UUID, list[OrderItem]] = {oid: [] for oid in order_ids}
        if not order_ids:
            return grouped
        stmt = (
            select(OrderItem)
            .where(col(OrderItem.order_id).in_(order_ids))
            .order_by(OrderItem.position)
        )
        for item in session.exec(stmt).all():
            grouped[item.order_id].append(item)
        return grouped

    def create_items(
        self,
        session: Session,
        items: list[OrderItem],
    ) -> list[OrderItem]:
        session.add_all(items)
        session.flush()
        for item in items:
            session.refresh(item)
        return items

    # ---- Timeline ----

    def list_timeline(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[OrderTimelineEntry]:
        stmt = (
            select(OrderTimelineEntry)
            .where(OrderTimelineEntry.order_id == order_id)
            .order_by(OrderTimelineEntry.sequence)
        )
        return session.exec(stmt).all()

    def append_timeline(
        self,
        session: Session,
        entry: OrderTimelineEntry,
    ) -> OrderTimelineEntry:
        stmt = select(func.coalesce(func.max(OrderTimelineEntry.sequence), 0)).where(
            OrderTimelineEntry.order_id == entry.order_id
        )
        entry.sequence = int(session.exec(stmt).one()) + 1
        session.add(entry)
        session.flush()
        return entry
