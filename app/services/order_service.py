# app/services/order_service.py
import logging
import random
import uuid
from datetime import datetime, timedelta

from sqlmodel import Session

from app.core.config import get_settings
from app.core.errors import (
    AccessDenied,
    Conflict,
    DomainRuleViolation,
    InvalidTransition,
    NotFound,
    ValidationFailed,
)
from app.models.delivery import Delivery, DeliveryItem
from app.models.order import Order, OrderItem, OrderTimelineEntry
from app.models.product import Product
from app.models.user import User
from app.repositories.delivery_repo import DeliveryRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.product_repo import ProductRepository
from app.repositories.user_repo import UserRepository
from app.schemas.common import Pagination, clamp_page
from app.schemas.notification import NotificationEvent
from app.schemas.order import (
    AssignWorkerRequest,
    AssignWorkerResult,
    ById,
    OrderCreate,
    OrderCreated,
    OrderDetailRead,
    OrderItemRead,
    OrderListItem,
    OrderListResponse,
    OrderListSummary,
    OrderRef,
    OrderStatusResult,
    OrderStatusUpdate,
    PartyRead,
    TimelineEntryRead,
)
from app.schemas.user import CallerContext
from app.services.workflow import (
    DELIVERY_TERMINAL_STATUSES,
    ORDER_ASSIGNABLE_STATUSES,
    ORDER_TERMINAL_STATUSES,
    WORKER_ORDER_TARGETS,
    apply_delivery_status,
    as_utc,
    ensure_order_transition,
    order_status_note,
    utcnow,
)

logger = logging.getLogger(__name__)

settings = get_settings()

TAX_RATE = settings.TAX_RATE
DELIVERY_CHARGE = settings.DELIVERY_CHARGE

DELIVERY_NUMBER_ATTEMPTS = 50

# Delivery outcome -> order status it drives
DELIVERY_OUTCOME_TARGETS = {
    "picked_up": "picked_up",
    "delivered": "delivered",
    "failed": "cancelled",
}

_STATUS_NOTIFICATION_TYPES = {
    "approved": "order_approved",
    "rejected": "order_rejected",
    "cancelled": "order_cancelled",
}

_HIGH_PRIORITY_STATUSES = {"rejected", "cancelled", "rejected_by_worker"}


class OrderService:
    """
    Business logic for the order workflow.

    Responsibilities:
      - Place orders: validate items against the company's catalogue,
        price them and take the stock, all in one transaction
      - Enforce the order status machine and who may drive each step
      - Keep the append-only timeline
      - Open / rebind / close the Delivery that follows an order
      - Apply delivery outcomes back onto the order

    Mutating operations return (result, events); the caller dispatches the
    events after the commit.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        product_repo: ProductRepository,
        user_repo: UserRepository,
        delivery_repo: DeliveryRepository,
    ):
        self.order_repo = order_repo
        self.product_repo = product_repo
        self.user_repo = user_repo
        self.delivery_repo = delivery_repo

    # -------- Queries --------

    def list_orders(
        self,
        session: Session,
        caller: CallerContext,
        page: int | None = None,
        limit: int | None = None,
        statuses: list[str] | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
    ) -> OrderListResponse:
        """
        Role-scoped, paginated order listing.

        The summary block covers every order matching the filters, not
        just the returned page.
        """
        page, limit = clamp_page(
            page, limit, settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE
        )
        search = search.strip() if search else None

        clauses = self.order_repo.filtered_query(
            self._scope_for(caller),
            statuses=statuses,
            start_date=as_utc(start_date),
            end_date=as_utc(end_date),
            search=search,
        )

        status_counts = self.order_repo.count_by_status(session, clauses)
        total = sum(status_counts.values())
        overdue_cutoff = utcnow() - timedelta(days=settings.OVERDUE_AFTER_DAYS)

        summary = OrderListSummary(
            total_orders=total,
            status_counts=status_counts,
            total_amount=round(self.order_repo.sum_final_amount(session, clauses), 2),
            overdue=self.order_repo.count_overdue(
                session,
                clauses,
                ORDER_TERMINAL_STATUSES,
                overdue_cutoff,
            ),
        )

        orders = self.order_repo.list_orders(
            session, clauses, skip=(page - 1) * limit, limit=limit
        )
        items_by_order = self.order_repo.list_items_for_orders(
            session, [o.id for o in orders]
        )

        rows = [
            OrderListItem(
                id=o.id,
                order_number=o.order_number,
                status=o.status,
                company_name=o.company_name,
                shop_name=o.shop_name,
                delivery_area=o.delivery_area,
                final_amount=o.final_amount,
                created_at=o.created_at,
                delivered_at=o.delivered_at,
                items=[self._item_dto(it) for it in items_by_order.get(o.id, [])],
            )
            for o in orders
        ]

        return OrderListResponse(
            orders=rows,
            pagination=Pagination.build(page, limit, total),
            summary=summary,
        )

    def get_order(
        self,
        session: Session,
        caller: CallerContext,
        ref: OrderRef,
    ) -> OrderDetailRead:
        """
        Full order view for the admin or any party on the order.

        - 404 if the reference resolves to nothing
        - 403 if the caller is not a party
        """
        order = self._resolve(session, ref)
        if not (caller.is_admin or self._is_party(order, caller)):
            raise AccessDenied("Not authorized to view this order")

        items = self.order_repo.list_items_for_order(session, order.id)
        timeline = self.order_repo.list_timeline(session, order.id)
        return self._build_detail(order, items, timeline)

    # -------- Order creation --------

    def create_order(
        self,
        session: Session,
        caller: CallerContext,
        payload: OrderCreate,
    ) -> tuple[OrderCreated, list[NotificationEvent]]:
        """
        Place a new order for the calling shopkeeper.

        Steps:
          1. Caller must be a shopkeeper.
          2. Required fields: company, items, delivery address/area/city.
          3. Company must be an active company representative.
          4. For each item:
             - product exists and belongs to the company
             - quantity passes the product's eligibility check
             Every failing item is reported, not just the first.
          5. Price lines (explicit price or current catalogue price),
             then total, 5% tax, fixed delivery charge, final amount.
          6. Allocate the next order number.
          7. Insert Order + OrderItem rows, take stock for every line,
             append the "created" timeline entry.
          8. Commit. Any failure in 6-7 rolls the whole thing back.
        """
        # 1) Role
        if caller.role != "shopkeeper":
            raise AccessDenied("Only shopkeepers can place orders")

        # 2) Required fields
        missing = [
            name
            for name, value in (
                ("company_id", payload.company_id),
                ("items", payload.items),
                ("delivery_address", payload.delivery_address),
                ("delivery_area", payload.delivery_area),
                ("delivery_city", payload.delivery_city),
            )
            if not value
        ]
        if missing:
            raise ValidationFailed(
                "Missing required fields",
                code="missing_fields",
                fields=missing,
            )

        bad_lines = [
            str(it.product_id)
            for it in payload.items
            if it.quantity <= 0 or (it.unit_price is not None and it.unit_price <= 0)
        ]
        if bad_lines:
            raise ValidationFailed(
                "Item quantity and price must be positive",
                code="invalid_item",
                product_ids=bad_lines,
            )

        # 3) Company
        company = self.user_repo.get_by_id(session, payload.company_id)
        if (
            company is None
            or company.role != "company_rep"
            or company.status != "active"
        ):
            raise DomainRuleViolation(
                "Invalid or inactive company",
                code="invalid_company",
                company_id=str(payload.company_id),
            )

        shopkeeper = self.user_repo.get_by_id(session, caller.id)
        if shopkeeper is None:
            raise NotFound("Shopkeeper profile not found", code="user_not_found")

        # 4) Items
        products: dict[uuid.UUID, Product] = {}
        missing_products: list[str] = []
        errors: list[dict[str, str]] = []

        for it in payload.items:
            product = self.product_repo.get_by_id(session, it.product_id)
            if product is None:
                missing_products.append(str(it.product_id))
                continue
            products[it.product_id] = product

            if product.company_id != company.id:
                errors.append(
                    {
                        "product_id": str(it.product_id),
                        "reason": f"Product {product.name} does not belong to this company",
                    }
                )
                continue

            reason = product.order_rejection_reason(it.quantity)
            if reason:
                errors.append({"product_id": str(it.product_id), "reason": reason})

        if missing_products:
            raise NotFound(
                "Product not found",
                code="product_not_found",
                product_ids=missing_products,
            )
        if errors:
            raise DomainRuleViolation(
                "; ".join(e["reason"] for e in errors),
                code="order_items_rejected",
                items=errors,
            )

        # 5) Pricing
        lines: list[tuple[Product, int, float, float]] = []
        for it in payload.items:
            product = products[it.product_id]
            unit_price = it.unit_price if it.unit_price is not None else product.unit_price
            lines.append((product, it.quantity, unit_price, round(it.quantity * unit_price, 2)))

        total_amount = round(sum(line[3] for line in lines), 2)
        tax_amount = round(total_amount * TAX_RATE, 2)
        delivery_charge = DELIVERY_CHARGE
        final_amount = round(total_amount + tax_amount + delivery_charge, 2)

        try:
            # 6) Number
            seq = self.order_repo.next_sequence_value(session)
            order_number = f"ORD-{seq:04d}"

            # 7) Rows + stock
            order = Order(
                order_number=order_number,
                shopkeeper_id=shopkeeper.id,
                company_id=company.id,
                shopkeeper_name=shopkeeper.name,
                shop_name=shopkeeper.shop_name,
                shopkeeper_phone=shopkeeper.phone,
                company_name=company.display_name,
                company_phone=company.phone,
                total_amount=total_amount,
                tax_amount=tax_amount,
                delivery_charge=delivery_charge,
                final_amount=final_amount,
                delivery_address=payload.delivery_address,
                delivery_area=payload.delivery_area,
                delivery_city=payload.delivery_city,
                delivery_instructions=payload.delivery_instructions or "",
                preferred_delivery_date=payload.preferred_delivery_date,
                notes=payload.notes or "",
                payment_method=payload.payment_method,
                status="pending",
            )
            order = self.order_repo.create_order(session, order)

            self.order_repo.create_items(
                session,
                [
                    OrderItem(
                        order_id=order.id,
                        product_id=product.id,
                        position=pos,
                        product_name=product.name,
                        quantity=quantity,
                        unit_price=unit_price,
                        line_total=line_total,
                        unit=product.unit,
                    )
                    for pos, (product, quantity, unit_price, line_total) in enumerate(lines)
                ],
            )

            for product, quantity, _, _ in lines:
                if not self.product_repo.decrement_stock(session, product.id, quantity):
                    # Someone else took the stock between the check and now
                    raise DomainRuleViolation(
                        f"Insufficient stock for {product.name}: cannot order "
                        f"{quantity}, available {product.stock_quantity}",
                        code="insufficient_stock",
                        product_id=str(product.id),
                        requested=quantity,
                        available=product.stock_quantity,
                    )

            self._append_timeline(
                session,
                order,
                "pending",
                "Order created by shopkeeper",
                actor_name=shopkeeper.name,
                actor_role="shopkeeper",
            )

            # 8) Commit
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        logger.info(
            "Order %s placed by %s with company %s (final %.2f)",
            order.order_number,
            shopkeeper.id,
            company.id,
            order.final_amount,
        )

        events = [
            NotificationEvent(
                recipient_id=company.id,
                type="order_placed",
                title="New order received",
                message=(
                    f"New order {order.order_number} from "
                    f"{order.shop_name or order.shopkeeper_name}"
                ),
                priority="medium",
                related_order_id=order.id,
                data={"order_number": order.order_number, "final_amount": order.final_amount},
            )
        ]

        result = OrderCreated(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            total_amount=order.total_amount,
            tax_amount=order.tax_amount,
            delivery_charge=order.delivery_charge,
            final_amount=order.final_amount,
            created_at=order.created_at,
        )
        return result, events

    # -------- Status machine --------

    def update_status(
        self,
        session: Session,
        caller: CallerContext,
        ref: OrderRef,
        payload: OrderStatusUpdate,
    ) -> tuple[OrderStatusResult, list[NotificationEvent]]:
        """
        Move an order along its lifecycle.

        Steps:
          1. Resolve the order (404).
          2. Check the caller may request this target from this state.
          3. Check the transition table. An order with an open delivery
             only reaches delivered through delivery completion.
          4. For `assigned`, resolve and validate the worker.
          5. Apply status, side effects (stock restore, delivery record),
             timeline entry, and commit once.

        Nothing is written if any check fails.
        """
        order = self._resolve(session, ref)
        target = payload.status

        self._authorize_status_change(order, caller, target)
        ensure_order_transition(order.status, target)

        if target == "delivered":
            open_delivery = self.delivery_repo.get_active_for_order(
                session, order.id, DELIVERY_TERMINAL_STATUSES
            )
            if open_delivery is not None:
                raise DomainRuleViolation(
                    "Complete the delivery with proof to mark this order delivered",
                    code="complete_delivery_required",
                    delivery_id=str(open_delivery.id),
                )

        worker: User | None = None
        active_delivery: Delivery | None = None
        if target == "assigned":
            worker_id = payload.assigned_delivery_worker_id or order.delivery_worker_id
            if worker_id is None:
                raise ValidationFailed(
                    "A delivery worker is required to assign an order",
                    code="worker_required",
                )
            worker = self._resolve_worker(session, worker_id, order, check_area=False)
            active_delivery = self._active_delivery_for_assignment(session, order)

        reason = (payload.rejection_reason or "").strip() or None
        previous = order.status
        now = utcnow()

        order.status = target
        order.updated_at = now

        if target == "approved":
            order.approved_by_id = caller.id
        elif target in ("rejected", "cancelled"):
            order.rejection_reason = reason or ""
            self._restore_stock(session, order)
        elif target == "delivered":
            order.delivered_at = now

        delivery: Delivery | None = None
        if worker is not None:
            self._bind_worker(order, worker)
            delivery = self._open_delivery(session, order, worker, active_delivery, now)
        else:
            self._sync_delivery_from_order(session, order, target, now, reason)

        self.order_repo.update_order(session, order)
        self._append_timeline(
            session,
            order,
            target,
            order_status_note(target, reason),
            actor_name=caller.name,
            actor_role=caller.role,
        )
        session.commit()
        session.refresh(order)

        logger.info(
            "Order %s: %s -> %s by %s (%s)",
            order.order_number,
            previous,
            target,
            caller.id,
            caller.role,
        )

        events = self._status_events(order, target, caller, reason)
        if delivery is not None:
            events.append(self._assignment_event(order, delivery))

        return (
            OrderStatusResult(
                id=order.id,
                order_number=order.order_number,
                status=order.status,
                updated_at=order.updated_at,
            ),
            events,
        )

    def assign_delivery_worker(
        self,
        session: Session,
        caller: CallerContext,
        ref: OrderRef,
        payload: AssignWorkerRequest,
    ) -> tuple[AssignWorkerResult, list[NotificationEvent]]:
        """
        Bind a delivery worker to an order and open its Delivery.

        Steps:
          1. Caller is an admin or the order's company.
          2. Order is approved, assigned or rejected_by_worker.
          3. Worker exists, is an active delivery_worker, is not the one
             already bound, and covers the order's area (only checked when
             both the worker's areas and the order's area are set).
          4. Order -> assigned, worker snapshot, Delivery created (or the
             still-untouched one rebound), timeline entry, commit.
        """
        if caller.role not in ("admin", "company_rep"):
            raise AccessDenied("Only companies and admins can assign delivery workers")

        order = self._resolve(session, ref)
        if caller.role == "company_rep" and order.company_id != caller.id:
            raise AccessDenied("You can only assign workers to your own orders")

        if order.status not in ORDER_ASSIGNABLE_STATUSES:
            raise InvalidTransition("order", order.status, "assigned")

        if order.delivery_worker_id == payload.delivery_worker_id:
            raise DomainRuleViolation(
                "This delivery worker is already assigned to the order",
                code="worker_already_assigned",
                delivery_worker_id=str(payload.delivery_worker_id),
            )

        worker = self._resolve_worker(
            session, payload.delivery_worker_id, order, check_area=True
        )
        active_delivery = self._active_delivery_for_assignment(session, order)

        previous = order.status
        now = utcnow()
        order.status = "assigned"
        order.updated_at = now
        self._bind_worker(order, worker)
        delivery = self._open_delivery(session, order, worker, active_delivery, now)

        self.order_repo.update_order(session, order)
        self._append_timeline(
            session,
            order,
            "assigned",
            f"Order assigned to delivery worker {worker.name}",
            actor_name=caller.name,
            actor_role=caller.role,
        )
        session.commit()
        session.refresh(order)
        session.refresh(delivery)

        logger.info(
            "Order %s: %s -> assigned, worker %s, delivery %s",
            order.order_number,
            previous,
            worker.id,
            delivery.delivery_number,
        )

        events = [
            self._assignment_event(order, delivery),
            NotificationEvent(
                recipient_id=order.shopkeeper_id,
                type="order_status",
                title="Delivery worker assigned",
                message=f"{worker.name} will deliver order {order.order_number}",
                priority="medium",
                related_order_id=order.id,
                related_delivery_id=delivery.id,
            ),
        ]

        result = AssignWorkerResult(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            delivery_id=delivery.id,
            delivery_number=delivery.delivery_number,
            delivery_worker=PartyRead(id=worker.id, name=worker.name, phone=worker.phone),
        )
        return result, events

    # -------- Delivery -> order coupling --------

    def check_delivery_outcome(
        self, session: Session, order_id: uuid.UUID, outcome: str
    ) -> None:
        """Raise InvalidTransition if the order cannot follow this delivery outcome."""
        order = self.order_repo.get_by_id(session, order_id)
        if order is None or order.status in ORDER_TERMINAL_STATUSES:
            return
        target = DELIVERY_OUTCOME_TARGETS[outcome]
        if order.status != target:
            ensure_order_transition(order.status, target)

    def sync_order_from_delivery(
        self,
        session: Session,
        order_id: uuid.UUID,
        outcome: str,
        caller: CallerContext,
        reason: str | None = None,
    ) -> Order | None:
        """
        Apply a delivery outcome (picked_up / delivered / failed) to its order.

        Runs inside the caller's transaction and does not commit. Orders
        already in a terminal status are left alone; any other move must be
        allowed by the order transition table. A failed delivery cancels
        the order and puts the stock back.
        """
        order = self.order_repo.get_by_id(session, order_id)
        if order is None:
            logger.warning("Delivery outcome %s for missing order %s", outcome, order_id)
            return None

        target = DELIVERY_OUTCOME_TARGETS[outcome]
        if order.status in ORDER_TERMINAL_STATUSES:
            logger.warning(
                "Order %s is %s; ignoring delivery outcome %s",
                order.order_number,
                order.status,
                outcome,
            )
            return order
        if order.status == target:
            return order
        ensure_order_transition(order.status, target)

        now = utcnow()
        order.status = target
        order.updated_at = now

        note_reason = None
        if target == "delivered":
            order.delivered_at = now
        elif target == "cancelled":
            note_reason = f"Delivery failed: {reason or 'No reason provided'}"
            order.rejection_reason = note_reason
            self._restore_stock(session, order)

        self.order_repo.update_order(session, order)
        self._append_timeline(
            session,
            order,
            target,
            order_status_note(target, note_reason),
            actor_name=caller.name,
            actor_role=caller.role,
        )
        return order

    # -------- Helpers --------

    def _resolve(self, session: Session, ref: OrderRef) -> Order:
        if isinstance(ref, ById):
            order = self.order_repo.get_by_id(session, ref.id)
        else:
            order = self.order_repo.get_by_number(session, ref.number)
        if order is None:
            raise NotFound("Order not found", code="order_not_found")
        return order

    @staticmethod
    def _is_party(order: Order, caller: CallerContext) -> bool:
        return caller.id in (
            order.shopkeeper_id,
            order.company_id,
            order.delivery_worker_id,
        )

    @staticmethod
    def _scope_for(caller: CallerContext) -> dict[str, uuid.UUID]:
        if caller.role == "shopkeeper":
            return {"shopkeeper_id": caller.id}
        if caller.role == "company_rep":
            return {"company_id": caller.id}
        if caller.role == "delivery_worker":
            return {"delivery_worker_id": caller.id}
        if caller.is_admin:
            return {}
        raise AccessDenied("Role cannot list orders")

    @staticmethod
    def _authorize_status_change(
        order: Order,
        caller: CallerContext,
        target: str,
    ) -> None:
        """
        Role gate for update_status:
          - admin: any target
          - company_rep: own company's orders
          - shopkeeper: cancel own order, only while pending
          - delivery_worker: accept/reject/pickup/deliver on orders
            assigned to them
        """
        if caller.is_admin:
            return

        if caller.role == "company_rep":
            if order.company_id != caller.id:
                raise AccessDenied("Not authorized to update this order")
            return

        if caller.role == "shopkeeper":
            if order.shopkeeper_id != caller.id or target != "cancelled":
                raise AccessDenied("Shopkeepers can only cancel their own orders")
            if order.status != "pending":
                raise DomainRuleViolation(
                    "Orders can only be cancelled by the shopkeeper while pending",
                    code="cancel_window_closed",
                    current_status=order.status,
                )
            return

        if caller.role == "delivery_worker":
            if order.delivery_worker_id != caller.id:
                raise AccessDenied("This order is not assigned to you")
            if target not in WORKER_ORDER_TARGETS:
                raise AccessDenied(
                    f"Delivery workers cannot set status {target}",
                    requested_status=target,
                )
            return

        raise AccessDenied("Not authorized to update this order")

    def _resolve_worker(
        self,
        session: Session,
        worker_id: uuid.UUID,
        order: Order,
        check_area: bool,
    ) -> User:
        worker = self.user_repo.get_by_id(session, worker_id)
        if worker is None:
            raise NotFound("Delivery worker not found", code="worker_not_found")
        if worker.role != "delivery_worker" or worker.status != "active":
            raise DomainRuleViolation(
                "Invalid or inactive delivery worker",
                code="invalid_worker",
                delivery_worker_id=str(worker_id),
            )

        if check_area and worker.assigned_areas and order.delivery_area:
            areas = {a.strip().lower() for a in worker.assigned_areas}
            if order.delivery_area.strip().lower() not in areas:
                raise DomainRuleViolation(
                    "Delivery worker does not cover this area",
                    code="area_mismatch",
                    delivery_area=order.delivery_area,
                    worker_areas=worker.assigned_areas,
                )
        return worker

    def _active_delivery_for_assignment(
        self,
        session: Session,
        order: Order,
    ) -> Delivery | None:
        active = self.delivery_repo.get_active_for_order(
            session, order.id, DELIVERY_TERMINAL_STATUSES
        )
        if active is not None and active.status != "assigned":
            raise DomainRuleViolation(
                "The current delivery is already under way",
                code="delivery_in_progress",
                delivery_status=active.status,
            )
        return active

    @staticmethod
    def _bind_worker(order: Order, worker: User) -> None:
        order.delivery_worker_id = worker.id
        order.delivery_worker_name = worker.name
        order.delivery_worker_phone = worker.phone

    def _open_delivery(
        self,
        session: Session,
        order: Order,
        worker: User,
        active: Delivery | None,
        now: datetime,
    ) -> Delivery:
        """
        Rebind the untouched active delivery, or create a fresh one with
        item snapshots.
        """
        if active is not None:
            active.delivery_worker_id = worker.id
            active.delivery_worker_name = worker.name
            active.delivery_worker_phone = worker.phone
            active.assigned_at = now
            active.updated_at = now
            return self.delivery_repo.update(session, active)

        company = self.user_repo.get_by_id(session, order.company_id)
        pickup = "Company warehouse"
        if company is not None:
            parts = [p for p in (company.address, company.area, company.city) if p]
            if parts:
                pickup = ", ".join(parts)

        delivery = Delivery(
            delivery_number=self._generate_delivery_number(session, now),
            order_id=order.id,
            delivery_worker_id=worker.id,
            shopkeeper_id=order.shopkeeper_id,
            company_id=order.company_id,
            shopkeeper_name=order.shop_name or order.shopkeeper_name,
            shopkeeper_phone=order.shopkeeper_phone,
            company_name=order.company_name,
            company_phone=order.company_phone,
            delivery_worker_name=worker.name,
            delivery_worker_phone=worker.phone,
            pickup_location=pickup,
            delivery_location=", ".join(
                p for p in (order.delivery_address, order.delivery_area, order.delivery_city) if p
            ),
            delivery_area=order.delivery_area,
            delivery_instructions=order.delivery_instructions,
            status="assigned",
            assigned_at=now,
            payment_method=order.payment_method,
            amount_to_collect=(
                order.final_amount if order.payment_method == "cash_on_delivery" else 0
            ),
        )
        delivery = self.delivery_repo.create(session, delivery)

        items = self.order_repo.list_items_for_order(session, order.id)
        self.delivery_repo.create_items(
            session,
            [
                DeliveryItem(
                    delivery_id=delivery.id,
                    product_id=it.product_id,
                    position=it.position,
                    product_name=it.product_name,
                    quantity=it.quantity,
                    unit=it.unit,
                )
                for it in items
            ],
        )
        return delivery

    def _generate_delivery_number(self, session: Session, now: datetime) -> str:
        prefix = f"DEL{now:%Y%m%d}"
        for _ in range(DELIVERY_NUMBER_ATTEMPTS):
            candidate = f"{prefix}{random.randint(0, 9999):04d}"
            if not self.delivery_repo.number_exists(session, candidate):
                return candidate
        logger.error(
            "No free delivery number for %s after %d attempts",
            prefix,
            DELIVERY_NUMBER_ATTEMPTS,
        )
        raise Conflict(
            "Could not allocate a delivery number, try again",
            code="delivery_number_exhausted",
        )

    def _sync_delivery_from_order(
        self,
        session: Session,
        order: Order,
        target: str,
        now: datetime,
        reason: str | None,
    ) -> None:
        """
        Mirror an order status change onto its active delivery:
          - cancelled / rejected / rejected_by_worker -> returned
          - picked_up -> picked_up (from assigned)

        Delivered is not mirrored; it only comes from delivery completion.
        """
        active = self.delivery_repo.get_active_for_order(
            session, order.id, DELIVERY_TERMINAL_STATUSES
        )
        if active is None:
            return

        if target in ("cancelled", "rejected", "rejected_by_worker"):
            apply_delivery_status(active, "returned", now)
            active.failure_reason = reason or order_status_note(target, reason)
        elif target == "picked_up" and active.status == "assigned":
            apply_delivery_status(active, "picked_up", now)
        else:
            return
        self.delivery_repo.update(session, active)

    def _restore_stock(self, session: Session, order: Order) -> None:
        for it in self.order_repo.list_items_for_order(session, order.id):
            self.product_repo.restore_stock(session, it.product_id, it.quantity)

    def _append_timeline(
        self,
        session: Session,
        order: Order,
        status: str,
        note: str,
        actor_name: str,
        actor_role: str,
    ) -> OrderTimelineEntry:
        return self.order_repo.append_timeline(
            session,
            OrderTimelineEntry(
                order_id=order.id,
                status=status,
                note=note,
                actor_name=actor_name,
                actor_role=actor_role,
                timestamp=utcnow(),
            ),
        )

    # -------- Notifications --------

    @staticmethod
    def _status_events(
        order: Order,
        target: str,
        caller: CallerContext,
        reason: str | None,
    ) -> list[NotificationEvent]:
        """Notify every other party on the order about a status change."""
        recipients = [
            pid
            for pid in (order.shopkeeper_id, order.company_id, order.delivery_worker_id)
            if pid is not None and pid != caller.id
        ]
        # A worker who was let go of the order no longer needs updates
        if target == "rejected_by_worker":
            recipients = [pid for pid in recipients if pid != order.delivery_worker_id]

        note = order_status_note(target, reason)
        return [
            NotificationEvent(
                recipient_id=pid,
                type=_STATUS_NOTIFICATION_TYPES.get(target, "order_status"),
                title=f"Order {order.order_number} {target.replace('_', ' ')}",
                message=note,
                priority="high" if target in _HIGH_PRIORITY_STATUSES else "medium",
                related_order_id=order.id,
                data={"order_number": order.order_number, "status": target},
            )
            for pid in dict.fromkeys(recipients)
        ]

    @staticmethod
    def _assignment_event(order: Order, delivery: Delivery) -> NotificationEvent:
        return NotificationEvent(
            recipient_id=delivery.delivery_worker_id,
            type="delivery_assigned",
            title="New delivery assigned",
            message=(
                f"Delivery {delivery.delivery_number} for order "
                f"{order.order_number} in {order.delivery_area}"
            ),
            priority="high",
            related_order_id=order.id,
            related_delivery_id=delivery.id,
            data={
                "delivery_number": delivery.delivery_number,
                "pickup_location": delivery.pickup_location,
                "delivery_location": delivery.delivery_location,
            },
        )

    # -------- DTO builders --------

    @staticmethod
    def _item_dto(item: OrderItem) -> OrderItemRead:
        return OrderItemRead(
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            line_total=item.line_total,
            unit=item.unit,
        )

    def _build_detail(
        self,
        order: Order,
        items: list[OrderItem],
        timeline: list[OrderTimelineEntry],
    ) -> OrderDetailRead:
        entries = [
            TimelineEntryRead(
                status=t.status,
                timestamp=t.timestamp,
                note=t.note,
                actor_name=t.actor_name,
                actor_role=t.actor_role,
            )
            for t in timeline
        ]
        if not entries:
            # Orders imported without history still get a starting point
            entries = [
                TimelineEntryRead(
                    status="pending",
                    timestamp=order.created_at,
                    note="Order created",
                    actor_name=order.shopkeeper_name or "System",
                    actor_role="shopkeeper",
                )
            ]

        worker = None
        if order.delivery_worker_id is not None:
            worker = PartyRead(
                id=order.delivery_worker_id,
                name=order.delivery_worker_name or "",
                phone=order.delivery_worker_phone or "",
            )

        return OrderDetailRead(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            items=[self._item_dto(it) for it in items],
            total_amount=order.total_amount,
            tax_amount=order.tax_amount,
            delivery_charge=order.delivery_charge,
            final_amount=order.final_amount,
            delivery_address=order.delivery_address,
            delivery_area=order.delivery_area,
            delivery_city=order.delivery_city,
            delivery_instructions=order.delivery_instructions,
            preferred_delivery_date=order.preferred_delivery_date,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            notes=order.notes,
            rejection_reason=order.rejection_reason,
            shopkeeper=PartyRead(
                id=order.shopkeeper_id,
                name=order.shopkeeper_name,
                business_name=order.shop_name,
                phone=order.shopkeeper_phone,
            ),
            company=PartyRead(
                id=order.company_id,
                name=order.company_name,
                business_name=order.company_name,
                phone=order.company_phone,
            ),
            delivery_worker=worker,
            timeline=entries,
            created_at=order.created_at,
            delivered_at=order.delivered_at,
        )
