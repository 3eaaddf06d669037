# app/services/delivery_service.py
import logging
import uuid

from sqlmodel import Session

from app.core.config import get_settings
from app.core.errors import (
    AccessDenied,
    DomainRuleViolation,
    NotFound,
    ValidationFailed,
)
from app.core.storage_utils import generate_filename, upload_to_storage
from app.models.delivery import Delivery, DeliveryIssue
from app.models.order import Order
from app.repositories.delivery_repo import DeliveryRepository
from app.repositories.order_repo import OrderRepository
from app.schemas.common import Pagination, clamp_page
from app.schemas.delivery import (
    DeliveryComplete,
    DeliveryIssueRead,
    DeliveryItemRead,
    DeliveryListResponse,
    DeliveryProofRead,
    DeliveryRead,
    DeliveryReturn,
    DeliveryStatusUpdate,
    DeliverySummary,
    IssueReport,
    IssueReportResult,
    ProofPhotoRead,
)
from app.schemas.notification import NotificationEvent
from app.schemas.user import CallerContext
from app.services.order_service import OrderService
from app.services.workflow import (
    DELIVERY_TERMINAL_STATUSES,
    apply_delivery_status,
    ensure_delivery_transition,
    utcnow,
)

logger = logging.getLogger(__name__)

settings = get_settings()


# --- Proof photo config ---

MAX_PROOF_PHOTO_BYTES = 5 * 1024 * 1024  # 5MB

ALLOWED_PHOTO_CONTENT_TYPES: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


class DeliveryService:
    """
    Business logic for the delivery workflow.

    Responsibilities:
      - Worker-driven progress: pick up, in transit, complete with proof
      - Issue reporting with its three outcomes (fail / resolve / record)
      - Operator override to `returned`
      - Role-scoped listings and detail view

    Outcomes that matter to the order (picked up, delivered, failed) are
    applied through OrderService.sync_order_from_delivery inside the same
    transaction, so delivery and order never disagree after a commit.
    """

    def __init__(
        self,
        delivery_repo: DeliveryRepository,
        order_repo: OrderRepository,
        order_service: OrderService,
    ):
        self.delivery_repo = delivery_repo
        self.order_repo = order_repo
        self.order_service = order_service

    # -------- Listings --------

    def list_worker_deliveries(
        self,
        session: Session,
        caller: CallerContext,
        page: int | None = None,
        limit: int | None = None,
        status: str | None = None,
    ) -> DeliveryListResponse:
        if caller.role != "delivery_worker":
            raise AccessDenied("Only delivery workers have a delivery queue")
        return self._list(session, page, limit, worker_id=caller.id, status=status)

    def list_company_deliveries(
        self,
        session: Session,
        caller: CallerContext,
        page: int | None = None,
        limit: int | None = None,
        status: str | None = None,
        area: str | None = None,
    ) -> DeliveryListResponse:
        if caller.role != "company_rep":
            raise AccessDenied("Only company representatives can list company deliveries")
        return self._list(
            session, page, limit, company_id=caller.id, status=status, area=area
        )

    def list_all_deliveries(
        self,
        session: Session,
        caller: CallerContext,
        page: int | None = None,
        limit: int | None = None,
        status: str | None = None,
        area: str | None = None,
    ) -> DeliveryListResponse:
        if not caller.is_admin:
            raise AccessDenied("Admin access required")
        return self._list(session, page, limit, status=status, area=area)

    def _list(
        self,
        session: Session,
        page: int | None,
        limit: int | None,
        **filters,
    ) -> DeliveryListResponse:
        page, limit = clamp_page(
            page, limit, settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE
        )
        rows, total = self.delivery_repo.list_deliveries(
            session, skip=(page - 1) * limit, limit=limit, **filters
        )
        return DeliveryListResponse(
            deliveries=[self._summary(d) for d in rows],
            pagination=Pagination.build(page, limit, total),
        )

    def get_delivery(
        self,
        session: Session,
        caller: CallerContext,
        delivery_id: uuid.UUID,
    ) -> DeliveryRead:
        """
        Full delivery record for the admin, the assigned worker, the
        company or the shopkeeper.
        """
        delivery = self._get(session, delivery_id)
        parties = (delivery.delivery_worker_id, delivery.company_id, delivery.shopkeeper_id)
        if not (caller.is_admin or caller.id in parties):
            raise AccessDenied("Not authorized to view this delivery")
        return self._build_read(session, delivery)

    # -------- Worker operations --------

    def update_status(
        self,
        session: Session,
        caller: CallerContext,
        delivery_id: uuid.UUID,
        payload: DeliveryStatusUpdate,
    ) -> tuple[DeliverySummary, list[NotificationEvent]]:
        """
        Worker marks pickup or transit.

        Picking up also moves the order to picked_up, so the order must
        already be accepted.
        """
        delivery = self._get_owned(session, caller, delivery_id)
        target = payload.status
        ensure_delivery_transition(delivery.status, target)
        if target == "picked_up":
            self.order_service.check_delivery_outcome(session, delivery.order_id, "picked_up")

        previous = delivery.status
        apply_delivery_status(delivery, target, utcnow())
        self.delivery_repo.update(session, delivery)

        order = None
        if target == "picked_up":
            order = self.order_service.sync_order_from_delivery(
                session, delivery.order_id, "picked_up", caller
            )
        session.commit()
        session.refresh(delivery)

        logger.info(
            "Delivery %s: %s -> %s by worker %s",
            delivery.delivery_number,
            previous,
            target,
            caller.id,
        )

        order_number = self._order_number(session, delivery, order)
        if target == "picked_up":
            message = f"Your order {order_number} has been picked up"
        else:
            message = f"Your order {order_number} is on the way"
        events = [
            NotificationEvent(
                recipient_id=delivery.shopkeeper_id,
                type=f"delivery_{target}",
                title="Delivery update",
                message=message,
                priority="medium",
                related_order_id=delivery.order_id,
                related_delivery_id=delivery.id,
            )
        ]
        return self._summary(delivery), events

    def complete_delivery(
        self,
        session: Session,
        caller: CallerContext,
        delivery_id: uuid.UUID,
        payload: DeliveryComplete,
    ) -> tuple[DeliverySummary, list[NotificationEvent]]:
        """
        Finish a delivery with proof.

        Steps:
          1. Signature is required; nothing changes without it.
          2. Worker must own the delivery, it must be able to move to
             delivered (picked_up or in_transit) and its order must be
             picked_up.
          3. Store proof, stamp delivered_at, move the order to delivered.
          4. Commit, then notify shopkeeper and company.
        """
        if not payload.signature:
            raise ValidationFailed(
                "Signature is required to complete a delivery",
                code="signature_required",
            )

        delivery = self._get_owned(session, caller, delivery_id)
        ensure_delivery_transition(delivery.status, "delivered")
        self.order_service.check_delivery_outcome(session, delivery.order_id, "delivered")

        apply_delivery_status(delivery, "delivered", utcnow())
        delivery.proof_signature = payload.signature
        delivery.proof_photo = payload.photo
        delivery.proof_notes = payload.notes
        self.delivery_repo.update(session, delivery)

        order = self.order_service.sync_order_from_delivery(
            session, delivery.order_id, "delivered", caller
        )
        session.commit()
        session.refresh(delivery)

        logger.info("Delivery %s completed by worker %s", delivery.delivery_number, caller.id)

        return self._summary(delivery), self._completion_events(session, delivery, order)

    def report_issue(
        self,
        session: Session,
        caller: CallerContext,
        delivery_id: uuid.UUID,
        payload: IssueReport,
    ) -> tuple[IssueReportResult, list[NotificationEvent]]:
        """
        Record a problem on a delivery.

        can_complete:
          - False: delivery -> failed, order -> cancelled (stock restored)
          - True:  `resolution` required; delivery -> delivered, order -> delivered
          - None:  issue recorded, statuses untouched (allowed on any delivery)

        Shopkeeper and company are always notified (high priority).
        """
        if not payload.issue_type or not payload.description:
            raise ValidationFailed(
                "Issue type and description are required",
                code="missing_fields",
            )
        if payload.can_complete is True and not payload.resolution:
            raise ValidationFailed(
                "A resolution is required when the delivery can still be completed",
                code="resolution_required",
            )

        delivery = self._get_owned(session, caller, delivery_id)
        if payload.can_complete is False:
            ensure_delivery_transition(delivery.status, "failed")
            self.order_service.check_delivery_outcome(session, delivery.order_id, "failed")
        elif payload.can_complete is True:
            ensure_delivery_transition(delivery.status, "delivered")
            self.order_service.check_delivery_outcome(session, delivery.order_id, "delivered")

        now = utcnow()
        self.delivery_repo.append_issue(
            session,
            DeliveryIssue(
                delivery_id=delivery.id,
                issue_type=payload.issue_type,
                description=payload.description,
                resolution=payload.resolution,
                reported_at=now,
            ),
        )

        order = None
        if payload.can_complete is False:
            issue_status = "delivery_failed"
            apply_delivery_status(delivery, "failed", now)
            delivery.failure_reason = payload.description
            self.delivery_repo.update(session, delivery)
            order = self.order_service.sync_order_from_delivery(
                session, delivery.order_id, "failed", caller, reason=payload.description
            )
        elif payload.can_complete is True:
            issue_status = "resolved_and_completed"
            apply_delivery_status(delivery, "delivered", now)
            delivery.proof_notes = payload.resolution
            self.delivery_repo.update(session, delivery)
            order = self.order_service.sync_order_from_delivery(
                session, delivery.order_id, "delivered", caller
            )
        else:
            issue_status = "reported"
            delivery.updated_at = now
            self.delivery_repo.update(session, delivery)

        session.commit()
        session.refresh(delivery)

        logger.info(
            "Issue %s on delivery %s by worker %s: %s",
            payload.issue_type,
            delivery.delivery_number,
            caller.id,
            issue_status,
        )

        order_number = self._order_number(session, delivery, order)
        events: list[NotificationEvent] = []
        if issue_status == "resolved_and_completed":
            events.extend(self._completion_events(session, delivery, order))

        for recipient_id in (delivery.shopkeeper_id, delivery.company_id):
            events.append(
                NotificationEvent(
                    recipient_id=recipient_id,
                    type="delivery_issue",
                    title="Delivery issue reported",
                    message=(
                        f"Issue with delivery for order {order_number}: "
                        f"{payload.description}"
                    ),
                    priority="high",
                    related_order_id=delivery.order_id,
                    related_delivery_id=delivery.id,
                    data={
                        "issue_type": payload.issue_type,
                        "issue_status": issue_status,
                        "resolution": payload.resolution,
                    },
                )
            )

        result = IssueReportResult(delivery=self._summary(delivery), issue_status=issue_status)
        return result, events

    def upload_proof_photo(
        self,
        session: Session,
        caller: CallerContext,
        delivery_id: uuid.UUID,
        content_type: str,
        file_bytes: bytes,
    ) -> ProofPhotoRead:
        """
        Store a proof photo and return its public URL.

        The URL is then sent as `photo` when completing the delivery.
        """
        delivery = self._get_owned(session, caller, delivery_id)
        if delivery.status in DELIVERY_TERMINAL_STATUSES:
            raise DomainRuleViolation(
                "Delivery is already closed",
                code="delivery_closed",
                delivery_status=delivery.status,
            )

        ext = self._validate_and_get_ext(content_type, file_bytes)
        path = f"deliveries/{delivery.id}/proof/{generate_filename(ext)}"
        url = upload_to_storage(path, file_bytes, content_type=content_type)
        logger.info("Proof photo uploaded for delivery %s", delivery.delivery_number)
        return ProofPhotoRead(url=url)

    # -------- Operator override --------

    def return_delivery(
        self,
        session: Session,
        caller: CallerContext,
        delivery_id: uuid.UUID,
        payload: DeliveryReturn,
    ) -> tuple[DeliverySummary, list[NotificationEvent]]:
        """
        Mark a non-terminal delivery as returned (admin, or the owning company).

        The order keeps its status so it can be assigned to another worker.
        """
        delivery = self._get(session, delivery_id)
        if not (caller.is_admin or (caller.role == "company_rep" and delivery.company_id == caller.id)):
            raise AccessDenied("Not authorized to return this delivery")
        ensure_delivery_transition(delivery.status, "returned")

        apply_delivery_status(delivery, "returned", utcnow())
        delivery.failure_reason = payload.reason or "Returned by operator"
        self.delivery_repo.update(session, delivery)
        session.commit()
        session.refresh(delivery)

        logger.info("Delivery %s returned by %s", delivery.delivery_number, caller.id)

        events = [
            NotificationEvent(
                recipient_id=delivery.delivery_worker_id,
                type="delivery_returned",
                title="Delivery returned",
                message=f"Delivery {delivery.delivery_number} was taken off your queue",
                priority="medium",
                related_order_id=delivery.order_id,
                related_delivery_id=delivery.id,
                data={"reason": delivery.failure_reason},
            )
        ]
        return self._summary(delivery), events

    # -------- Helpers --------

    def _get(self, session: Session, delivery_id: uuid.UUID) -> Delivery:
        delivery = self.delivery_repo.get_by_id(session, delivery_id)
        if delivery is None:
            raise NotFound("Delivery not found", code="delivery_not_found")
        return delivery

    def _get_owned(
        self,
        session: Session,
        caller: CallerContext,
        delivery_id: uuid.UUID,
    ) -> Delivery:
        if caller.role != "delivery_worker":
            raise AccessDenied("Only delivery workers can update deliveries")
        delivery = self._get(session, delivery_id)
        if delivery.delivery_worker_id != caller.id:
            raise AccessDenied("You can only update your own deliveries")
        return delivery

    def _order_number(
        self,
        session: Session,
        delivery: Delivery,
        order: Order | None,
    ) -> str:
        if order is None:
            order = self.order_repo.get_by_id(session, delivery.order_id)
        return order.order_number if order is not None else delivery.delivery_number

    def _completion_events(
        self,
        session: Session,
        delivery: Delivery,
        order: Order | None,
    ) -> list[NotificationEvent]:
        order_number = self._order_number(session, delivery, order)
        return [
            NotificationEvent(
                recipient_id=delivery.shopkeeper_id,
                type="delivery_delivered",
                title="Order delivered",
                message=f"Your order {order_number} has been delivered",
                priority="high",
                related_order_id=delivery.order_id,
                related_delivery_id=delivery.id,
            ),
            NotificationEvent(
                recipient_id=delivery.company_id,
                type="delivery_delivered",
                title="Order delivered",
                message=f"Order {order_number} was delivered to {delivery.shopkeeper_name}",
                priority="medium",
                related_order_id=delivery.order_id,
                related_delivery_id=delivery.id,
            ),
        ]

    @staticmethod
    def _validate_and_get_ext(content_type: str, file_bytes: bytes) -> str:
        if content_type not in ALLOWED_PHOTO_CONTENT_TYPES:
            raise ValidationFailed(
                "Unsupported image type. Allowed: JPEG, PNG, WEBP.",
                code="unsupported_image_type",
            )
        if not file_bytes:
            raise ValidationFailed("Empty file", code="empty_file")
        if len(file_bytes) > MAX_PROOF_PHOTO_BYTES:
            raise ValidationFailed(
                "Image too large. Max 5MB.",
                code="image_too_large",
            )
        return ALLOWED_PHOTO_CONTENT_TYPES[content_type]

    # -------- DTO builders --------

    @staticmethod
    def _summary(delivery: Delivery) -> DeliverySummary:
        return DeliverySummary(
            id=delivery.id,
            delivery_number=delivery.delivery_number,
            order_id=delivery.order_id,
            status=delivery.status,
            delivery_area=delivery.delivery_area,
            shopkeeper_name=delivery.shopkeeper_name,
            assigned_at=delivery.assigned_at,
            delivered_at=delivery.delivered_at,
        )

    def _build_read(self, session: Session, delivery: Delivery) -> DeliveryRead:
        items = self.delivery_repo.list_items(session, delivery.id)
        issues = self.delivery_repo.list_issues(session, delivery.id)
        order = self.order_repo.get_by_id(session, delivery.order_id)

        proof = None
        if delivery.proof_signature:
            proof = DeliveryProofRead(
                signature=delivery.proof_signature,
                photo=delivery.proof_photo,
                notes=delivery.proof_notes,
            )

        return DeliveryRead(
            id=delivery.id,
            delivery_number=delivery.delivery_number,
            order_id=delivery.order_id,
            order_number=order.order_number if order is not None else None,
            delivery_worker_id=delivery.delivery_worker_id,
            delivery_worker_name=delivery.delivery_worker_name,
            delivery_worker_phone=delivery.delivery_worker_phone,
            shopkeeper_id=delivery.shopkeeper_id,
            shopkeeper_name=delivery.shopkeeper_name,
            shopkeeper_phone=delivery.shopkeeper_phone,
            company_id=delivery.company_id,
            company_name=delivery.company_name,
            company_phone=delivery.company_phone,
            items=[
                DeliveryItemRead(
                    product_id=it.product_id,
                    product_name=it.product_name,
                    quantity=it.quantity,
                    unit=it.unit,
                )
                for it in items
            ],
            pickup_location=delivery.pickup_location,
            delivery_location=delivery.delivery_location,
            delivery_area=delivery.delivery_area,
            delivery_instructions=delivery.delivery_instructions,
            status=delivery.status,
            assigned_at=delivery.assigned_at,
            picked_up_at=delivery.picked_up_at,
            in_transit_at=delivery.in_transit_at,
            delivered_at=delivery.delivered_at,
            returned_at=delivery.returned_at,
            proof=proof,
            failure_reason=delivery.failure_reason,
            issues=[
                DeliveryIssueRead(
                    issue_type=i.issue_type,
                    description=i.description,
                    resolution=i.resolution,
                    reported_at=i.reported_at,
                )
                for i in issues
            ],
            payment_method=delivery.payment_method,
            amount_to_collect=delivery.amount_to_collect,
        )
