# app/routers/deliveries.py
import uuid

from fastapi import APIRouter, Depends, File, UploadFile
from sqlmodel import Session

from app.core.auth import get_current_caller, require_roles
from app.core.errors import ValidationFailed
from app.database import get_session
from app.repositories.delivery_repo import DeliveryRepository
from app.repositories.notification_repo import NotificationRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.product_repo import ProductRepository
from app.repositories.user_repo import UserRepository
from app.schemas.delivery import (
    DeliveryComplete,
    DeliveryListResponse,
    DeliveryRead,
    DeliveryReturn,
    DeliveryStatus,
    DeliveryStatusUpdate,
    DeliverySummary,
    IssueReport,
    IssueReportResult,
    ProofPhotoRead,
)
from app.schemas.user import CallerContext
from app.services.delivery_service import DeliveryService
from app.services.notification_service import NotificationService
from app.services.order_service import OrderService

router = APIRouter(prefix="/deliveries", tags=["Deliveries"])

delivery_repo = DeliveryRepository()
order_repo = OrderRepository()
order_service = OrderService(
    order_repo,
    ProductRepository(),
    UserRepository(),
    delivery_repo,
)
service = DeliveryService(delivery_repo, order_repo, order_service)
notifications = NotificationService(NotificationRepository())


# -------- Listings --------


@router.get("/worker", response_model=DeliveryListResponse)
def list_my_deliveries(
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("delivery_worker")),
    page: int = 1,
    limit: int | None = None,
    status: DeliveryStatus | None = None,
):
    """
    The calling worker's deliveries, newest assignment first.

    Auth:
      - delivery_worker only.
    """
    return service.list_worker_deliveries(
        session, caller, page=page, limit=limit, status=status
    )


@router.get("/company", response_model=DeliveryListResponse)
def list_company_deliveries(
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("company_rep")),
    page: int = 1,
    limit: int | None = None,
    status: DeliveryStatus | None = None,
    area: str | None = None,
):
    """
    Deliveries for the calling company's orders.

    Auth:
      - company_rep only.
    """
    return service.list_company_deliveries(
        session, caller, page=page, limit=limit, status=status, area=area
    )


@router.get("", response_model=DeliveryListResponse)
def list_all_deliveries(
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("admin")),
    page: int = 1,
    limit: int | None = None,
    status: DeliveryStatus | None = None,
    area: str | None = None,
):
    """
    Every delivery (admin only).
    """
    return service.list_all_deliveries(
        session, caller, page=page, limit=limit, status=status, area=area
    )


@router.get("/{delivery_id}", response_model=DeliveryRead)
def get_delivery(
    delivery_id: uuid.UUID,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(get_current_caller),
):
    """
    Full delivery record.

    Auth:
      - admin, or the worker / company / shopkeeper on the delivery.
    """
    return service.get_delivery(session, caller, delivery_id)


# -------- Worker endpoints --------


@router.patch("/{delivery_id}/status", response_model=DeliverySummary)
def update_delivery_status(
    delivery_id: uuid.UUID,
    payload: DeliveryStatusUpdate,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("delivery_worker")),
):
    """
    Mark a delivery picked up or in transit.

    Auth:
      - the assigned delivery worker.
    """
    result, events = service.update_status(session, caller, delivery_id, payload)
    notifications.dispatch(session, events)
    return result


@router.post("/{delivery_id}/complete", response_model=DeliverySummary)
def complete_delivery(
    delivery_id: uuid.UUID,
    payload: DeliveryComplete,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("delivery_worker")),
):
    """
    Complete a delivery with proof (signature required).

    Auth:
      - the assigned delivery worker.
    """
    result, events = service.complete_delivery(session, caller, delivery_id, payload)
    notifications.dispatch(session, events)
    return result


@router.post("/{delivery_id}/issues", response_model=IssueReportResult)
def report_issue(
    delivery_id: uuid.UUID,
    payload: IssueReport,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("delivery_worker")),
):
    """
    Report a problem; may fail or complete the delivery.

    Auth:
      - the assigned delivery worker.
    """
    result, events = service.report_issue(session, caller, delivery_id, payload)
    notifications.dispatch(session, events)
    return result


@router.post(
    "/{delivery_id}/proof-photo",
    response_model=ProofPhotoRead,
    summary="Upload a proof-of-delivery photo",
)
def upload_proof_photo(
    delivery_id: uuid.UUID,
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("delivery_worker")),
):
    """
    Upload a photo and get back the URL to send on completion.

    - Accepts JPEG, PNG, WEBP up to 5MB.
    """
    if not file.content_type:
        raise ValidationFailed(
            "Missing content-type for uploaded file",
            code="missing_content_type",
        )

    file_bytes = file.file.read()
    return service.upload_proof_photo(
        session=session,
        caller=caller,
        delivery_id=delivery_id,
        content_type=file.content_type,
        file_bytes=file_bytes,
    )


# -------- Operator override --------


@router.post("/{delivery_id}/return", response_model=DeliverySummary)
def return_delivery(
    delivery_id: uuid.UUID,
    payload: DeliveryReturn,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("admin", "company_rep")),
):
    """
    Take a delivery off the worker's queue.

    Auth:
      - admin, or the company on the delivery.
    """
    result, events = service.return_delivery(session, caller, delivery_id, payload)
    notifications.dispatch(session, events)
    return result
