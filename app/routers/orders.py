# app/routers/orders.py
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from app.core.auth import get_current_caller, require_roles
from app.database import get_session
from app.repositories.delivery_repo import DeliveryRepository
from app.repositories.notification_repo import NotificationRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.product_repo import ProductRepository
from app.repositories.user_repo import UserRepository
from app.schemas.order import (
    AssignWorkerRequest,
    AssignWorkerResult,
    OrderCreate,
    OrderCreated,
    OrderDetailRead,
    OrderListResponse,
    OrderStatusResult,
    OrderStatusUpdate,
    parse_order_ref,
)
from app.schemas.user import CallerContext
from app.services.notification_service import NotificationService
from app.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["Orders"])

order_repo = OrderRepository()
service = OrderService(
    order_repo,
    ProductRepository(),
    UserRepository(),
    DeliveryRepository(),
)
notifications = NotificationService(NotificationRepository())


@router.get("", response_model=OrderListResponse)
def list_orders(
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(get_current_caller),
    page: int = 1,
    limit: int | None = None,
    status_filter: str | None = Query(
        default=None,
        alias="status",
        description="Comma-separated statuses, e.g. pending,approved",
    ),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
):
    """
    List orders visible to the caller.

    Auth:
      - shopkeeper: own orders
      - company_rep: orders placed with their company
      - delivery_worker: orders assigned to them
      - admin: everything
    """
    statuses = None
    if status_filter:
        statuses = [s.strip() for s in status_filter.split(",") if s.strip()]
    return service.list_orders(
        session,
        caller,
        page=page,
        limit=limit,
        statuses=statuses,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )


@router.get("/{order_ref}", response_model=OrderDetailRead)
def get_order(
    order_ref: str,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(get_current_caller),
):
    """
    Get one order by id or order number (e.g. ORD-0042).

    Auth:
      - admin, or a party on the order.
    """
    return service.get_order(session, caller, parse_order_ref(order_ref))


@router.post(
    "",
    response_model=OrderCreated,
    status_code=status.HTTP_201_CREATED,
)
def create_order(
    payload: OrderCreate,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("shopkeeper")),
):
    """
    Place an order with one company.

    Auth:
      - shopkeeper only.
    """
    result, events = service.create_order(session, caller, payload)
    notifications.dispatch(session, events)
    return result


@router.patch("/{order_ref}/status", response_model=OrderStatusResult)
def update_order_status(
    order_ref: str,
    payload: OrderStatusUpdate,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(get_current_caller),
):
    """
    Move an order along its lifecycle.

    Auth (checked in the service, depends on order and target):
      - admin: any valid transition
      - company_rep: own orders
      - shopkeeper: cancel own pending order
      - delivery_worker: accept / reject / pick up / deliver own assignment
    """
    result, events = service.update_status(
        session, caller, parse_order_ref(order_ref), payload
    )
    notifications.dispatch(session, events)
    return result


@router.post("/{order_ref}/assign", response_model=AssignWorkerResult)
def assign_delivery_worker(
    order_ref: str,
    payload: AssignWorkerRequest,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(require_roles("admin", "company_rep")),
):
    """
    Assign a delivery worker and open the delivery.

    Auth:
      - admin, or the company the order was placed with.
    """
    result, events = service.assign_delivery_worker(
        session, caller, parse_order_ref(order_ref), payload
    )
    notifications.dispatch(session, events)
    return result
