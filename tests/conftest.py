"""Shared fixtures: in-memory database, seeded directory and catalogue, services."""

import os

# Settings are read at import time, so the environment goes first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "anon-test-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from app.models import delivery as _delivery_models  # noqa: E402,F401
from app.models import notification as _notification_models  # noqa: E402,F401
from app.models import order as _order_models  # noqa: E402,F401
from app.repositories.delivery_repo import DeliveryRepository  # noqa: E402
from app.repositories.notification_repo import NotificationRepository  # noqa: E402
from app.repositories.order_repo import OrderRepository  # noqa: E402
from app.repositories.product_repo import ProductRepository  # noqa: E402
from app.repositories.user_repo import UserRepository  # noqa: E402
from app.schemas.order import AssignWorkerRequest, ById, OrderStatusUpdate  # noqa: E402
from app.services.delivery_service import DeliveryService  # noqa: E402
from app.services.notification_service import NotificationService  # noqa: E402
from app.services.order_service import OrderService  # noqa: E402
from tests.factories import caller_for, make_product, make_user, order_payload  # noqa: E402


# -------- Database --------


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


# -------- Seed data --------


@pytest.fixture
def users(session):
    return SimpleNamespace(
        shopkeeper=make_user(
            session,
            "shopkeeper",
            "Sara",
            shop_name="Sara Mart",
            area="Downtown",
            city="Lahore",
            address="12 Mall Road",
        ),
        other_shopkeeper=make_user(session, "shopkeeper", "Omar", shop_name="Omar Store"),
        company=make_user(
            session,
            "company_rep",
            "Kamal",
            company_name="Fresh Foods",
            address="Plot 7 Industrial Estate",
            area="Kot Lakhpat",
            city="Lahore",
        ),
        other_company=make_user(session, "company_rep", "Nadia", company_name="Agro Co"),
        inactive_company=make_user(
            session, "company_rep", "Bilal", company_name="Closed Co", status="suspended"
        ),
        worker=make_user(
            session,
            "delivery_worker",
            "Wasim",
            assigned_areas=["Downtown"],
            availability="available",
        ),
        roaming_worker=make_user(session, "delivery_worker", "Rafay", availability="available"),
        uptown_worker=make_user(
            session, "delivery_worker", "Usman", assigned_areas=["Uptown"]
        ),
        admin=make_user(session, "admin", "Ayesha"),
    )


@pytest.fixture
def products(session, users):
    return SimpleNamespace(
        rice=make_product(
            session, users.company, "Basmati Rice", unit_price=20.0, unit="kg", stock_quantity=100
        ),
        oil=make_product(
            session, users.company, "Cooking Oil", unit_price=55.0, unit="liter", stock_quantity=5
        ),
        flour=make_product(
            session,
            users.company,
            "Wheat Flour",
            unit_price=8.0,
            stock_quantity=50,
            min_order_quantity=5,
            max_order_quantity=20,
        ),
        foreign=make_product(session, users.other_company, "Tea Leaves", unit_price=12.0),
    )


# -------- Services --------


@pytest.fixture
def order_service():
    return OrderService(
        OrderRepository(),
        ProductRepository(),
        UserRepository(),
        DeliveryRepository(),
    )


@pytest.fixture
def delivery_service(order_service):
    return DeliveryService(DeliveryRepository(), OrderRepository(), order_service)


@pytest.fixture
def notification_service():
    return NotificationService(NotificationRepository())


# -------- Workflow builders --------


@pytest.fixture
def placed_order(session, users, products, order_service):
    """A pending order: 3 kg rice + 2 l oil."""
    created, _ = order_service.create_order(
        session,
        caller_for(users.shopkeeper),
        order_payload(users, [(products.rice, 3), (products.oil, 2)]),
    )
    return created


@pytest.fixture
def assigned_order(session, users, placed_order, order_service):
    """placed_order approved by the company and assigned to `users.worker`."""
    company = caller_for(users.company)
    order_service.update_status(
        session, company, ById(placed_order.id), OrderStatusUpdate(status="approved")
    )
    assigned, _ = order_service.assign_delivery_worker(
        session,
        company,
        ById(placed_order.id),
        AssignWorkerRequest(delivery_worker_id=users.worker.id),
    )
    return assigned


@pytest.fixture
def accepted_order(session, users, assigned_order, order_service):
    """assigned_order accepted by `users.worker`, ready for pickup."""
    order_service.update_status(
        session,
        caller_for(users.worker),
        ById(assigned_order.id),
        OrderStatusUpdate(status="accepted"),
    )
    return assigned_order
