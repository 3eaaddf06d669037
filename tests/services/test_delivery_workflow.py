"""Tests for the delivery workflow and its coupling back to the order."""

import uuid

import pytest
from sqlmodel import select

from app.core.errors import (
    AccessDenied,
    DomainRuleViolation,
    InvalidTransition,
    NotFound,
    ValidationFailed,
)
from app.models.delivery import Delivery, DeliveryIssue
from app.models.order import Order
from app.repositories.delivery_repo import DeliveryRepository
from app.schemas.delivery import (
    DeliveryComplete,
    DeliveryReturn,
    DeliveryStatusUpdate,
    IssueReport,
)
from app.schemas.order import AssignWorkerRequest, ById, OrderStatusUpdate
from app.services.workflow import ORDER_TRANSITIONS
from tests.factories import caller_for, stock_of


def pick_up(session, users, delivery_service, delivery_id):
    return delivery_service.update_status(
        session,
        caller_for(users.worker),
        delivery_id,
        DeliveryStatusUpdate(status="picked_up"),
    )


def load(session, model, pk):
    obj = session.get(model, pk)
    session.refresh(obj)
    return obj


class TestWorkerProgress:
    def test_pickup_moves_order_too(self, session, users, accepted_order, delivery_service):
        summary, events = pick_up(session, users, delivery_service, accepted_order.delivery_id)

        assert summary.status == "picked_up"
        delivery = load(session, Delivery, accepted_order.delivery_id)
        assert delivery.picked_up_at is not None
        assert load(session, Order, accepted_order.id).status == "picked_up"
        assert events[0].recipient_id == users.shopkeeper.id
        assert events[0].type == "delivery_picked_up"

    def test_pickup_needs_accepted_order(self, session, users, assigned_order, delivery_service):
        with pytest.raises(InvalidTransition) as exc:
            pick_up(session, users, delivery_service, assigned_order.delivery_id)

        assert exc.value.context == {
            "entity": "order",
            "from_status": "assigned",
            "to_status": "picked_up",
        }
        assert load(session, Delivery, assigned_order.delivery_id).status == "assigned"
        assert load(session, Delivery, assigned_order.delivery_id).picked_up_at is None
        assert load(session, Order, assigned_order.id).status == "assigned"

    def test_in_transit_leaves_order_alone(
        self, session, users, accepted_order, delivery_service
    ):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        summary, _ = delivery_service.update_status(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            DeliveryStatusUpdate(status="in_transit"),
        )

        assert summary.status == "in_transit"
        assert load(session, Delivery, accepted_order.delivery_id).in_transit_at is not None
        assert load(session, Order, accepted_order.id).status == "picked_up"

    def test_cannot_skip_pickup(self, session, users, assigned_order, delivery_service):
        with pytest.raises(InvalidTransition):
            delivery_service.update_status(
                session,
                caller_for(users.worker),
                assigned_order.delivery_id,
                DeliveryStatusUpdate(status="in_transit"),
            )

    def test_cannot_pick_up_twice(self, session, users, accepted_order, delivery_service):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        with pytest.raises(InvalidTransition):
            pick_up(session, users, delivery_service, accepted_order.delivery_id)

    def test_other_worker_is_denied(self, session, users, assigned_order, delivery_service):
        with pytest.raises(AccessDenied):
            delivery_service.update_status(
                session,
                caller_for(users.roaming_worker),
                assigned_order.delivery_id,
                DeliveryStatusUpdate(status="picked_up"),
            )

    def test_company_cannot_drive_delivery(
        self, session, users, assigned_order, delivery_service
    ):
        with pytest.raises(AccessDenied):
            delivery_service.update_status(
                session,
                caller_for(users.company),
                assigned_order.delivery_id,
                DeliveryStatusUpdate(status="picked_up"),
            )

    def test_unknown_delivery(self, session, users, delivery_service):
        with pytest.raises(NotFound):
            pick_up(session, users, delivery_service, uuid.uuid4())


class TestCompletion:
    def test_complete_with_proof(self, session, users, accepted_order, delivery_service):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        picked_up_at = load(session, Delivery, accepted_order.delivery_id).picked_up_at

        summary, events = delivery_service.complete_delivery(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            DeliveryComplete(
                signature="S. Ahmed", photo="https://cdn/p.jpg", notes="Left at counter"
            ),
        )

        delivery = load(session, Delivery, accepted_order.delivery_id)
        order = load(session, Order, accepted_order.id)
        assert summary.status == "delivered"
        assert delivery.proof_signature == "S. Ahmed"
        assert delivery.proof_photo == "https://cdn/p.jpg"
        assert delivery.delivered_at is not None
        assert delivery.picked_up_at == picked_up_at
        assert order.status == "delivered"
        assert order.delivered_at is not None

        by_recipient = {e.recipient_id: e for e in events}
        assert by_recipient[users.shopkeeper.id].priority == "high"
        assert by_recipient[users.company.id].priority == "medium"

    def test_signature_required(self, session, users, accepted_order, delivery_service):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)

        with pytest.raises(ValidationFailed) as exc:
            delivery_service.complete_delivery(
                session,
                caller_for(users.worker),
                accepted_order.delivery_id,
                DeliveryComplete(signature="   "),
            )

        assert exc.value.code == "signature_required"
        assert load(session, Delivery, accepted_order.delivery_id).status == "picked_up"
        assert load(session, Order, accepted_order.id).status == "picked_up"

    def test_cannot_complete_before_pickup(
        self, session, users, assigned_order, delivery_service
    ):
        with pytest.raises(InvalidTransition):
            delivery_service.complete_delivery(
                session,
                caller_for(users.worker),
                assigned_order.delivery_id,
                DeliveryComplete(signature="S. Ahmed"),
            )

    def test_delivered_is_terminal(self, session, users, accepted_order, delivery_service):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        delivery_service.complete_delivery(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            DeliveryComplete(signature="S. Ahmed"),
        )
        with pytest.raises(InvalidTransition):
            delivery_service.update_status(
                session,
                caller_for(users.worker),
                accepted_order.delivery_id,
                DeliveryStatusUpdate(status="in_transit"),
            )


class TestIssues:
    def test_failed_delivery_cancels_order(
        self, session, users, products, accepted_order, delivery_service
    ):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)

        result, events = delivery_service.report_issue(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            IssueReport(
                issue_type="customer_unavailable",
                description="Shop closed",
                can_complete=False,
            ),
        )

        delivery = load(session, Delivery, accepted_order.delivery_id)
        order = load(session, Order, accepted_order.id)
        assert result.issue_status == "delivery_failed"
        assert delivery.status == "failed"
        assert delivery.failure_reason == "Shop closed"
        assert order.status == "cancelled"
        assert order.rejection_reason == "Delivery failed: Shop closed"
        assert stock_of(session, products.rice) == 100
        assert stock_of(session, products.oil) == 5

        assert len(events) == 2
        assert {e.recipient_id for e in events} == {users.shopkeeper.id, users.company.id}
        assert all(e.type == "delivery_issue" and e.priority == "high" for e in events)

    def test_resolved_issue_completes_delivery(
        self, session, users, accepted_order, delivery_service
    ):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)

        result, events = delivery_service.report_issue(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            IssueReport(
                issue_type="wrong_address",
                description="Shop moved next door",
                can_complete=True,
                resolution="Delivered to new address",
            ),
        )

        assert result.issue_status == "resolved_and_completed"
        assert load(session, Delivery, accepted_order.delivery_id).status == "delivered"
        assert load(session, Order, accepted_order.id).status == "delivered"
        assert len(events) == 4

    def test_resolution_required_when_completing(
        self, session, users, accepted_order, delivery_service
    ):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        with pytest.raises(ValidationFailed) as exc:
            delivery_service.report_issue(
                session,
                caller_for(users.worker),
                accepted_order.delivery_id,
                IssueReport(issue_type="other", description="Gate locked", can_complete=True),
            )
        assert exc.value.code == "resolution_required"

    def test_record_only(self, session, users, assigned_order, delivery_service):
        result, events = delivery_service.report_issue(
            session,
            caller_for(users.worker),
            assigned_order.delivery_id,
            IssueReport(issue_type="weather", description="Heavy rain, running late"),
        )

        assert result.issue_status == "reported"
        assert result.delivery.status == "assigned"
        assert load(session, Order, assigned_order.id).status == "assigned"
        assert len(events) == 2

    def test_issue_on_closed_delivery_is_recorded(
        self, session, users, accepted_order, delivery_service
    ):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        delivery_service.complete_delivery(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            DeliveryComplete(signature="S. Ahmed"),
        )

        result, _ = delivery_service.report_issue(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            IssueReport(issue_type="product_damaged", description="One bottle cracked"),
        )

        issues = session.exec(
            select(DeliveryIssue).where(DeliveryIssue.delivery_id == accepted_order.delivery_id)
        ).all()
        assert result.delivery.status == "delivered"
        assert [i.issue_type for i in issues] == ["product_damaged"]

    def test_cannot_fail_a_delivered_delivery(
        self, session, users, accepted_order, delivery_service
    ):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        delivery_service.complete_delivery(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            DeliveryComplete(signature="S. Ahmed"),
        )
        with pytest.raises(InvalidTransition):
            delivery_service.report_issue(
                session,
                caller_for(users.worker),
                accepted_order.delivery_id,
                IssueReport(issue_type="other", description="Late", can_complete=False),
            )

    def test_type_and_description_required(
        self, session, users, assigned_order, delivery_service
    ):
        with pytest.raises(ValidationFailed):
            delivery_service.report_issue(
                session,
                caller_for(users.worker),
                assigned_order.delivery_id,
                IssueReport(issue_type="other", description=""),
            )

    def test_issues_keep_their_order(self, session, users, assigned_order, delivery_service):
        worker = caller_for(users.worker)
        for text in ("Traffic jam", "Flat tyre"):
            delivery_service.report_issue(
                session,
                worker,
                assigned_order.delivery_id,
                IssueReport(issue_type="vehicle_breakdown", description=text),
            )

        detail = delivery_service.get_delivery(session, worker, assigned_order.delivery_id)
        assert [i.description for i in detail.issues] == ["Traffic jam", "Flat tyre"]


class TestOrderSync:
    def test_terminal_order_is_left_alone(
        self, session, users, assigned_order, order_service
    ):
        order = session.get(Order, assigned_order.id)
        order.status = "cancelled"
        session.add(order)
        session.commit()

        order_service.sync_order_from_delivery(
            session, assigned_order.id, "delivered", caller_for(users.worker)
        )
        session.commit()

        assert load(session, Order, assigned_order.id).status == "cancelled"

    def test_sync_follows_order_table(self, session, users, assigned_order, order_service):
        with pytest.raises(InvalidTransition):
            order_service.sync_order_from_delivery(
                session, assigned_order.id, "delivered", caller_for(users.worker)
            )
        session.rollback()

        assert load(session, Order, assigned_order.id).status == "assigned"


class TestReturn:
    def test_company_returns_delivery(self, session, users, assigned_order, delivery_service):
        summary, events = delivery_service.return_delivery(
            session,
            caller_for(users.company),
            assigned_order.delivery_id,
            DeliveryReturn(reason="Worker off sick"),
        )

        delivery = load(session, Delivery, assigned_order.delivery_id)
        assert summary.status == "returned"
        assert delivery.returned_at is not None
        assert delivery.failure_reason == "Worker off sick"
        assert load(session, Order, assigned_order.id).status == "assigned"
        assert events[0].recipient_id == users.worker.id

    def test_order_can_be_reassigned_after_return(
        self, session, users, assigned_order, delivery_service, order_service
    ):
        delivery_service.return_delivery(
            session, caller_for(users.admin), assigned_order.delivery_id, DeliveryReturn()
        )
        result, _ = order_service.assign_delivery_worker(
            session,
            caller_for(users.company),
            ById(assigned_order.id),
            AssignWorkerRequest(delivery_worker_id=users.roaming_worker.id),
        )
        assert result.delivery_id != assigned_order.delivery_id

    def test_worker_cannot_return(self, session, users, assigned_order, delivery_service):
        with pytest.raises(AccessDenied):
            delivery_service.return_delivery(
                session, caller_for(users.worker), assigned_order.delivery_id, DeliveryReturn()
            )

    def test_returned_is_terminal(self, session, users, assigned_order, delivery_service):
        delivery_service.return_delivery(
            session, caller_for(users.admin), assigned_order.delivery_id, DeliveryReturn()
        )
        with pytest.raises(InvalidTransition):
            delivery_service.return_delivery(
                session, caller_for(users.admin), assigned_order.delivery_id, DeliveryReturn()
            )


class TestReads:
    def test_parties_can_read(self, session, users, assigned_order, delivery_service):
        for user in (users.worker, users.company, users.shopkeeper, users.admin):
            detail = delivery_service.get_delivery(
                session, caller_for(user), assigned_order.delivery_id
            )
            assert detail.order_number == assigned_order.order_number
            assert len(detail.items) == 2
            assert detail.proof is None

    def test_outsider_is_denied(self, session, users, assigned_order, delivery_service):
        with pytest.raises(AccessDenied):
            delivery_service.get_delivery(
                session, caller_for(users.other_shopkeeper), assigned_order.delivery_id
            )

    def test_worker_queue(self, session, users, assigned_order, delivery_service):
        page = delivery_service.list_worker_deliveries(session, caller_for(users.worker))
        assert [d.id for d in page.deliveries] == [assigned_order.delivery_id]
        assert page.pagination.total == 1

        empty = delivery_service.list_worker_deliveries(
            session, caller_for(users.roaming_worker)
        )
        assert empty.deliveries == []

    def test_company_list_with_filters(self, session, users, assigned_order, delivery_service):
        company = caller_for(users.company)
        assert delivery_service.list_company_deliveries(
            session, company, area="down"
        ).pagination.total == 1
        assert delivery_service.list_company_deliveries(
            session, company, status="delivered"
        ).pagination.total == 0

    def test_repository_listing_returns_rows_and_total(self, session, users, assigned_order):
        rows, total = DeliveryRepository().list_deliveries(
            session, worker_id=users.worker.id, status="assigned"
        )
        assert [d.id for d in rows] == [assigned_order.delivery_id]
        assert total == 1

    def test_admin_list_requires_admin(self, session, users, assigned_order, delivery_service):
        assert delivery_service.list_all_deliveries(
            session, caller_for(users.admin)
        ).pagination.total == 1
        with pytest.raises(AccessDenied):
            delivery_service.list_all_deliveries(session, caller_for(users.company))


class TestProofPhoto:
    def test_upload_returns_public_url(
        self, session, users, assigned_order, delivery_service, monkeypatch
    ):
        uploaded = {}

        def fake_upload(path, file_bytes, content_type=None):
            uploaded["path"] = path
            uploaded["content_type"] = content_type
            return f"https://storage.test/{path}"

        monkeypatch.setattr("app.services.delivery_service.upload_to_storage", fake_upload)

        result = delivery_service.upload_proof_photo(
            session,
            caller_for(users.worker),
            assigned_order.delivery_id,
            "image/png",
            b"\x89PNG...",
        )

        assert uploaded["path"].startswith(f"deliveries/{assigned_order.delivery_id}/proof/")
        assert uploaded["path"].endswith(".png")
        assert uploaded["content_type"] == "image/png"
        assert result.url == f"https://storage.test/{uploaded['path']}"

    def test_rejects_unsupported_type(self, session, users, assigned_order, delivery_service):
        with pytest.raises(ValidationFailed) as exc:
            delivery_service.upload_proof_photo(
                session,
                caller_for(users.worker),
                assigned_order.delivery_id,
                "application/pdf",
                b"%PDF",
            )
        assert exc.value.code == "unsupported_image_type"

    def test_rejects_closed_delivery(self, session, users, assigned_order, delivery_service):
        delivery_service.return_delivery(
            session, caller_for(users.admin), assigned_order.delivery_id, DeliveryReturn()
        )
        with pytest.raises(DomainRuleViolation):
            delivery_service.upload_proof_photo(
                session,
                caller_for(users.worker),
                assigned_order.delivery_id,
                "image/jpeg",
                b"\xff\xd8",
            )


def timeline_statuses(order_service, session, order_id):
    return [e.status for e in order_service.order_repo.list_timeline(session, order_id)]


def assert_follows_order_table(statuses):
    for current, following in zip(statuses, statuses[1:]):
        assert following in ORDER_TRANSITIONS[current], f"{current} -> {following}"


class TestTimelineFollowsTable:
    """Every delivery-driven flow leaves a timeline the order table allows."""

    def test_pickup_transit_complete(
        self, session, users, accepted_order, delivery_service, order_service
    ):
        worker = caller_for(users.worker)
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        delivery_service.update_status(
            session, worker, accepted_order.delivery_id, DeliveryStatusUpdate(status="in_transit")
        )
        delivery_service.complete_delivery(
            session, worker, accepted_order.delivery_id, DeliveryComplete(signature="S. Ahmed")
        )

        statuses = timeline_statuses(order_service, session, accepted_order.id)
        assert statuses == ["pending", "approved", "assigned", "accepted", "picked_up", "delivered"]
        assert_follows_order_table(statuses)

    def test_failed_after_pickup(
        self, session, users, accepted_order, delivery_service, order_service
    ):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        delivery_service.report_issue(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            IssueReport(issue_type="other", description="Road closed", can_complete=False),
        )

        statuses = timeline_statuses(order_service, session, accepted_order.id)
        assert statuses[-1] == "cancelled"
        assert_follows_order_table(statuses)

    def test_resolved_after_pickup(
        self, session, users, accepted_order, delivery_service, order_service
    ):
        pick_up(session, users, delivery_service, accepted_order.delivery_id)
        delivery_service.report_issue(
            session,
            caller_for(users.worker),
            accepted_order.delivery_id,
            IssueReport(
                issue_type="wrong_address",
                description="Shop moved",
                can_complete=True,
                resolution="Found it",
            ),
        )

        statuses = timeline_statuses(order_service, session, accepted_order.id)
        assert statuses[-1] == "delivered"
        assert_follows_order_table(statuses)

    def test_failed_before_acceptance(
        self, session, users, assigned_order, delivery_service, order_service
    ):
        delivery_service.report_issue(
            session,
            caller_for(users.worker),
            assigned_order.delivery_id,
            IssueReport(issue_type="vehicle_breakdown", description="Engine", can_complete=False),
        )

        statuses = timeline_statuses(order_service, session, assigned_order.id)
        assert statuses[-2:] == ["assigned", "cancelled"]
        assert_follows_order_table(statuses)

    def test_order_driven_pickup_then_completion(
        self, session, users, assigned_order, delivery_service, order_service
    ):
        worker = caller_for(users.worker)
        for target in ("accepted", "picked_up"):
            order_service.update_status(
                session, worker, ById(assigned_order.id), OrderStatusUpdate(status=target)
            )
        delivery_service.complete_delivery(
            session, worker, assigned_order.delivery_id, DeliveryComplete(signature="S. Ahmed")
        )

        statuses = timeline_statuses(order_service, session, assigned_order.id)
        assert statuses[-3:] == ["accepted", "picked_up", "delivered"]
        assert_follows_order_table(statuses)
