"""Tests for service-order management services."""

import uuid
from datetime import UTC, datetime

import pytest

from fieldops.models import (
    AssignmentRole,
    AssignmentState,
    ServiceOrderAuditEntry,
    ServiceOrderPart,
    ServiceOrderStatus,
    ServiceOrderType,
    WorkLog,
)
from fieldops.schemas.service_orders import (
    AssignmentCreate,
    ResolutionUpsert,
    ServiceOrderCreate,
    ServiceOrderPartCreate,
    ServiceOrderSignaturesUpdate,
    ServiceOrderUpdate,
)
from fieldops.services.service_orders import orders as orders_service
from fieldops.services.service_orders.errors import (
    ServiceOrderNotFoundError,
    ServiceOrderPermissionError,
    ServiceOrderValidationError,
)

DUE = datetime(2025, 3, 3, 9, 0, tzinfo=UTC)

service_orders = orders_service.service_orders


class TestCreate:
    def test_create_open_order_records_status(self, db_session, supervisor_ctx):
        order = service_orders.create(
            db_session,
            supervisor_ctx,
            ServiceOrderCreate(title="Inspect chiller", service_order_type=ServiceOrderType.preventive),
        )
        assert order.status == ServiceOrderStatus.open
        assert order.tenant_id == supervisor_ctx.tenant_id
        (entry,) = db_session.query(ServiceOrderAuditEntry).all()
        assert (entry.field, entry.from_value, entry.to_value) == ("status", None, "open")

    def test_create_with_due_date_is_scheduled_and_assigned(
        self, db_session, admin_ctx, tech_user
    ):
        order = service_orders.create(
            db_session,
            admin_ctx,
            ServiceOrderCreate(title="Replace filter", due_date=DUE, technician_id=tech_user.id),
        )
        assert order.status == ServiceOrderStatus.scheduled
        (assignment,) = service_orders.list_assignments(db_session, admin_ctx, str(order.id))
        assert assignment.user_id == tech_user.id
        assert assignment.role == AssignmentRole.technician

    def test_tech_may_not_create(self, db_session, tech_ctx):
        with pytest.raises(ServiceOrderPermissionError):
            service_orders.create(db_session, tech_ctx, ServiceOrderCreate(title="Nope"))

    def test_unknown_technician_rolls_back_creation(self, db_session, admin_ctx):
        with pytest.raises(ServiceOrderNotFoundError):
            service_orders.create(
                db_session,
                admin_ctx,
                ServiceOrderCreate(title="Ghost", technician_id=uuid.uuid4()),
            )
        assert service_orders.list(
            db_session, admin_ctx, None, None, None, None, None, None, "created_at", "desc", 50, 0
        ) == []


class TestListAndGet:
    def test_list_filters_by_technician_status_and_search(
        self, db_session, admin_ctx, make_order, tech_user
    ):
        mine = make_order(title="Pump P-101", technician=tech_user, status=ServiceOrderStatus.scheduled)
        make_order(title="Pump P-102", status=ServiceOrderStatus.scheduled)
        make_order(title="Fan F-7")

        by_tech = service_orders.list(
            db_session, admin_ctx, None, str(tech_user.id), None, None, None, None, "created_at", "asc", 50, 0
        )
        assert [o.id for o in by_tech] == [mine.id]

        pumps = service_orders.list_response(
            db_session, admin_ctx, "scheduled", None, "pump", None, None, None, "title", "asc", 50, 0
        )
        assert pumps["count"] == 2
        assert pumps["limit"] == 50
        assert [o.title for o in pumps["items"]] == ["Pump P-101", "Pump P-102"]

    def test_get_other_tenant_is_not_found(self, db_session, make_order, admin_ctx):
        from fieldops.services.service_orders.context import ActorContext

        order = make_order()
        stranger = ActorContext(tenant_id=uuid.uuid4(), user_id=admin_ctx.user_id, role=admin_ctx.role)
        with pytest.raises(ServiceOrderNotFoundError):
            service_orders.get(db_session, stranger, str(order.id))

    def test_get_malformed_id_is_not_found(self, db_session, admin_ctx):
        with pytest.raises(ServiceOrderNotFoundError):
            service_orders.get(db_session, admin_ctx, "abc")


class TestUpdate:
    def test_assigned_tech_updates_description(self, db_session, tech_ctx, make_order, tech_user):
        order = make_order(technician=tech_user)
        updated = service_orders.update(
            db_session,
            tech_ctx,
            str(order.id),
            ServiceOrderUpdate(description="Bearing noise on startup", has_issue=True),
        )
        assert updated.description == "Bearing noise on startup"
        assert updated.has_issue is True

    def test_null_title_is_rejected(self, db_session, admin_ctx, make_order):
        order = make_order()
        with pytest.raises(ServiceOrderValidationError):
            service_orders.update(
                db_session, admin_ctx, str(order.id), ServiceOrderUpdate.model_validate({"title": None})
            )

    def test_tech_may_not_archive(self, db_session, tech_ctx, make_order, tech_user):
        order = make_order(technician=tech_user)
        with pytest.raises(ServiceOrderPermissionError):
            service_orders.update(
                db_session, tech_ctx, str(order.id), ServiceOrderUpdate(is_active=False)
            )


class TestResolution:
    def test_partial_upsert_keeps_untouched_fields(self, db_session, admin_ctx, make_order):
        order = make_order()
        service_orders.upsert_resolution(
            db_session, admin_ctx, str(order.id), ResolutionUpsert(cause_code="seal_leak")
        )
        resolution = service_orders.upsert_resolution(
            db_session, admin_ctx, str(order.id), ResolutionUpsert(remedy_other="Resealed housing")
        )
        assert resolution.cause_code == "seal_leak"
        assert resolution.has_cause and resolution.has_remedy

    def test_explicit_null_clears_field(self, db_session, admin_ctx, make_order):
        order = make_order()
        service_orders.upsert_resolution(
            db_session, admin_ctx, str(order.id), ResolutionUpsert(cause_code="seal_leak")
        )
        resolution = service_orders.upsert_resolution(
            db_session, admin_ctx, str(order.id), ResolutionUpsert.model_validate({"cause_code": None})
        )
        assert resolution.cause_code is None
        assert not resolution.has_cause

    def test_missing_resolution_is_not_found(self, db_session, admin_ctx, make_order):
        order = make_order()
        with pytest.raises(ServiceOrderNotFoundError):
            service_orders.get_resolution(db_session, admin_ctx, str(order.id))



class TestSignatures:
    def test_partial_update_keeps_other_signature(
        self, db_session, tech_ctx, make_order, tech_user
    ):
        order = make_order(technician=tech_user, receiver_signature="receiver-v1")
        updated = service_orders.set_signatures(
            db_session,
            tech_ctx,
            str(order.id),
            ServiceOrderSignaturesUpdate(technician_signature="data:image/png;base64,AAAA"),
        )
        assert updated.technician_signature == "data:image/png;base64,AAAA"
        assert updated.receiver_signature == "receiver-v1"
        entries = db_session.query(ServiceOrderAuditEntry).all()
        assert [(e.field, e.from_value) for e in entries] == [("technician_signature", None)]

    def test_explicit_null_clears_signature(self, db_session, admin_ctx, make_order):
        order = make_order(technician_signature="tech-v1", receiver_signature="receiver-v1")
        updated = service_orders.set_signatures(
            db_session,
            admin_ctx,
            str(order.id),
            ServiceOrderSignaturesUpdate.model_validate({"receiver_signature": None}),
        )
        assert updated.receiver_signature is None
        assert updated.technician_signature == "tech-v1"
        (entry,) = db_session.query(ServiceOrderAuditEntry).all()
        assert (entry.field, entry.from_value, entry.to_value) == (
            "receiver_signature",
            "receiver-v1",
            None,
        )

    def test_unassigned_tech_may_not_sign(self, db_session, tech_ctx, make_order):
        order = make_order()
        with pytest.raises(ServiceOrderPermissionError):
            service_orders.set_signatures(
                db_session,
                tech_ctx,
                str(order.id),
                ServiceOrderSignaturesUpdate(technician_signature="x"),
            )


class TestParts:
    def test_add_inventory_and_free_text_parts(self, db_session, tech_ctx, make_order, tech_user):
        order = make_order(technician=tech_user)
        item_id = uuid.uuid4()
        service_orders.add_part(
            db_session,
            tech_ctx,
            str(order.id),
            ServiceOrderPartCreate(inventory_item_id=item_id, qty=2),
        )
        gasket = service_orders.add_part(
            db_session,
            tech_ctx,
            str(order.id),
            ServiceOrderPartCreate(free_text="  Gasket kit  ", notes="From van stock"),
        )
        assert gasket.free_text == "Gasket kit"
        assert gasket.qty == 1

        parts = service_orders.list_parts(db_session, tech_ctx, str(order.id))
        assert [(p.inventory_item_id, p.qty) for p in parts] == [(item_id, 2), (None, 1)]
        entries = db_session.query(ServiceOrderAuditEntry).order_by(ServiceOrderAuditEntry.seq).all()
        assert [(e.field, e.from_value) for e in entries] == [("parts", None), ("parts", None)]
        assert entries[1].part == str(gasket.id)

    def test_part_needs_item_or_text(self, db_session, admin_ctx, make_order):
        order = make_order()
        with pytest.raises(ServiceOrderValidationError) as exc_info:
            service_orders.add_part(
                db_session, admin_ctx, str(order.id), ServiceOrderPartCreate(free_text="   ")
            )
        assert exc_info.value.code == "part_item_required"
        assert db_session.query(ServiceOrderPart).count() == 0

    def test_remove_part_is_audited(self, db_session, admin_ctx, make_order):
        order = make_order()
        part = service_orders.add_part(
            db_session, admin_ctx, str(order.id), ServiceOrderPartCreate(free_text="Fuse 10A")
        )
        part_id = part.id
        service_orders.remove_part(db_session, admin_ctx, str(order.id), str(part_id))

        assert db_session.query(ServiceOrderPart).count() == 0
        entries = db_session.query(ServiceOrderAuditEntry).order_by(ServiceOrderAuditEntry.seq).all()
        removal = entries[-1]
        assert (removal.field, removal.part, removal.to_value) == ("parts", str(part_id), None)
        assert "Fuse 10A" in removal.from_value

    def test_remove_part_of_other_order_is_not_found(self, db_session, admin_ctx, make_order):
        order = make_order()
        other = make_order(title="Other")
        part = service_orders.add_part(
            db_session, admin_ctx, str(other.id), ServiceOrderPartCreate(free_text="Belt")
        )
        with pytest.raises(ServiceOrderNotFoundError):
            service_orders.remove_part(db_session, admin_ctx, str(order.id), str(part.id))
        with pytest.raises(ServiceOrderNotFoundError):
            service_orders.remove_part(db_session, admin_ctx, str(order.id), "not-a-part")

class TestAssignments:
    def test_add_supersedes_same_role(
        self, db_session, admin_ctx, make_order, tech_user, other_tech_user
    ):
        order = make_order(technician=tech_user)
        created = service_orders.add_assignment(
            db_session, admin_ctx, str(order.id), AssignmentCreate(user_id=other_tech_user.id)
        )
        active = service_orders.list_assignments(db_session, admin_ctx, str(order.id))
        assert [a.id for a in active] == [created.id]
        everything = service_orders.list_assignments(db_session, admin_ctx, str(order.id), active_only=False)
        assert len(everything) == 2

    def test_remove_assignment(self, db_session, admin_ctx, make_order, tech_user):
        order = make_order(technician=tech_user)
        (assignment,) = service_orders.list_assignments(db_session, admin_ctx, str(order.id))
        removed = service_orders.remove_assignment(
            db_session, admin_ctx, str(order.id), str(assignment.id)
        )
        assert removed.state == AssignmentState.removed
        assert removed.removed_at is not None
        fields = [e.field for e in db_session.query(ServiceOrderAuditEntry).all()]
        assert fields == ["technician_id"]

    def test_tech_may_not_manage_assignments(self, db_session, tech_ctx, make_order, other_tech_user):
        order = make_order()
        with pytest.raises(ServiceOrderPermissionError):
            service_orders.add_assignment(
                db_session, tech_ctx, str(order.id), AssignmentCreate(user_id=other_tech_user.id)
            )


def test_work_logs_list_filters_open(db_session, admin_ctx, make_order, tech_user, other_tech_user):
    order = make_order(technician=tech_user)
    db_session.add_all(
        [
            WorkLog(
                tenant_id=order.tenant_id,
                service_order_id=order.id,
                user_id=tech_user.id,
                started_at=DUE,
            ),
            WorkLog(
                tenant_id=order.tenant_id,
                service_order_id=order.id,
                user_id=other_tech_user.id,
                started_at=DUE,
                ended_at=DUE,
            ),
        ]
    )
    db_session.commit()

    open_logs = orders_service.work_logs.list(
        db_session, admin_ctx, str(order.id), None, True, "started_at", "asc", 50, 0
    )
    assert [log.user_id for log in open_logs] == [tech_user.id]
