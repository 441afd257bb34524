"""Tests for work-session exclusivity and the session side effects."""

from datetime import timedelta

import pytest

from fieldops.models import ServiceOrderAuditEntry, ServiceOrderStatus, WorkLog, WorkLogSource
from fieldops.schemas.service_orders import WorkSessionStart, WorkSessionStop
from fieldops.services.common import ensure_utc
from fieldops.services.service_orders import lifecycle as lifecycle_service
from fieldops.services.service_orders import work_sessions
from fieldops.services.service_orders.errors import (
    ServiceOrderConflictError,
    ServiceOrderNotFoundError,
    ServiceOrderPermissionError,
)

lifecycle = lifecycle_service.service_order_lifecycle


def _open_logs(db_session, user_id=None):
    query = db_session.query(WorkLog).filter(WorkLog.ended_at.is_(None))
    if user_id is not None:
        query = query.filter(WorkLog.user_id == user_id)
    return query.all()


class TestEnsureOpenSession:
    def test_opens_once_and_is_idempotent(self, db_session, make_order, tech_user, frozen_now):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        first = work_sessions.ensure_open_session(
            db_session, order, tech_user.id, frozen_now, WorkLogSource.manual
        )
        second = work_sessions.ensure_open_session(
            db_session, order, tech_user.id, frozen_now, WorkLogSource.manual
        )
        db_session.commit()
        assert first.id == second.id
        assert len(_open_logs(db_session, tech_user.id)) == 1

    def test_correct_start_moves_existing_session(self, db_session, make_order, tech_user, frozen_now):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        session = work_sessions.ensure_open_session(
            db_session, order, tech_user.id, frozen_now, WorkLogSource.checkpoint
        )
        earlier = frozen_now - timedelta(minutes=20)
        again = work_sessions.ensure_open_session(
            db_session, order, tech_user.id, earlier, WorkLogSource.checkpoint, correct_start=True
        )
        db_session.commit()
        assert again.id == session.id
        assert ensure_utc(again.started_at) == earlier

    def test_open_session_elsewhere_conflicts_with_payload(
        self, db_session, make_order, tech_user, frozen_now
    ):
        first = make_order(title="Chiller A", status=ServiceOrderStatus.in_progress, technician=tech_user)
        second = make_order(title="Chiller B", status=ServiceOrderStatus.in_progress, technician=tech_user)
        session = work_sessions.ensure_open_session(
            db_session, first, tech_user.id, frozen_now, WorkLogSource.manual
        )
        db_session.commit()

        with pytest.raises(ServiceOrderConflictError) as exc_info:
            work_sessions.ensure_open_session(
                db_session, second, tech_user.id, frozen_now, WorkLogSource.manual
            )
        assert exc_info.value.code == "technician_busy"
        assert exc_info.value.payload == {
            "service_order_id": str(first.id),
            "title": "Chiller A",
            "work_log_id": str(session.id),
        }

    def test_unique_index_backstops_racing_open(
        self, db_session, make_order, tech_user, frozen_now, monkeypatch
    ):
        first = make_order(title="Boiler", status=ServiceOrderStatus.in_progress, technician=tech_user)
        second = make_order(title="Pump", status=ServiceOrderStatus.in_progress, technician=tech_user)
        existing = WorkLog(
            tenant_id=first.tenant_id,
            service_order_id=first.id,
            user_id=tech_user.id,
            started_at=frozen_now,
            source=WorkLogSource.manual,
        )
        db_session.add(existing)
        db_session.commit()

        # Simulate a concurrent request that passed the check before the row existed.
        monkeypatch.setattr(work_sessions, "find_open_session_for_user", lambda *args, **kwargs: None)
        with pytest.raises(ServiceOrderConflictError) as exc_info:
            work_sessions.ensure_open_session(
                db_session, second, tech_user.id, frozen_now, WorkLogSource.manual
            )
        assert exc_info.value.code == "technician_busy"
        assert exc_info.value.payload["service_order_id"] == str(first.id)
        assert len(_open_logs(db_session, tech_user.id)) == 1


class TestCloseOpenSessions:
    def test_closes_every_technician(
        self, db_session, make_order, tech_user, other_tech_user, frozen_now
    ):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        for user in (tech_user, other_tech_user):
            db_session.add(
                WorkLog(
                    tenant_id=order.tenant_id,
                    service_order_id=order.id,
                    user_id=user.id,
                    started_at=frozen_now - timedelta(hours=1),
                )
            )
        db_session.commit()

        closed = work_sessions.close_open_sessions(db_session, order, frozen_now)
        db_session.commit()
        assert len(closed) == 2
        assert _open_logs(db_session) == []

    def test_noop_without_open_sessions(self, db_session, make_order, frozen_now):
        order = make_order()
        assert work_sessions.close_open_sessions(db_session, order, frozen_now) == []

    def test_end_before_start_is_clamped(self, db_session, make_order, tech_user, frozen_now):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        db_session.add(
            WorkLog(
                tenant_id=order.tenant_id,
                service_order_id=order.id,
                user_id=tech_user.id,
                started_at=frozen_now,
            )
        )
        db_session.commit()

        (closed,) = work_sessions.close_open_sessions(db_session, order, frozen_now - timedelta(hours=2))
        assert ensure_utc(closed.ended_at) == frozen_now


class TestManualSessions:
    def test_start_moves_scheduled_order_in_progress(
        self, db_session, tech_ctx, make_order, tech_user, frozen_now
    ):
        order = make_order(status=ServiceOrderStatus.scheduled, technician=tech_user)
        session = lifecycle.start_session(
            db_session, tech_ctx, str(order.id), WorkSessionStart(note="On site")
        )
        db_session.refresh(order)
        assert order.status == ServiceOrderStatus.in_progress
        assert session.source == WorkLogSource.manual
        assert session.note == "On site"
        assert ensure_utc(session.started_at) == frozen_now

    def test_start_twice_returns_same_session(
        self, db_session, tech_ctx, make_order, tech_user, frozen_now
    ):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        first = lifecycle.start_session(db_session, tech_ctx, str(order.id))
        second = lifecycle.start_session(db_session, tech_ctx, str(order.id))
        assert first.id == second.id

    def test_start_on_terminal_order_conflicts(
        self, db_session, tech_ctx, make_order, tech_user, frozen_now
    ):
        order = make_order(status=ServiceOrderStatus.completed, technician=tech_user)
        with pytest.raises(ServiceOrderConflictError):
            lifecycle.start_session(db_session, tech_ctx, str(order.id))

    def test_unassigned_tech_may_not_start(
        self, db_session, other_tech_ctx, make_order, tech_user, frozen_now
    ):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        with pytest.raises(ServiceOrderPermissionError):
            lifecycle.start_session(db_session, other_tech_ctx, str(order.id))

    def test_admin_starts_for_assigned_technician(
        self, db_session, admin_ctx, make_order, tech_user, frozen_now
    ):
        order = make_order(status=ServiceOrderStatus.on_hold, technician=tech_user)
        session = lifecycle.start_session(db_session, admin_ctx, str(order.id))
        assert session.user_id == tech_user.id

    def test_stop_is_idempotent_and_pauses_order(
        self, db_session, tech_ctx, make_order, tech_user, frozen_now
    ):
        order = make_order(
            status=ServiceOrderStatus.in_progress,
            technician=tech_user,
            activity_started_at=frozen_now - timedelta(hours=1),
        )
        session = lifecycle.start_session(db_session, tech_ctx, str(order.id))

        stopped = lifecycle.stop_session(
            db_session, tech_ctx, str(order.id), str(session.id), WorkSessionStop(note="Waiting on parts")
        )
        assert ensure_utc(stopped.ended_at) == frozen_now
        assert stopped.note == "Waiting on parts"
        db_session.refresh(order)
        assert order.status == ServiceOrderStatus.on_hold

        again = lifecycle.stop_session(db_session, tech_ctx, str(order.id), str(session.id))
        assert ensure_utc(again.ended_at) == frozen_now

    def test_stop_without_started_activity_keeps_status(
        self, db_session, tech_ctx, make_order, tech_user, frozen_now
    ):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        session = lifecycle.start_session(db_session, tech_ctx, str(order.id))
        lifecycle.stop_session(db_session, tech_ctx, str(order.id), str(session.id))
        db_session.refresh(order)
        assert order.status == ServiceOrderStatus.in_progress

    def test_stop_by_other_tech_is_forbidden(
        self, db_session, tech_ctx, other_tech_ctx, make_order, tech_user, frozen_now
    ):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        session = lifecycle.start_session(db_session, tech_ctx, str(order.id))
        with pytest.raises(ServiceOrderPermissionError):
            lifecycle.stop_session(db_session, other_tech_ctx, str(order.id), str(session.id))

    def test_stop_unknown_session_is_not_found(
        self, db_session, tech_ctx, make_order, tech_user, frozen_now
    ):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        with pytest.raises(ServiceOrderNotFoundError):
            lifecycle.stop_session(db_session, tech_ctx, str(order.id), "not-a-session")


class TestCheckpointSessions:
    def test_finish_checkpoint_closes_sessions_and_pauses_order(
        self, db_session, tech_ctx, make_order, tech_user, frozen_now
    ):
        from fieldops.schemas.service_orders import ServiceOrderTimestampsUpdate

        started = frozen_now - timedelta(hours=2)
        order = make_order(
            status=ServiceOrderStatus.in_progress,
            technician=tech_user,
            taken_at=started,
            arrived_at=started,
            check_in_at=started,
        )
        lifecycle.update_timestamps(
            db_session,
            tech_ctx,
            str(order.id),
            ServiceOrderTimestampsUpdate.model_validate({"activity_started_at": started.isoformat()}),
        )
        finished = frozen_now - timedelta(minutes=30)
        updated = lifecycle.update_timestamps(
            db_session,
            tech_ctx,
            str(order.id),
            ServiceOrderTimestampsUpdate.model_validate({"activity_finished_at": finished.isoformat()}),
        )
        (log,) = db_session.query(WorkLog).all()
        assert ensure_utc(log.started_at) == started
        assert ensure_utc(log.ended_at) == finished
        assert updated.status == ServiceOrderStatus.on_hold

        status_entries = (
            db_session.query(ServiceOrderAuditEntry)
            .filter(ServiceOrderAuditEntry.field == "status")
            .all()
        )
        assert [(e.from_value, e.to_value) for e in status_entries] == [("in_progress", "on_hold")]


class TestAutoPause:
    def test_started_in_progress_order_without_sessions_pauses(
        self, db_session, make_order, tech_user, frozen_now
    ):
        order = make_order(
            status=ServiceOrderStatus.in_progress,
            technician=tech_user,
            activity_started_at=frozen_now - timedelta(hours=1),
            activity_finished_at=frozen_now,
        )
        assert work_sessions.apply_auto_pause(db_session, order) is True
        assert order.status == ServiceOrderStatus.on_hold

    def test_open_session_keeps_order_running(
        self, db_session, make_order, tech_user, frozen_now
    ):
        order = make_order(
            status=ServiceOrderStatus.in_progress,
            technician=tech_user,
            activity_started_at=frozen_now - timedelta(hours=1),
        )
        work_sessions.ensure_open_session(
            db_session, order, tech_user.id, frozen_now, WorkLogSource.manual
        )
        assert work_sessions.apply_auto_pause(db_session, order) is False
        assert order.status == ServiceOrderStatus.in_progress

    def test_unstarted_order_is_not_paused(self, db_session, make_order, tech_user, frozen_now):
        order = make_order(status=ServiceOrderStatus.in_progress, technician=tech_user)
        assert work_sessions.apply_auto_pause(db_session, order) is False
