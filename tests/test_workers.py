"""Tests for the worker registry and its cascades."""

import pytest
from sqlalchemy import text

from conftest import SHIFT_DAY, of
from shiftboard.auth.security import principal_for, verify_password
from shiftboard.models.models import (
    Job,
    Worker,
    WorkerActivity,
    WorkerAvailability,
    WorkerMessage,
    job_assignments,
    job_invitations,
)
from shiftboard.services import job_lifecycle, workers as registry
from shiftboard.services.errors import (
    DuplicateWorker,
    Forbidden,
    InvalidRequest,
    NotFound,
    NoWorkersFound,
    SlotNotFound,
    Unauthorized,
    UnknownTenant,
)
from shiftboard.services.notifications import (
    EMAIL,
    JOB_AVAILABLE,
    PUSH,
    REGISTRATION_RECEIVED,
    SHIFT_CANCELLED,
    WORKER_APPROVED,
    WORKER_DECLINED,
    WORKER_DELETED,
    WORKER_MESSAGE,
    WORKER_REGISTERED,
)

AM = (SHIFT_DAY, "AM")
PM = (SHIFT_DAY, "PM")


def post_job(db, tenant, shift="AM", workers_required=1, title="Bar staff"):
    return job_lifecycle.create_job(
        db,
        tenant,
        title=title,
        description="Pour drinks",
        location="Riverside Hall",
        date=SHIFT_DAY,
        shift=shift,
        workers_required=workers_required,
    ).job


def activity_messages(db, worker_id):
    return [a.message for a in db.query(WorkerActivity).filter(WorkerActivity.worker_id == worker_id)]


class TestRegistration:
    """Tests for registration and approval."""

    def test_register_creates_pending_worker(self, db, company):
        outcome = registry.register_worker(
            db, name="Dana Lee", email="Dana@Example.com", password="s3cret-pass", user_code="ACME",
        )

        worker = outcome.worker
        assert worker.approved is False
        assert worker.email == "dana@example.com"
        assert verify_password("s3cret-pass", worker.password_hash)
        assert activity_messages(db, worker.id) == ["Worker registered"]
        assert of(outcome.obligations, WORKER_REGISTERED, EMAIL)[0].address == "ops@acme.com"
        assert [o.channel for o in of(outcome.obligations, REGISTRATION_RECEIVED)] == [EMAIL]

    def test_register_with_unknown_code_fails(self, db, company):
        with pytest.raises(UnknownTenant):
            registry.register_worker(db, name="Dana", email="dana@example.com", password="s3cret-pass", user_code="NOPE")

    def test_register_accepts_user_codes_too(self, db, other_user):
        outcome = registry.register_worker(
            db, name="Dana", email="dana@example.com", password="s3cret-pass", user_code="GLOBEX",
        )

        assert outcome.worker.user_code == "GLOBEX"

    def test_duplicate_email_is_rejected(self, db, make_worker):
        make_worker("Dana")

        with pytest.raises(DuplicateWorker):
            registry.register_worker(db, name="Dana", email="dana@example.com", password="s3cret-pass", user_code="ACME")

    def test_approve_sets_flag_and_notifies_worker(self, db, tenant, make_worker):
        dana = make_worker("Dana", approved=False, push_token="ExponentPushToken[dana]")

        outcome = registry.approve_worker(db, tenant, dana.id)

        assert outcome.worker.approved is True
        assert {o.channel for o in of(outcome.obligations, WORKER_APPROVED)} == {EMAIL, PUSH}
        assert [w.id for w in registry.pending_workers(db, tenant)] == []

    def test_approving_twice_sends_nothing(self, db, tenant, make_worker):
        dana = make_worker("Dana", approved=True)

        assert registry.approve_worker(db, tenant, dana.id).obligations == []

    def test_decline_removes_the_registration(self, db, tenant, make_worker):
        dana = make_worker("Dana", approved=False)

        outcome = registry.decline_worker(db, tenant, dana.id)

        assert db.query(Worker).filter(Worker.id == outcome.worker_id).count() == 0
        assert of(outcome.obligations, WORKER_DECLINED, EMAIL)[0].address == "dana@example.com"

    def test_tenant_cannot_touch_foreign_workers(self, db, tenant, make_worker, other_user):
        outsider = make_worker("Olga", user_code="GLOBEX")

        with pytest.raises(NotFound):
            registry.approve_worker(db, tenant, outsider.id)


class TestAvailability:
    """Tests for marking availability."""

    def test_mark_adds_slot_and_logs(self, db, make_worker):
        dana = make_worker("Dana")

        outcome = registry.mark_availability(db, principal_for(dana), SHIFT_DAY, "PM")

        assert outcome.worker.has_slot(SHIFT_DAY, "PM")
        expected = f"Worker marked availability for {SHIFT_DAY.strftime('%d/%m/%Y')} (PM)"
        assert expected in activity_messages(db, dana.id)
        assert outcome.obligations

    def test_marking_the_same_slot_twice_is_a_no_op(self, db, make_worker):
        dana = make_worker("Dana", slots=[PM])

        outcome = registry.mark_availability(db, principal_for(dana), SHIFT_DAY, "PM")

        assert outcome.obligations == []
        assert db.query(WorkerAvailability).filter(WorkerAvailability.worker_id == dana.id).count() == 1

    def test_unapproved_worker_cannot_mark_availability(self, db, make_worker):
        dana = make_worker("Dana", approved=False)

        with pytest.raises(Forbidden):
            registry.mark_availability(db, principal_for(dana), SHIFT_DAY, "PM")

        assert db.query(WorkerAvailability).filter(WorkerAvailability.worker_id == dana.id).count() == 0

    def test_available_workers_filters_by_slot(self, db, tenant, make_worker):
        make_worker("Alice", slots=[AM])
        bob = make_worker("Bob", slots=[PM])
        make_worker("Cara", slots=[PM], approved=False)

        assert [w.id for w in registry.available_workers(db, tenant, SHIFT_DAY, "PM")] == [bob.id]


class TestCancelShift:
    """Tests for the shift cancellation cascade."""

    def test_cancel_removes_slot_and_detaches_from_matching_jobs(self, db, tenant, make_worker):
        alice = make_worker("Alice", slots=[AM, PM])
        make_worker("Bob", slots=[AM])
        accepted = post_job(db, tenant, workers_required=2, title="Breakfast")
        invited = post_job(db, tenant, workers_required=2, title="Brunch")
        evening = post_job(db, tenant, shift="PM", title="Dinner")
        job_lifecycle.accept_job(db, principal_for(alice), accepted.id)

        outcome = registry.cancel_shift_for_worker(db, principal_for(alice), None, SHIFT_DAY, "AM")

        assert outcome.affected_job_count == 2
        assert set(outcome.affected_job_ids) == {accepted.id, invited.id}
        db.expire_all()
        alice = db.get(Worker, alice.id)
        assert not alice.has_slot(SHIFT_DAY, "AM")
        assert alice.has_slot(SHIFT_DAY, "PM")
        assert alice.accepted_jobs == []
        assert [j.id for j in alice.invited_jobs] == [evening.id]
        assert alice.id not in {w.id for w in db.get(Job, invited.id).invited_workers}
        assert "Worker canceled shift on {} (AM) and was removed from 2 jobs.".format(
            SHIFT_DAY.isoformat()
        ) in activity_messages(db, alice.id)

    def test_cancel_reopens_filled_jobs_and_broadcasts(self, db, tenant, make_worker):
        alice = make_worker("Alice", slots=[AM], push_token="ExponentPushToken[alice]")
        make_worker("Bob")
        make_worker("Cara", push_token="ExponentPushToken[cara]")
        job = post_job(db, tenant, workers_required=1)
        job_lifecycle.accept_job(db, principal_for(alice), job.id)

        outcome = registry.cancel_shift_for_worker(db, principal_for(alice), alice.id, SHIFT_DAY, "AM")

        db.expire_all()
        stored = db.get(Job, job.id)
        assert stored.job_status is False
        assert stored.workers == []
        assert len(of(outcome.obligations, JOB_AVAILABLE, EMAIL)) == 3
        assert len(of(outcome.obligations, JOB_AVAILABLE, PUSH)) == 2
        notice = of(outcome.obligations, SHIFT_CANCELLED, EMAIL)[0]
        assert notice.data["affected_count"] == 1

    def test_cancel_without_matching_jobs_still_removes_slot(self, db, make_worker):
        dana = make_worker("Dana", slots=[PM])

        outcome = registry.cancel_shift_for_worker(db, principal_for(dana), None, SHIFT_DAY, "PM")

        assert outcome.affected_job_count == 0
        assert db.query(WorkerAvailability).count() == 0

    def test_missing_slot_fails(self, db, make_worker):
        dana = make_worker("Dana", slots=[PM])

        with pytest.raises(SlotNotFound):
            registry.cancel_shift_for_worker(db, principal_for(dana), None, SHIFT_DAY, "AM")

    def test_worker_cannot_cancel_for_someone_else(self, db, make_worker):
        dana = make_worker("Dana", slots=[PM])
        eli = make_worker("Eli", slots=[PM])

        with pytest.raises(Forbidden):
            registry.cancel_shift_for_worker(db, principal_for(dana), eli.id, SHIFT_DAY, "PM")

    def test_tenant_can_cancel_on_behalf_of_worker(self, db, tenant, make_worker):
        dana = make_worker("Dana", slots=[PM])

        outcome = registry.cancel_shift_for_worker(db, tenant, dana.id, SHIFT_DAY, "PM")

        assert outcome.worker_id == dana.id

    def test_tenant_must_name_the_worker(self, db, tenant, make_worker):
        make_worker("Dana", slots=[PM])

        with pytest.raises(InvalidRequest, match="worker_id is required"):
            registry.cancel_shift_for_worker(db, tenant, None, SHIFT_DAY, "PM")

        assert db.query(WorkerAvailability).count() == 1


class TestDeleteWorker:
    """Tests for the worker deletion cascade."""

    def test_delete_detaches_and_reports_affected_jobs(self, db, tenant, make_worker):
        alice = make_worker("Alice", slots=[AM], push_token="ExponentPushToken[alice]")
        make_worker("Bob", push_token="ExponentPushToken[bob]")
        make_worker("Cara")
        filled = post_job(db, tenant, workers_required=1, title="Breakfast")
        open_job = post_job(db, tenant, workers_required=2, title="Brunch")
        job_lifecycle.accept_job(db, principal_for(alice), filled.id)

        alice_id = alice.id

        outcome = registry.delete_worker(db, tenant, alice_id)

        assert {a["job_id"] for a in outcome.affected_jobs} == {str(filled.id), str(open_job.id)}
        db.expire_all()
        assert db.get(Worker, alice_id) is None
        assert db.get(Job, filled.id).job_status is False
        assert db.query(WorkerAvailability).filter(WorkerAvailability.worker_id == alice_id).count() == 0
        assert db.query(WorkerActivity).filter(WorkerActivity.worker_id == alice_id).count() == 0
        for table in (job_invitations, job_assignments):
            assert db.execute(table.select().where(table.c.worker_id == alice_id)).first() is None

        broadcast = of(outcome.obligations, JOB_AVAILABLE, EMAIL)
        assert sorted(o.recipient_name for o in broadcast) == ["Bob", "Cara"]
        assert [o.address for o in of(outcome.obligations, JOB_AVAILABLE, PUSH)] == ["ExponentPushToken[bob]"]

        notice = of(outcome.obligations, WORKER_DELETED, EMAIL)[0]
        assert notice.data["affected_count"] == 2
        assert "Breakfast" in notice.data["affected_lines"]

    def test_delete_unknown_worker_is_not_found(self, db, tenant):
        with pytest.raises(NotFound):
            registry.delete_worker(db, tenant, "00000000-0000-0000-0000-000000000000")

    def test_worker_cannot_delete_workers(self, db, make_worker):
        dana = make_worker("Dana")

        with pytest.raises(Unauthorized):
            registry.delete_worker(db, principal_for(dana), dana.id)

    def test_delete_drops_the_message_log(self, db, tenant, make_worker):
        dana = make_worker("Dana")
        registry.send_message_to_workers(db, tenant, "Uniforms are in the locker room")
        dana_id = dana.id

        registry.delete_worker(db, tenant, dana_id)

        assert db.query(WorkerMessage).filter(WorkerMessage.worker_id == dana_id).count() == 0

    def test_database_cascades_worker_rows(self, db, make_worker):
        """Foreign keys are enforced, so rows removed outside the ORM take their children along."""
        dana = make_worker("Dana", slots=[AM, PM])

        assert db.execute(text("PRAGMA foreign_keys")).scalar() == 1
        db.execute(Worker.__table__.delete().where(Worker.__table__.c.id == dana.id))
        db.commit()

        assert db.query(WorkerAvailability).count() == 0


class TestUpdateWorker:
    """Tests for editing a worker's contact details."""

    def test_update_changes_details_and_logs(self, db, tenant, make_worker):
        dana = make_worker("Dana")

        outcome = registry.update_worker(
            db, tenant, dana.id, name="Dana Lee", email="Dana.Lee@Example.com", phone="07700 900123",
        )

        worker = outcome.worker
        assert worker.name == "Dana Lee"
        assert worker.email == "dana.lee@example.com"
        assert worker.phone == "07700 900123"
        assert activity_messages(db, dana.id) == ["Worker details updated: name, email, phone"]

    def test_blank_fields_keep_current_values(self, db, tenant, make_worker):
        dana = make_worker("Dana")

        outcome = registry.update_worker(db, tenant, dana.id, name="  ", email=None, phone="")

        assert outcome.worker.name == "Dana"
        assert outcome.worker.email == "dana@example.com"
        assert activity_messages(db, dana.id) == []

    def test_email_of_another_worker_is_rejected(self, db, tenant, make_worker):
        make_worker("Dana")
        eli = make_worker("Eli")

        with pytest.raises(DuplicateWorker):
            registry.update_worker(db, tenant, eli.id, email="dana@example.com")

        db.expire_all()
        assert db.get(Worker, eli.id).email == "eli@example.com"

    def test_foreign_workers_are_not_found(self, db, tenant, make_worker, other_user):
        outsider = make_worker("Olga", user_code="GLOBEX")

        with pytest.raises(NotFound):
            registry.update_worker(db, tenant, outsider.id, name="Olga K")

    def test_workers_cannot_edit_workers(self, db, make_worker):
        dana = make_worker("Dana")

        with pytest.raises(Unauthorized):
            registry.update_worker(db, principal_for(dana), dana.id, name="Boss")


class TestMessages:
    """Tests for tenant broadcasts to workers."""

    def test_broadcast_logs_a_message_per_worker(self, db, tenant, make_worker, other_user):
        alice = make_worker("Alice")
        bob = make_worker("Bob")
        pending = make_worker("Cara", approved=False)
        outsider = make_worker("Olga", user_code="GLOBEX")

        outcome = registry.send_message_to_workers(db, tenant, "  Doors open at 7  ")

        assert outcome.recipient_count == 2
        for worker in (alice, bob):
            inbox = registry.worker_messages(db, principal_for(worker))
            assert [(m.sender_name, m.message) for m in inbox] == [("Acme Events", "Doors open at 7")]
        for worker in (pending, outsider):
            assert db.query(WorkerMessage).filter(WorkerMessage.worker_id == worker.id).count() == 0

    def test_each_device_is_pushed_once(self, db, tenant, make_worker):
        make_worker("Alice", push_token="ExponentPushToken[shared]")
        make_worker("Bob", push_token="ExponentPushToken[shared]")
        make_worker("Cara", push_token="ExponentPushToken[cara]")
        make_worker("Dan")

        outcome = registry.send_message_to_workers(db, tenant, "Doors open at 7")

        pushes = of(outcome.obligations, WORKER_MESSAGE, PUSH)
        assert sorted(o.address for o in pushes) == ["ExponentPushToken[cara]", "ExponentPushToken[shared]"]
        assert of(outcome.obligations, WORKER_MESSAGE, EMAIL) == []
        assert pushes[0].render()[2] == "New message from Acme Events: Doors open at 7"

    def test_blank_message_is_rejected(self, db, tenant, make_worker):
        make_worker("Alice")

        with pytest.raises(InvalidRequest):
            registry.send_message_to_workers(db, tenant, "   ")

        assert db.query(WorkerMessage).count() == 0

    def test_tenant_without_approved_workers_fails(self, db, tenant, make_worker):
        make_worker("Cara", approved=False)

        with pytest.raises(NoWorkersFound):
            registry.send_message_to_workers(db, tenant, "Doors open at 7")

    def test_workers_cannot_broadcast(self, db, make_worker):
        dana = make_worker("Dana")

        with pytest.raises(Unauthorized):
            registry.send_message_to_workers(db, principal_for(dana), "Hello all")
