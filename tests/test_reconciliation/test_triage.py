"""
Status transitions and operator triage against the test DB.
"""

from datetime import datetime, timezone

import pytest

from app.models.audit import AuditEvent
from app.models.invoice import InvoiceStatus
from app.models.submission import (
    ResponseRecord,
    Submission,
    SubmissionHistory,
    SubmissionStatus,
    TriageStatus,
)
from app.services.reconciliation import triage
from app.services.reconciliation.matching import MatchMethod
from app.services.reconciliation.status import apply_transition
from app.services.submission.submitter import submit_invoice


@pytest.fixture
def submission(db, invoice, fake_transport):
    return submit_invoice(db, invoice, fake_transport)


def _open_response(db, ref="DL-9", response_type="rejected", status_out="refused"):
    record = ResponseRecord(
        medidata_message_id=ref,
        correlation_reference="INV-9999",
        response_type=response_type,
        status_out=status_out,
        explanation="Unbekannte Rechnung",
        content="<invoice:rejected/>",
        triage_status=TriageStatus.OPEN,
        received_at=datetime(2024, 3, 5, 8, 0, tzinfo=timezone.utc),
    )
    db.add(record)
    db.commit()
    return record


class TestApplyTransition:
    def test_same_status_is_noop(self, db, submission):
        before = db.query(SubmissionHistory).filter_by(submission_id=submission.id).count()
        assert apply_transition(db, submission, SubmissionStatus.PENDING) is False
        db.commit()
        after = db.query(SubmissionHistory).filter_by(submission_id=submission.id).count()
        assert before == after

    def test_unknown_status_rejected(self, db, submission):
        with pytest.raises(ValueError):
            apply_transition(db, submission, "lost")

    def test_change_writes_history_and_audit(self, db, submission):
        assert apply_transition(
            db, submission, SubmissionStatus.DELIVERED, response_code="DELIVERED"
        )
        db.commit()
        last = submission.history[-1]
        assert (last.previous_status, last.new_status) == ("pending", "delivered")
        assert last.response_code == "DELIVERED"
        assert (
            db.query(AuditEvent)
            .filter_by(entity_id=submission.id, event_type="submission.status_changed")
            .count()
            == 2
        )

    def test_acceptance_keeps_invoice_pending(self, db, submission, invoice):
        apply_transition(db, submission, SubmissionStatus.ACCEPTED)
        db.commit()
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.PENDING

    def test_rejection_does_not_touch_paid_invoice(self, db, submission, invoice):
        invoice.status = InvoiceStatus.PAID
        db.commit()
        apply_transition(db, submission, SubmissionStatus.REJECTED)
        db.commit()
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.PAID


class TestTriage:
    def test_list_open_only(self, db, submission):
        open_record = _open_response(db, "DL-9")
        closed = _open_response(db, "DL-10")
        closed.triage_status = TriageStatus.DISMISSED
        db.commit()
        assert [r.id for r in triage.list_open(db)] == [open_record.id]

    def test_link_applies_outcome(self, db, submission, operator):
        record = _open_response(db)

        triage.resolve(db, record, submission, notes="Wrong number on reply", actor_id=operator.id)
        db.commit()

        db.refresh(record)
        db.refresh(submission)
        assert record.triage_status == TriageStatus.RESOLVED
        assert record.submission_id == submission.id
        assert record.match_method == MatchMethod.MANUAL
        assert record.triage_notes == "Wrong number on reply"
        assert submission.status == SubmissionStatus.REJECTED
        assert submission.insurance_response_code == "refused"
        assert submission.history[-1].response_message == (
            "Linked by operator. Insurer response: rejected — Unbekannte Rechnung"
        )

    def test_link_without_explanation(self, db, submission):
        record = _open_response(db)
        record.explanation = None
        db.commit()

        triage.resolve(db, record, submission)
        db.commit()

        db.refresh(submission)
        assert submission.history[-1].response_message == (
            "Linked by operator. Insurer response: rejected"
        )
        assert submission.insurance_response_message == "rejected"

    def test_link_to_decided_submission_keeps_status(self, db, submission):
        apply_transition(db, submission, SubmissionStatus.ACCEPTED)
        db.commit()
        record = _open_response(db, response_type="pending", status_out="pending")

        triage.resolve(db, record, submission)
        db.commit()

        db.refresh(submission)
        assert submission.status == SubmissionStatus.ACCEPTED
        assert record.triage_status == TriageStatus.RESOLVED

    def test_link_reads_current_submission_state(self, db, submission):
        record = _open_response(db)
        assert submission.status == SubmissionStatus.PENDING
        # Another worker rejected it meanwhile; the in-memory row still says pending
        db.query(Submission).filter(Submission.id == submission.id).update(
            {Submission.status: SubmissionStatus.REJECTED}, synchronize_session=False
        )
        db.flush()
        assert submission.status == SubmissionStatus.PENDING

        triage.resolve(db, record, submission)
        db.commit()

        history = (
            db.query(SubmissionHistory)
            .filter_by(submission_id=submission.id)
            .order_by(SubmissionHistory.id)
            .all()
        )
        assert [h.new_status for h in history] == [
            SubmissionStatus.DRAFT,
            SubmissionStatus.PENDING,
        ]

    def test_dismiss(self, db, submission):
        record = _open_response(db)
        triage.resolve(db, record, None, notes="Duplicate of paper reply")
        db.commit()
        db.refresh(submission)
        assert record.triage_status == TriageStatus.DISMISSED
        assert record.submission_id is None
        assert submission.status == SubmissionStatus.PENDING

    def test_resolve_twice_refused(self, db, submission):
        record = _open_response(db)
        triage.resolve(db, record, None)
        db.commit()
        with pytest.raises(triage.TriageError):
            triage.resolve(db, record, submission)

    def test_audit_written(self, db, submission):
        record = _open_response(db)
        triage.resolve(db, record, None)
        db.commit()
        assert (
            db.query(AuditEvent)
            .filter_by(entity_id=record.id, event_type="medidata_response.triage_resolved")
            .count()
            == 1
        )
