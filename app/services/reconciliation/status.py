"""
Submission state machine.

    draft → pending → transmitted → delivered → accepted | rejected
                 ╰──────────╰─→ rejected   (upstream ERROR)

Mapping functions are pure. apply_transition() is the only writer of
Submission.status outside the submitter; it is idempotent (same status →
no-op) and every applied change appends exactly one SubmissionHistory row.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.models.audit import ActorType
from app.models.invoice import InvoiceStatus
from app.models.submission import Submission, SubmissionHistory, SubmissionStatus
from app.services.audit.logger import (
    log_invoice_status_changed,
    log_submission_status_changed,
)
from app.services.reconciliation.response_parser import ResponseType
from app.services.transport.base import UpstreamStatus

logger = logging.getLogger(__name__)

_STATUS_BY_UPSTREAM = {
    UpstreamStatus.DONE: SubmissionStatus.TRANSMITTED,
    UpstreamStatus.DELIVERED: SubmissionStatus.DELIVERED,
    UpstreamStatus.ERROR: SubmissionStatus.REJECTED,
}

_STATUS_BY_RESPONSE = {
    ResponseType.ACCEPTED: SubmissionStatus.ACCEPTED,
    ResponseType.REJECTED: SubmissionStatus.REJECTED,
    ResponseType.PENDING: SubmissionStatus.PENDING,
}


def map_upstream_status(
    current: str,
    upstream: Optional[str],
    created: Optional[datetime],
    now: datetime,
    dwell_seconds: int,
) -> str:
    """
    Target status for an upload-status reply. PROCESSING on a pending
    submission older than `dwell_seconds` counts as transmitted: Tiers Garant
    uploads addressed to the no-transmission GLN never leave PROCESSING.
    """
    mapped = _STATUS_BY_UPSTREAM.get(upstream)
    if mapped is not None:
        return mapped
    if (
        upstream == UpstreamStatus.PROCESSING
        and current == SubmissionStatus.PENDING
        and created is not None
        and (now - created).total_seconds() > dwell_seconds
    ):
        return SubmissionStatus.TRANSMITTED
    return current


def status_for_response(current: str, response_type: ResponseType) -> str:
    """Target status for a parsed insurer response; UNKNOWN keeps `current`."""
    target = _STATUS_BY_RESPONSE.get(response_type, current)
    # A late "pending" does not reopen a decided submission
    if target == SubmissionStatus.PENDING and current in SubmissionStatus.TERMINAL:
        return current
    return target


def apply_transition(
    db: Session,
    submission,
    new_status: str,
    response_code: Optional[str] = None,
    response_message: Optional[str] = None,
    actor_type: str = ActorType.CLEARING_HOUSE,
    actor_id=None,
) -> bool:
    """Returns True if the status changed. Does not commit."""
    previous = submission.status
    if new_status == previous:
        return False
    if new_status not in SubmissionStatus.ALL:
        raise ValueError(f"Unknown submission status: {new_status!r}")

    submission.status = new_status
    db.add(
        SubmissionHistory(
            submission_id=submission.id,
            previous_status=previous,
            new_status=new_status,
            response_code=response_code,
            response_message=response_message,
        )
    )
    log_submission_status_changed(
        db,
        submission,
        previous,
        new_status,
        response_code=response_code,
        actor_type=actor_type,
        actor_id=actor_id,
    )
    logger.info(
        "Submission %s (%s): %s → %s",
        submission.id,
        submission.invoice_number,
        previous,
        new_status,
    )

    _sync_invoice_status(db, submission, actor_type, actor_id)
    return True


def lock_submission(db: Session, submission) -> Submission:
    """Re-read the submission with a row lock (no-op on SQLite)."""
    return (
        db.query(Submission)
        .filter(Submission.id == submission.id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def _sync_invoice_status(db: Session, submission, actor_type: str, actor_id) -> None:
    """Rejection marks the invoice; acceptance leaves it PENDING until paid."""
    invoice = submission.invoice
    if invoice is None or submission.status != SubmissionStatus.REJECTED:
        return
    if invoice.status in InvoiceStatus.TERMINAL or invoice.status == InvoiceStatus.REJECTED:
        return
    previous = invoice.status
    invoice.status = InvoiceStatus.REJECTED
    log_invoice_status_changed(
        db, invoice, previous, InvoiceStatus.REJECTED, actor_type=actor_type, actor_id=actor_id
    )
