"""
Clearing-house reconciliation cycle.

Supports two entry points:
  - run_reconciliation_cycle(): called with a caller-owned session and
    transport (API "poll now" button, tests).
  - poll_clearing_house():      RQ job entry point. Opens its own session and
    transport; enqueued with a fixed job id so cycles never overlap.

Cycle steps:
  1. Status checks for uploaded submissions still pending/transmitted
  2. Downloads (insurer responses): dedupe → fetch → parse → match →
     transition → persist + commit → confirm upstream → mark confirmed
  3. Notifications: dedupe → normalise → link → persist + commit → confirm

Every item commits on its own. A failure rolls back that item only and is
counted in the summary; the rest of the cycle continues. Nothing is kept in
memory between cycles: each run starts from persisted rows.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.base import utcnow
from app.models.submission import (
    NotificationRecord,
    ResponseRecord,
    Submission,
    SubmissionStatus,
    TriageStatus,
)
from app.services.audit import logger as audit
from app.services.reconciliation.matching import correlation_key, match_submission
from app.services.reconciliation.notifications import (
    NotificationSeverity,
    error_code,
    message_text,
)
from app.services.reconciliation.response_parser import parse_response
from app.services.reconciliation.status import (
    apply_transition,
    lock_submission,
    map_upstream_status,
    status_for_response,
)
from app.services.storage.base import StorageBackend, get_storage
from app.services.transport.base import (
    ClearingHouseTransport,
    DownloadEntry,
    TransportError,
    UpstreamNotification,
)
from app.services.transport.medidata_proxy import get_transport
from app.settings import settings

logger = logging.getLogger(__name__)

RECONCILE_JOB_ID = "medidata-reconcile"


# ── Public entry points ────────────────────────────────────────────────────────


def run_reconciliation_cycle(
    db: Session,
    transport: ClearingHouseTransport,
    now: Optional[datetime] = None,
    storage: Optional[StorageBackend] = None,
    dwell_seconds: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> dict:
    """
    Run one full cycle and return a summary dict:

        {"polled_at": ..., "status_updates": {...}, "downloads": {...},
         "notifications": {...}}
    """
    now = now or utcnow()
    summary = {
        "polled_at": now.isoformat(),
        "status_updates": _check_statuses(
            db,
            transport,
            now,
            settings.processing_dwell_seconds if dwell_seconds is None else dwell_seconds,
            settings.reconcile_status_batch_size if batch_size is None else batch_size,
        ),
        "downloads": _process_downloads(db, transport, now, storage),
        "notifications": _process_notifications(db, transport),
    }
    logger.info(
        "Reconciliation cycle done: %d status update(s), %d response(s), %d notification(s)",
        summary["status_updates"]["updated"],
        summary["downloads"]["processed"],
        summary["notifications"]["processed"],
    )
    return summary


def poll_clearing_house() -> dict:
    """RQ background job entry point."""
    logger.info("Starting clearing-house poll")
    db = SessionLocal()
    transport = get_transport()
    try:
        return run_reconciliation_cycle(db, transport, storage=get_storage())
    except Exception:
        db.rollback()
        logger.exception("Unhandled error during clearing-house poll")
        raise
    finally:
        transport.close()
        db.close()


# ── Step 1: upload status ──────────────────────────────────────────────────────


def _check_statuses(
    db: Session,
    transport: ClearingHouseTransport,
    now: datetime,
    dwell_seconds: int,
    batch_size: int,
) -> dict:
    counts = {"checked": 0, "updated": 0, "errors": 0}
    submissions = (
        db.query(Submission)
        .filter(
            Submission.status.in_(SubmissionStatus.POLLABLE),
            Submission.medidata_message_id.isnot(None),
        )
        .order_by(
            Submission.last_status_check_at.asc().nulls_first(),
            Submission.created_at,
        )
        .limit(batch_size)
        .all()
    )

    for submission in submissions:
        counts["checked"] += 1
        message_id = submission.medidata_message_id
        try:
            upstream = transport.check_status(message_id)
        except TransportError as exc:
            counts["errors"] += 1
            logger.warning("Status check for %s failed: %s", message_id, exc)
            _mark_checked(db, submission)
            continue

        try:
            submission = lock_submission(db, submission)
            submission.last_status_check_at = utcnow()
            target = map_upstream_status(
                submission.status, upstream.status, upstream.created, now, dwell_seconds
            )
            if apply_transition(
                db,
                submission,
                target,
                response_code=upstream.status,
                response_message=upstream.error_reason,
            ):
                submission.medidata_response_code = upstream.status
                submission.medidata_response_message = upstream.error_reason
                if target == SubmissionStatus.TRANSMITTED and submission.transmitted_at is None:
                    submission.transmitted_at = now
                counts["updated"] += 1
            db.commit()
        except Exception:
            db.rollback()
            counts["errors"] += 1
            logger.exception("Could not apply status for %s", message_id)
            _mark_checked(db, submission)

    return counts


# ── Step 2: insurer responses ──────────────────────────────────────────────────


def _process_downloads(
    db: Session,
    transport: ClearingHouseTransport,
    now: datetime,
    storage: Optional[StorageBackend],
) -> dict:
    counts = {
        "found": 0,
        "processed": 0,
        "matched": 0,
        "unmatched": 0,
        "skipped": 0,
        "errors": 0,
        "items": [],
    }
    try:
        entries = transport.list_downloads()
    except TransportError as exc:
        logger.warning("Listing downloads failed: %s", exc)
        counts["errors"] += 1
        return counts

    counts["found"] = len(entries)
    for entry in entries:
        try:
            item = _process_download(db, transport, entry, now, storage)
        except TransportError as exc:
            db.rollback()
            counts["errors"] += 1
            logger.warning("Download %s failed: %s", entry.transmission_reference, exc)
            continue
        except Exception:
            db.rollback()
            counts["errors"] += 1
            logger.exception("Processing download %s failed", entry.transmission_reference)
            continue

        if item is None:
            counts["skipped"] += 1
            continue
        counts["processed"] += 1
        counts["matched" if item["submission_id"] else "unmatched"] += 1
        counts["items"].append(item)

    return counts


def _process_download(
    db: Session,
    transport: ClearingHouseTransport,
    entry: DownloadEntry,
    now: datetime,
    storage: Optional[StorageBackend],
) -> Optional[dict]:
    ref = entry.transmission_reference

    existing = db.query(ResponseRecord).filter_by(medidata_message_id=ref).first()
    if existing is not None:
        # Stored earlier but the confirmation did not go through
        if existing.confirmed_at is None and transport.confirm_download(ref):
            existing.confirmed_at = utcnow()
            db.commit()
        return None

    content = transport.fetch_download(ref)
    parsed = parse_response(content)
    correlation = correlation_key(entry.correlation_reference, entry.document_reference)
    match = match_submission(ref, correlation, _match_candidates(db, ref, correlation))

    record = ResponseRecord(
        medidata_message_id=ref,
        document_reference=entry.document_reference,
        correlation_reference=correlation,
        sender_gln=entry.sender_gln,
        response_type=parsed.type.value,
        status_in=parsed.status_in,
        status_out=parsed.status_out,
        explanation=parsed.explanation,
        content=content,
        raw_data=entry.raw or None,
        received_at=entry.created or now,
        processed_at=now,
    )

    if match is not None:
        submission = lock_submission(db, match.submission)
        record.submission_id = submission.id
        record.match_method = match.method
        record.triage_status = TriageStatus.NOT_REQUIRED

        target = status_for_response(submission.status, parsed.type)
        if apply_transition(
            db,
            submission,
            target,
            response_code=parsed.status_out,
            response_message=parsed.history_message(),
        ):
            submission.insurance_response_date = now
            submission.insurance_response_code = parsed.status_out
            submission.insurance_response_message = parsed.explanation or parsed.type.value
        record.document_path = _store_response(storage, submission.invoice_number, ref, content)
    else:
        record.triage_status = TriageStatus.OPEN

    db.add(record)
    db.flush()
    if match is None:
        audit.log_response_unmatched(db, record)
        logger.warning(
            "Response %s (correlation %r) matched no submission; queued for triage",
            ref,
            correlation,
        )
    db.commit()

    # Confirm only after the record is durable
    confirmed = transport.confirm_download(ref)
    if confirmed:
        record.confirmed_at = utcnow()
        db.commit()

    return {
        "ref": ref,
        "type": parsed.type.value,
        "status_out": parsed.status_out,
        "explanation": parsed.explanation,
        "submission_id": str(record.submission_id) if record.submission_id else None,
        "match_method": record.match_method,
        "confirmed": confirmed,
    }


def _match_candidates(db: Session, ref: str, correlation: Optional[str]) -> list[Submission]:
    criteria = [Submission.medidata_message_id == ref]
    if correlation:
        criteria.append(
            (Submission.invoice_number == correlation)
            & Submission.medidata_message_id.isnot(None)
        )
    return db.query(Submission).filter(or_(*criteria)).all()


def _store_response(
    storage: Optional[StorageBackend], invoice_number: str, ref: str, content: str
) -> Optional[str]:
    if storage is None:
        return None
    try:
        return storage.save(
            content.encode("utf-8"),
            f"response-{invoice_number}-{ref}.xml",
            subfolder="responses",
        )
    except OSError as exc:
        logger.warning("Could not store response %s: %s", ref, exc)
        return None


# ── Step 3: notifications ──────────────────────────────────────────────────────


def _process_notifications(db: Session, transport: ClearingHouseTransport) -> dict:
    counts = {"found": 0, "processed": 0, "skipped": 0, "errors": 0, "items": []}
    try:
        notifications = transport.list_notifications()
    except TransportError as exc:
        logger.warning("Listing notifications failed: %s", exc)
        counts["errors"] += 1
        return counts

    counts["found"] = len(notifications)
    for notification in notifications:
        try:
            item = _process_notification(db, transport, notification)
        except Exception:
            db.rollback()
            counts["errors"] += 1
            logger.exception("Processing notification %s failed", notification.id)
            continue
        if item is None:
            counts["skipped"] += 1
            continue
        counts["processed"] += 1
        counts["items"].append(item)

    return counts


def _process_notification(
    db: Session,
    transport: ClearingHouseTransport,
    notification: UpstreamNotification,
) -> Optional[dict]:
    existing = (
        db.query(NotificationRecord)
        .filter_by(medidata_notification_id=notification.id)
        .first()
    )
    if existing is not None:
        if existing.confirmed_at is None and transport.confirm_notification(notification.id):
            existing.confirmed_at = utcnow()
            db.commit()
        return None

    text = message_text(notification.message)
    submission = None
    if notification.transmission_reference:
        submission = (
            db.query(Submission)
            .filter_by(medidata_message_id=notification.transmission_reference)
            .first()
        )

    record = NotificationRecord(
        medidata_notification_id=notification.id,
        severity=NotificationSeverity.parse(notification.severity).value,
        error_code=error_code(notification.error_code, text),
        message=text,
        transmission_reference=notification.transmission_reference,
        submission_id=submission.id if submission else None,
        medidata_created_at=notification.created,
    )
    db.add(record)
    db.commit()

    confirmed = transport.confirm_notification(notification.id)
    if confirmed:
        record.confirmed_at = utcnow()
        db.commit()

    return {
        "id": notification.id,
        "severity": record.severity,
        "error_code": record.error_code,
        "submission_id": str(record.submission_id) if record.submission_id else None,
        "confirmed": confirmed,
    }


# ── Helpers ────────────────────────────────────────────────────────────────────


def _mark_checked(db: Session, submission: Submission) -> None:
    """Stamp a failed check so the submission rotates to the back of the batch."""
    try:
        db.query(Submission).filter(Submission.id == submission.id).update(
            {Submission.last_status_check_at: utcnow()}, synchronize_session=False
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Could not record status check for %s", submission.id)
