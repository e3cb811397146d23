"""
Audit Logger — the only way to write AuditEvent rows.

Design rules enforced here:
  - created_at is always server-set (DB default) — never passed by application
  - Payload is always serialized to a plain dict (no ORM objects)
  - All writes go through log_event() — no direct AuditEvent instantiation elsewhere
  - This module never raises — audit failures are logged but do not block the main flow
"""

import json
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models.audit import ActorType, AuditEvent

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    entity_type: str,
    entity_id: uuid.UUID,
    event_type: str,
    payload: dict[str, Any],
    actor_type: str = ActorType.SYSTEM,
    actor_id: Optional[uuid.UUID] = None,
    flush: bool = True,
) -> None:
    """
    Write an immutable audit event to the database.

    Args:
        db:          SQLAlchemy session (caller manages transaction)
        entity_type: The type of entity that changed (e.g. "submission", "invoice")
        entity_id:   UUID of the entity
        event_type:  Past-tense event name (e.g. "submission.status_changed")
        payload:     Dict snapshot of relevant state — JSON-serializable
        actor_type:  SYSTEM | OPERATOR | CLEARING_HOUSE | PAYMENT_GATEWAY
        actor_id:    User.id if human-triggered; None for system events
        flush:       If True, flush to DB immediately (within the caller's transaction)

    Does not raise — exceptions are caught and logged as warnings.
    """
    try:
        event = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            payload=_safe_payload(payload),
        )
        db.add(event)
        if flush:
            db.flush()
    except Exception as exc:
        logger.warning(
            "Failed to write audit event %r for %s:%s — %s",
            event_type,
            entity_type,
            entity_id,
            exc,
        )


def _safe_payload(payload: dict) -> dict:
    """
    Ensure payload is JSON-serializable.
    Converts UUID, date/datetime and Decimal to strings.
    """

    def default(obj: Any) -> Any:
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

    return json.loads(json.dumps(payload, default=default))


# ── Convenience wrappers for common events ────────────────────────────────────


def log_submission_created(
    db: Session, submission, actor_id: Optional[uuid.UUID] = None
) -> None:
    log_event(
        db,
        "submission",
        submission.id,
        "submission.created",
        payload={
            "invoice_number": submission.invoice_number,
            "invoice_id": submission.invoice_id,
            "billing_type": submission.billing_type,
            "law_type": submission.law_type,
            "xml_version": submission.xml_version,
            "validation_warning": submission.validation_warning,
        },
        actor_type=ActorType.OPERATOR if actor_id else ActorType.SYSTEM,
        actor_id=actor_id,
    )


def log_submission_status_changed(
    db: Session,
    submission,
    from_status: Optional[str],
    to_status: str,
    response_code: Optional[str] = None,
    actor_type: str = ActorType.CLEARING_HOUSE,
    actor_id: Optional[uuid.UUID] = None,
) -> None:
    log_event(
        db,
        "submission",
        submission.id,
        "submission.status_changed",
        payload={
            "invoice_number": submission.invoice_number,
            "message_id": submission.medidata_message_id,
            "from_status": from_status,
            "to_status": to_status,
            "response_code": response_code,
        },
        actor_type=actor_type,
        actor_id=actor_id,
    )


def log_invoice_status_changed(
    db: Session,
    invoice,
    from_status: str,
    to_status: str,
    actor_type: str = ActorType.SYSTEM,
    actor_id: Optional[uuid.UUID] = None,
) -> None:
    log_event(
        db,
        "invoice",
        invoice.id,
        "invoice.status_changed",
        payload={
            "from_status": from_status,
            "to_status": to_status,
            "invoice_number": invoice.invoice_number,
        },
        actor_type=actor_type,
        actor_id=actor_id,
    )


def log_response_unmatched(db: Session, response) -> None:
    """An insurer document arrived that no submission claims; it is now in triage."""
    log_event(
        db,
        "medidata_response",
        response.id,
        "medidata_response.unmatched",
        payload={
            "message_id": response.medidata_message_id,
            "correlation_reference": response.correlation_reference,
            "document_reference": response.document_reference,
            "response_type": response.response_type,
        },
        actor_type=ActorType.CLEARING_HOUSE,
    )


def log_triage_resolved(
    db: Session,
    response,
    actor_id: Optional[uuid.UUID],
) -> None:
    log_event(
        db,
        "medidata_response",
        response.id,
        "medidata_response.triage_resolved",
        payload={
            "message_id": response.medidata_message_id,
            "triage_status": response.triage_status,
            "submission_id": response.submission_id,
            "notes": response.triage_notes,
        },
        actor_type=ActorType.OPERATOR,
        actor_id=actor_id,
    )


def log_payment_applied(
    db: Session,
    invoice,
    payment_event,
    from_status: str,
) -> None:
    log_event(
        db,
        "invoice",
        invoice.id,
        "invoice.payment_applied",
        payload={
            "invoice_number": invoice.invoice_number,
            "source": payment_event.source,
            "external_id": payment_event.external_id,
            "amount": payment_event.amount,
            "outcome": payment_event.outcome,
            "from_status": from_status,
            "to_status": invoice.status,
            "paid_amount": invoice.paid_amount,
        },
        actor_type=ActorType.PAYMENT_GATEWAY,
    )
