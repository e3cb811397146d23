"""
Invoice submission: build → persist draft → upload → pending.

Steps:
  1. Refuse if the invoice already has an active (non-terminal) submission.
     A draft whose upload never went through is re-used instead.
  2. Build the document and render XML (BuildError propagates, nothing stored)
  3. Persist the Submission as draft with its XML and commit, so a crash
     during upload still leaves a record to retry from
  4. Upload. TransportError: history row with the error, submission stays draft
  5. Store the message id, transition draft → pending, invoice → PENDING
  6. Tiers Payant only: send the patient copy (failure is logged, not raised)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.audit import ActorType
from app.models.base import utcnow
from app.models.invoice import Invoice, InvoiceStatus
from app.models.submission import Submission, SubmissionHistory, SubmissionStatus
from app.services.audit import logger as audit
from app.services.invoice_document.builder import (
    BuildError,
    BuildOptions,
    BuildResult,
    build,
)
from app.services.invoice_document.codes import RequestSubtype, TiersMode
from app.services.invoice_document.xml_writer import render_xml
from app.services.reconciliation.status import apply_transition
from app.services.storage.base import StorageBackend, get_storage
from app.services.transport.base import ClearingHouseTransport, TransportError
from app.services.transport.medidata_proxy import get_transport
from app.settings import settings

logger = logging.getLogger(__name__)

# Invoice states from which a submission moves the invoice to PENDING
_SUBMITTABLE_INVOICE_STATES = {
    InvoiceStatus.DRAFT,
    InvoiceStatus.OPEN,
    InvoiceStatus.REJECTED,
}

# A draft without a recorded failure younger than this may still be uploading
DRAFT_UPLOAD_WINDOW = timedelta(minutes=5)


class ActiveSubmissionExists(Exception):
    def __init__(self, submission: Submission):
        self.submission = submission
        super().__init__(
            f"Invoice {submission.invoice_number} already has an active submission "
            f"({submission.status})"
        )


@dataclass
class PreparedDocument:
    result: BuildResult
    xml: str

    @property
    def warnings(self) -> list[str]:
        return self.result.warnings


def build_options_from_settings() -> BuildOptions:
    return BuildOptions(
        sender_gln=settings.medidata_sender_gln or None,
        default_canton=settings.default_canton,
        payment_period_days=settings.payment_period_days,
    )


def prepare_document(
    invoice: Invoice,
    request_subtype: RequestSubtype = RequestSubtype.NORMAL,
    options: Optional[BuildOptions] = None,
    timestamp: Optional[datetime] = None,
) -> PreparedDocument:
    """Build and render without any side effects (used by preview and submit)."""
    result = build(
        invoice,
        invoice.line_items,
        invoice.patient,
        invoice.billing_entity,
        invoice.staff,
        invoice.insurer,
        request_subtype=request_subtype,
        options=options or build_options_from_settings(),
    )
    return PreparedDocument(result=result, xml=render_xml(result.document, timestamp))


def find_active_submission(db: Session, invoice_id: uuid.UUID) -> Optional[Submission]:
    return (
        db.query(Submission)
        .filter(
            Submission.invoice_id == invoice_id,
            Submission.status.notin_(SubmissionStatus.TERMINAL),
        )
        .order_by(Submission.created_at.desc())
        .first()
    )


def is_retryable_draft(submission: Submission, now: datetime) -> bool:
    """A draft whose upload failed, or was abandoned mid-flight, may be re-sent."""
    if submission.status != SubmissionStatus.DRAFT or submission.medidata_message_id:
        return False
    if submission.medidata_response_message is not None:
        return True
    touched = submission.updated_at or submission.created_at
    if touched is None:
        return True
    if touched.tzinfo is None:
        touched = touched.replace(tzinfo=timezone.utc)
    return now - touched > DRAFT_UPLOAD_WINDOW


def upload_info(prepared: PreparedDocument) -> dict:
    document = prepared.result.document
    return {
        "type": "invoice",
        "invoiceNumber": document.invoice_number,
        "invoiceDate": document.invoice_date.isoformat() if document.invoice_date else None,
        "billingType": "TP" if document.tiers_mode == TiersMode.PAYANT else "TG",
        "lawType": document.law_type.name,
        "senderGln": document.routing.from_gln,
        "receiverGln": document.routing.to_gln,
        "amount": str(document.total),
        "currency": document.currency,
        "requestSubtype": document.request_subtype.name.lower(),
    }


def submit_invoice(
    db: Session,
    invoice: Invoice,
    transport: ClearingHouseTransport,
    storage: Optional[StorageBackend] = None,
    actor_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Submission:
    """
    Submit `invoice` to the clearing house and return its Submission.

    Raises ActiveSubmissionExists, BuildError, or TransportError (after the
    failed attempt has been recorded on the draft).
    """
    now = now or utcnow()
    actor_type = ActorType.OPERATOR if actor_id else ActorType.SYSTEM

    # Serialises concurrent submits of the same invoice until the draft commit
    invoice = (
        db.query(Invoice)
        .filter(Invoice.id == invoice.id)
        .with_for_update()
        .populate_existing()
        .one()
    )
    active = find_active_submission(db, invoice.id)
    if active is not None and not is_retryable_draft(active, now):
        raise ActiveSubmissionExists(active)

    prepared = prepare_document(invoice, timestamp=now)
    document = prepared.result.document

    if active is None:
        submission = Submission(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            invoice_amount=document.total,
            billing_type=invoice.billing_type,
            law_type=invoice.law_type,
            xml_version=prepared.result.used_schema,
            status=SubmissionStatus.DRAFT,
        )
        db.add(submission)
        db.flush()
        db.add(
            SubmissionHistory(
                submission_id=submission.id,
                previous_status=None,
                new_status=SubmissionStatus.DRAFT,
            )
        )
    else:
        submission = active
        logger.info("Retrying upload of draft submission %s", submission.id)

    submission.xml_content = prepared.xml
    submission.xml_version = prepared.result.used_schema
    submission.validation_warning = prepared.result.validation_warning
    submission.xml_path = _store_xml(storage, f"{invoice.invoice_number}.xml", prepared.xml)
    if not invoice.reference_number:
        invoice.reference_number = document.reference_number
    if active is None:
        audit.log_submission_created(db, submission, actor_id=actor_id)
    db.commit()

    # ── Upload ───────────────────────────────────────────────────────────────
    try:
        upload = transport.submit(
            prepared.xml, f"{invoice.invoice_number}.xml", upload_info(prepared)
        )
    except TransportError as exc:
        logger.error(
            "Upload of invoice %s failed: %s", invoice.invoice_number, exc
        )
        code = str(exc.status_code) if exc.status_code is not None else None
        submission.medidata_response_code = code
        submission.medidata_response_message = exc.message
        db.add(
            SubmissionHistory(
                submission_id=submission.id,
                previous_status=SubmissionStatus.DRAFT,
                new_status=SubmissionStatus.DRAFT,
                response_code=code,
                response_message=exc.message,
            )
        )
        db.commit()
        raise

    submission.medidata_message_id = upload.message_id
    submission.medidata_response_code = str(upload.status_code)
    submission.medidata_response_message = None
    submission.transmitted_at = now
    apply_transition(
        db,
        submission,
        SubmissionStatus.PENDING,
        response_code=str(upload.status_code),
        actor_type=actor_type,
        actor_id=actor_id,
    )

    if invoice.status in _SUBMITTABLE_INVOICE_STATES:
        previous = invoice.status
        invoice.status = InvoiceStatus.PENDING
        audit.log_invoice_status_changed(
            db, invoice, previous, InvoiceStatus.PENDING, actor_type=actor_type, actor_id=actor_id
        )
    db.commit()
    logger.info(
        "Invoice %s submitted as message %s", invoice.invoice_number, upload.message_id
    )

    if document.tiers_mode == TiersMode.PAYANT:
        copy_ref = _send_patient_copy(invoice, transport, now)
        if copy_ref:
            submission.patient_copy_ref = copy_ref
            db.commit()

    return submission


def _send_patient_copy(
    invoice: Invoice, transport: ClearingHouseTransport, now: datetime
) -> Optional[str]:
    """Tiers Payant: the patient is entitled to a copy of the invoice."""
    try:
        prepared = prepare_document(invoice, RequestSubtype.COPY, timestamp=now)
        upload = transport.submit(
            prepared.xml, f"{invoice.invoice_number}-copy.xml", upload_info(prepared)
        )
    except (BuildError, TransportError) as exc:
        logger.warning(
            "Patient copy for invoice %s was not sent: %s", invoice.invoice_number, exc
        )
        return None
    logger.info(
        "Patient copy for invoice %s sent as %s", invoice.invoice_number, upload.message_id
    )
    return upload.message_id


def _store_xml(storage: Optional[StorageBackend], filename: str, xml: str) -> Optional[str]:
    if storage is None:
        return None
    try:
        return storage.save(xml.encode("utf-8"), filename, subfolder="invoices")
    except OSError as exc:
        logger.warning("Could not store %s: %s", filename, exc)
        return None


def process_submission(invoice_id: str, actor_id: Optional[str] = None) -> dict:
    """
    RQ background job entry point.

    Returns:
        Summary dict (stored as RQ job result).
    """
    inv_uuid = uuid.UUID(invoice_id)
    logger.info("Starting submission job for invoice %s", invoice_id)

    db = SessionLocal()
    transport = get_transport()
    try:
        invoice = db.get(Invoice, inv_uuid)
        if invoice is None:
            logger.error("Invoice %s not found", invoice_id)
            return {"error": "Invoice not found", "invoice_id": invoice_id}

        try:
            submission = submit_invoice(
                db,
                invoice,
                transport,
                storage=get_storage(),
                actor_id=uuid.UUID(actor_id) if actor_id else None,
            )
        except (ActiveSubmissionExists, TransportError) as exc:
            return {"error": str(exc), "invoice_id": invoice_id}
        except BuildError as exc:
            return {"error": exc.message, "code": exc.code, "invoice_id": invoice_id}

        return {
            "invoice_id": invoice_id,
            "submission_id": str(submission.id),
            "status": submission.status,
            "message_id": submission.medidata_message_id,
            "patient_copy_ref": submission.patient_copy_ref,
            "validation_warning": submission.validation_warning,
        }
    except Exception:
        db.rollback()
        logger.exception("Unhandled error submitting invoice %s", invoice_id)
        raise
    finally:
        transport.close()
        db.close()
