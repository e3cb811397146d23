"""
Clearing-house routes (operator-facing).

Workflow:
  POST /medidata/invoices/{id}/preview       → build document, return XML + warnings
  POST /medidata/invoices/{id}/submit        → submit now (or enqueue with ?background=true)
  GET  /medidata/invoices/{id}/submissions   → all submissions of an invoice
  GET  /medidata/submissions/{id}            → submission + status history
  POST /medidata/poll                        → run one reconciliation cycle now
                                               (or enqueue with ?background=true)
  GET  /medidata/triage                      → insurer responses that matched nothing
  POST /medidata/triage/{id}/resolve         → link to a submission, or dismiss
  GET  /medidata/participants                → insurer directory (name, lawtype, glnparticipant)
  GET  /medidata/health                      → is the clearing-house proxy reachable

Error mapping:
  BuildError              → 422 (code + message in detail)
  ActiveSubmissionExists  → 409
  TransportError          → 502 (the draft stays, submit again later)
"""

import uuid
from collections.abc import Generator
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.invoice import Invoice
from app.models.party import User, UserRole
from app.models.submission import ResponseRecord, Submission
from app.routers.auth import require_role
from app.schemas.medidata import (
    ClearingHouseHealthResponse,
    DocumentPreviewResponse,
    ParticipantItem,
    PollResponse,
    QueuedJobResponse,
    SubmissionDetailResponse,
    SubmissionResponse,
    TriageItem,
    TriageResolvePayload,
    TriageResolveResponse,
)
from app.services.invoice_document.builder import BuildError
from app.services.reconciliation import triage
from app.services.storage.base import StorageBackend, get_storage
from app.services.submission.submitter import (
    ActiveSubmissionExists,
    prepare_document,
    submit_invoice,
)
from app.services.transport.base import ClearingHouseTransport, Participant, TransportError
from app.services.transport.medidata_proxy import get_transport
from app.workers.queue import enqueue_reconciliation, enqueue_submission
from app.workers.reconcile import run_reconciliation_cycle

router = APIRouter(prefix="/medidata", tags=["medidata"])

_OPERATOR_ROLES = (UserRole.ADMIN, UserRole.BILLING)


# ── Dependencies ──────────────────────────────────────────────────────────────


def get_clearing_house() -> Generator[ClearingHouseTransport, None, None]:
    """One transport per request, closed afterwards."""
    transport = get_transport()
    try:
        yield transport
    finally:
        transport.close()


def get_document_storage() -> Optional[StorageBackend]:
    return get_storage()


# ── Documents & submission ────────────────────────────────────────────────────


@router.post("/invoices/{invoice_id}/preview", response_model=DocumentPreviewResponse)
def preview_document(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(*_OPERATOR_ROLES)),
) -> DocumentPreviewResponse:
    """Build the document exactly as submit would, without storing or sending it."""
    invoice = _get_invoice(invoice_id, db)
    try:
        prepared = prepare_document(invoice)
    except BuildError as exc:
        raise _build_error(exc)

    document = prepared.result.document
    return DocumentPreviewResponse(
        invoice_number=document.invoice_number,
        schema_version=prepared.result.used_schema,
        reference_number=document.reference_number,
        total=document.total,
        warnings=prepared.warnings,
        validation_warning=prepared.result.validation_warning,
        xml=prepared.xml,
    )


@router.post(
    "/invoices/{invoice_id}/submit",
    response_model=Union[SubmissionResponse, QueuedJobResponse],
)
def submit(
    invoice_id: uuid.UUID,
    background: bool = False,
    db: Session = Depends(get_db),
    transport: ClearingHouseTransport = Depends(get_clearing_house),
    storage: Optional[StorageBackend] = Depends(get_document_storage),
    current_user: User = Depends(require_role(*_OPERATOR_ROLES)),
):
    invoice = _get_invoice(invoice_id, db)

    if background:
        job_id = enqueue_submission(str(invoice.id), str(current_user.id))
        return QueuedJobResponse(
            job_id=job_id, message=f"Submission of {invoice.invoice_number} queued"
        )

    try:
        submission = submit_invoice(
            db, invoice, transport, storage=storage, actor_id=current_user.id
        )
    except ActiveSubmissionExists as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(exc),
                "submission_id": str(exc.submission.id),
                "status": exc.submission.status,
            },
        )
    except BuildError as exc:
        raise _build_error(exc)
    except TransportError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Clearing house unavailable: {exc}",
        )
    return SubmissionResponse.model_validate(submission)


@router.get(
    "/invoices/{invoice_id}/submissions", response_model=list[SubmissionResponse]
)
def list_invoice_submissions(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(*_OPERATOR_ROLES)),
) -> list[Submission]:
    return _get_invoice(invoice_id, db).submissions


@router.get("/submissions/{submission_id}", response_model=SubmissionDetailResponse)
def get_submission(
    submission_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(*_OPERATOR_ROLES)),
) -> Submission:
    submission = db.get(Submission, submission_id)
    if submission is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    return submission


# ── Reconciliation ────────────────────────────────────────────────────────────


@router.post("/poll", response_model=Union[PollResponse, QueuedJobResponse])
def poll(
    background: bool = False,
    db: Session = Depends(get_db),
    transport: ClearingHouseTransport = Depends(get_clearing_house),
    storage: Optional[StorageBackend] = Depends(get_document_storage),
    current_user: User = Depends(require_role(*_OPERATOR_ROLES)),
):
    """
    Run one reconciliation cycle. With ?background=true the cycle is queued
    instead; a cycle already queued or running is reused.
    """
    if background:
        return QueuedJobResponse(
            job_id=enqueue_reconciliation(), message="Reconciliation cycle queued"
        )
    return run_reconciliation_cycle(db, transport, storage=storage)


@router.get("/triage", response_model=list[TriageItem])
def list_triage(
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(*_OPERATOR_ROLES)),
) -> list[ResponseRecord]:
    """Unmatched insurer responses, oldest first."""
    return triage.list_open(db, limit=limit)


@router.post("/triage/{response_id}/resolve", response_model=TriageResolveResponse)
def resolve_triage(
    response_id: uuid.UUID,
    payload: TriageResolvePayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(*_OPERATOR_ROLES)),
) -> TriageResolveResponse:
    response = db.get(ResponseRecord, response_id)
    if response is None:
        raise HTTPException(status_code=404, detail="Response not found")

    submission = None
    if payload.submission_id is not None:
        submission = db.get(Submission, payload.submission_id)
        if submission is None:
            raise HTTPException(status_code=404, detail="Submission not found")

    try:
        triage.resolve(db, response, submission, payload.notes, actor_id=current_user.id)
    except triage.TriageError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    db.commit()

    return TriageResolveResponse(
        id=response.id,
        triage_status=response.triage_status,
        submission_id=response.submission_id,
        submission_status=submission.status if submission is not None else None,
    )


# ── Directory ─────────────────────────────────────────────────────────────────


@router.get("/participants", response_model=list[ParticipantItem])
def list_participants(
    name: Optional[str] = None,
    lawtype: Optional[int] = None,
    glnparticipant: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    transport: ClearingHouseTransport = Depends(get_clearing_house),
    current_user: User = Depends(require_role(*_OPERATOR_ROLES)),
) -> list[Participant]:
    """Insurers reachable through the clearing house, e.g. to pick a receiver GLN."""
    try:
        return transport.list_participants(
            name=name,
            lawtype=lawtype,
            glnparticipant=glnparticipant,
            limit=limit,
            offset=offset,
        )
    except TransportError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Clearing house unavailable: {exc}",
        )


@router.get("/health", response_model=ClearingHouseHealthResponse)
def clearing_house_health(
    transport: ClearingHouseTransport = Depends(get_clearing_house),
    current_user: User = Depends(require_role(*_OPERATOR_ROLES)),
) -> ClearingHouseHealthResponse:
    return ClearingHouseHealthResponse(reachable=transport.health())


# ── Private helpers ───────────────────────────────────────────────────────────


def _get_invoice(invoice_id: uuid.UUID, db: Session) -> Invoice:
    invoice = db.get(Invoice, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


def _build_error(exc: BuildError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"code": exc.code, "message": exc.message},
    )
