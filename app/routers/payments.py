"""
Payment routes.

  GET  /payments/payrexx/webhook   → endpoint check used when registering the webhook
  POST /payments/payrexx/webhook   → Payrexx transaction update (no auth, always 200)
  POST /payments/bank-file         → camt.054 import (operator)

The webhook never answers with an error status: Payrexx retries anything
that is not 2xx, and a payload we cannot apply now will not become
applicable by being resent. Failures are logged with the transaction id and
a payload excerpt, and reported in the `error` field of the ack.
"""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.party import User, UserRole
from app.routers.auth import require_role
from app.schemas.payment import BankFileResponse, WebhookAck
from app.services.payments.camt054 import Camt054Error, apply_bank_file, parse_camt054
from app.services.payments.payrexx import (
    WebhookPayloadError,
    parse_webhook_payload,
    reconcile_transaction,
    transaction_from_payload,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

_PAYLOAD_EXCERPT = 500


# ── Payrexx ───────────────────────────────────────────────────────────────────


@router.get("/payrexx/webhook")
def payrexx_webhook_check() -> dict:
    return {"status": "Payrexx webhook endpoint active"}


@router.post("/payrexx/webhook", response_model=WebhookAck)
async def payrexx_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    body = await request.body()
    content_type = request.headers.get("content-type")
    return await run_in_threadpool(handle_payrexx_webhook, db, body, content_type)


def handle_payrexx_webhook(db: Session, body: bytes, content_type: str | None) -> WebhookAck:
    """Parse and apply one delivery. Never raises."""
    excerpt = body[:_PAYLOAD_EXCERPT].decode("utf-8", errors="replace")

    try:
        payload = parse_webhook_payload(body, content_type)
        tx = transaction_from_payload(payload)
    except WebhookPayloadError as exc:
        logger.error("Unreadable Payrexx webhook (%s): %s", exc, excerpt)
        return WebhookAck(error=str(exc))
    except Exception:
        logger.exception("Unexpected error reading Payrexx webhook: %s", excerpt)
        return WebhookAck(error="Unreadable payload")

    try:
        result = reconcile_transaction(db, tx, payload=payload)
    except Exception as exc:
        db.rollback()
        logger.exception(
            "Payrexx transaction %s (%s) could not be applied; payload: %s",
            tx.id,
            tx.status,
            excerpt,
        )
        return WebhookAck(transaction_id=tx.id, status=tx.status, error=str(exc))

    return WebhookAck(
        transaction_id=tx.id,
        status=tx.status,
        outcome=result.outcome,
        invoice_number=result.invoice_number,
        duplicate=result.duplicate,
    )


# ── Bank files ────────────────────────────────────────────────────────────────


@router.post("/bank-file", response_model=BankFileResponse)
def import_bank_file(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN, UserRole.BILLING)),
) -> BankFileResponse:
    """Import a camt.054 credit notification and apply its payments to invoices."""
    content = file.file.read()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Uploaded file is empty"
        )

    try:
        message_id, entries = parse_camt054(content)
    except Camt054Error as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if not entries:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No transactions found. Is this a camt.054 file?",
        )

    logger.info(
        "Bank file %s (%s) uploaded by %s: %d entries",
        file.filename,
        message_id,
        current_user.email,
        len(entries),
    )
    report = apply_bank_file(db, entries, message_id=message_id)
    return BankFileResponse.model_validate(report)
