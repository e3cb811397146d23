"""
Operator triage of insurer responses that matched no submission.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from app.models.audit import ActorType
from app.models.submission import ResponseRecord, Submission, TriageStatus
from app.services.audit.logger import log_triage_resolved
from app.services.reconciliation.matching import MatchMethod
from app.services.reconciliation.response_parser import ParsedResponse, ResponseType
from app.services.reconciliation.status import (
    apply_transition,
    lock_submission,
    status_for_response,
)

logger = logging.getLogger(__name__)


class TriageError(Exception):
    pass


def list_open(db: Session, limit: int = 100) -> list[ResponseRecord]:
    return (
        db.query(ResponseRecord)
        .filter(ResponseRecord.triage_status == TriageStatus.OPEN)
        .order_by(ResponseRecord.created_at)
        .limit(limit)
        .all()
    )


def resolve(
    db: Session,
    response: ResponseRecord,
    submission: Optional[Submission],
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> ResponseRecord:
    """
    Link `response` to `submission` and apply its outcome, or dismiss it when
    `submission` is None. Caller commits.
    """
    response = (
        db.query(ResponseRecord)
        .filter(ResponseRecord.id == response.id)
        .with_for_update()
        .populate_existing()
        .one()
    )
    if response.triage_status != TriageStatus.OPEN:
        raise TriageError(f"Response {response.id} is not awaiting triage")

    response.triage_notes = notes
    if submission is None:
        response.triage_status = TriageStatus.DISMISSED
    else:
        submission = lock_submission(db, submission)
        response.submission_id = submission.id
        response.match_method = MatchMethod.MANUAL
        response.triage_status = TriageStatus.RESOLVED

        parsed = ParsedResponse(
            type=ResponseType(response.response_type),
            status_in=response.status_in,
            status_out=response.status_out,
            explanation=response.explanation,
        )
        target = status_for_response(submission.status, parsed.type)
        if apply_transition(
            db,
            submission,
            target,
            response_code=response.status_out,
            response_message=f"Linked by operator. {parsed.history_message()}",
            actor_type=ActorType.OPERATOR,
            actor_id=actor_id,
        ):
            submission.insurance_response_date = response.received_at or response.created_at
            submission.insurance_response_code = response.status_out
            submission.insurance_response_message = (
                response.explanation or response.response_type
            )

    log_triage_resolved(db, response, actor_id)
    logger.info(
        "Triage %s for response %s", response.triage_status, response.medidata_message_id
    )
    return response
