"""
Clearing-house schemas: document preview, submissions, poll results and the
triage queue.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import Field

from app.schemas.common import BaseSchema, TimestampedSchema


class DocumentPreviewResponse(BaseSchema):
    invoice_number: str
    schema_version: str
    reference_number: str
    total: Decimal
    warnings: list[str] = []
    validation_warning: Optional[str] = None
    xml: str


class SubmissionHistoryItem(BaseSchema):
    id: int
    previous_status: Optional[str] = None
    new_status: str
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    created_at: datetime


class SubmissionResponse(TimestampedSchema):
    invoice_id: uuid.UUID
    invoice_number: str
    invoice_amount: Decimal
    billing_type: str
    law_type: str
    status: str
    xml_version: str
    medidata_message_id: Optional[str] = None
    patient_copy_ref: Optional[str] = None
    transmitted_at: Optional[datetime] = None
    medidata_response_code: Optional[str] = None
    medidata_response_message: Optional[str] = None
    insurance_response_date: Optional[datetime] = None
    insurance_response_code: Optional[str] = None
    insurance_response_message: Optional[str] = None
    validation_warning: Optional[str] = None


class SubmissionDetailResponse(SubmissionResponse):
    history: list[SubmissionHistoryItem] = []


class QueuedJobResponse(BaseSchema):
    job_id: str
    message: str


class PollResponse(BaseSchema):
    """Summary of one reconciliation cycle, as returned by the worker."""

    polled_at: str
    status_updates: dict[str, int]
    downloads: dict[str, Any]
    notifications: dict[str, Any]


class TriageItem(TimestampedSchema):
    medidata_message_id: str
    document_reference: Optional[str] = None
    correlation_reference: Optional[str] = None
    sender_gln: Optional[str] = None
    response_type: str
    status_out: Optional[str] = None
    explanation: Optional[str] = None
    triage_status: str
    received_at: Optional[datetime] = None


class TriageResolvePayload(BaseSchema):
    """
    Link an unmatched insurer response to a submission, or dismiss it by
    leaving submission_id empty.
    """

    submission_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class TriageResolveResponse(BaseSchema):
    id: uuid.UUID
    triage_status: str
    submission_id: Optional[uuid.UUID] = None
    submission_status: Optional[str] = None


class ParticipantItem(BaseSchema):
    gln: str
    receiver_gln: Optional[str] = None
    name: str
    law_types: list[int] = []
    tg_allowed: Optional[bool] = None


class ClearingHouseHealthResponse(BaseSchema):
    reachable: bool
