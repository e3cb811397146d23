"""
Response → submission matching.

Pure function over candidate rows; the caller loads candidates. Order:
  1. transmission reference == submission.medidata_message_id
     (unique per upload, so several responses for one invoice each land on
     the upload they answer)
  2. correlation / document reference == submission.invoice_number, taking
     the most recent submission that was actually uploaded
  3. no match (response goes to triage)
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional


class MatchMethod:
    TRANSMISSION_REFERENCE = "transmission_reference"
    CORRELATION_REFERENCE = "correlation_reference"
    MANUAL = "manual"


@dataclass(frozen=True)
class MatchResult:
    submission: Any
    method: str


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _created(submission) -> datetime:
    created = getattr(submission, "created_at", None)
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


def correlation_key(correlation_reference: Optional[str], document_reference: Optional[str]) -> Optional[str]:
    return (correlation_reference or document_reference or "").strip() or None


def match_submission(
    transmission_ref: Optional[str],
    correlation_ref: Optional[str],
    candidates: Iterable[Any],
) -> Optional[MatchResult]:
    pool = list(candidates)

    if transmission_ref:
        for submission in pool:
            if submission.medidata_message_id == transmission_ref:
                return MatchResult(submission, MatchMethod.TRANSMISSION_REFERENCE)

    if correlation_ref:
        uploaded = [
            s
            for s in pool
            if s.medidata_message_id and s.invoice_number == correlation_ref
        ]
        if uploaded:
            latest = max(uploaded, key=_created)
            return MatchResult(latest, MatchMethod.CORRELATION_REFERENCE)

    return None
