"""
Insurer response parsing.

Responses arrive as generalInvoiceResponse XML, but the clearing house has
also been seen to deliver JSON wrappers and plain text. The parser works on
the raw text with patterns rather than a schema so that every shape yields
a ParsedResponse. It never raises; anything unrecognised is UNKNOWN.
"""

import enum
import re
from dataclasses import dataclass
from typing import Optional

_STATUS_PATTERN = re.compile(r'status_in="([^"]*)"[^>]*status_out="([^"]*)"')
_EXPLANATION_PATTERN = re.compile(r"<invoice:explanation>([^<]+)</invoice:explanation>")
_TEXT_PATTERN = re.compile(r"<invoice:text>([^<]+)</invoice:text>")


class ResponseType(str, enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PENDING = "pending"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ParsedResponse:
    type: ResponseType
    status_in: Optional[str] = None
    status_out: Optional[str] = None
    explanation: Optional[str] = None

    def history_message(self) -> str:
        if self.explanation:
            return f"Insurer response: {self.type.value} — {self.explanation}"
        return f"Insurer response: {self.type.value}"


def parse_response(content) -> ParsedResponse:
    if not isinstance(content, str) or not content:
        return ParsedResponse(type=ResponseType.UNKNOWN)

    status_in = status_out = None
    match = _STATUS_PATTERN.search(content)
    if match:
        status_in, status_out = match.group(1), match.group(2)

    if "<invoice:accepted" in content or 'status_out="granted"' in content:
        response_type = ResponseType.ACCEPTED
    elif "<invoice:rejected" in content or 'status_out="refused"' in content:
        response_type = ResponseType.REJECTED
    elif "<invoice:pending" in content or 'status_out="pending"' in content:
        response_type = ResponseType.PENDING
    else:
        response_type = ResponseType.UNKNOWN

    explanation = None
    for pattern in (_EXPLANATION_PATTERN, _TEXT_PATTERN):
        found = pattern.search(content)
        if found and found.group(1).strip():
            explanation = found.group(1).strip()
            break

    return ParsedResponse(
        type=response_type,
        status_in=status_in or None,
        status_out=status_out or None,
        explanation=explanation,
    )
