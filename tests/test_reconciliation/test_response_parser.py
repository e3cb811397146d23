"""
Insurer response parsing and notification normalisation.
"""

from app.services.reconciliation.notifications import (
    NotificationSeverity,
    error_code,
    message_text,
)
from app.services.reconciliation.response_parser import ResponseType, parse_response

ACCEPTED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<invoice:response xmlns:invoice="http://www.forum-datenaustausch.ch/invoice">
  <invoice:payload>
    <invoice:invoice request_id="INV-2024-0001-1709294400"/>
    <invoice:body>
      <invoice:accepted status_in="unknown" status_out="granted">
        <invoice:explanation>Leistungen übernommen</invoice:explanation>
      </invoice:accepted>
    </invoice:body>
  </invoice:payload>
</invoice:response>
"""

REJECTED_XML = """<invoice:response xmlns:invoice="http://www.forum-datenaustausch.ch/invoice">
  <invoice:body>
    <invoice:rejected status_in="unknown" status_out="refused">
      <invoice:error code="1234"><invoice:text>Patient nicht versichert</invoice:text></invoice:error>
    </invoice:rejected>
  </invoice:body>
</invoice:response>
"""


class TestParseResponse:
    def test_accepted(self):
        parsed = parse_response(ACCEPTED_XML)
        assert parsed.type == ResponseType.ACCEPTED
        assert parsed.status_in == "unknown"
        assert parsed.status_out == "granted"
        assert parsed.explanation == "Leistungen übernommen"

    def test_rejected_uses_error_text(self):
        parsed = parse_response(REJECTED_XML)
        assert parsed.type == ResponseType.REJECTED
        assert parsed.status_out == "refused"
        assert parsed.explanation == "Patient nicht versichert"

    def test_pending(self):
        parsed = parse_response('<invoice:pending status_in="x" status_out="pending"/>')
        assert parsed.type == ResponseType.PENDING

    def test_status_out_alone_decides(self):
        """Status attributes decide even without the outcome element."""
        parsed = parse_response('<response status_in="unknown" status_out="refused"/>')
        assert parsed.type == ResponseType.REJECTED
        assert parsed.status_in == "unknown"

    def test_unrecognised_text(self):
        parsed = parse_response("Thank you for your submission")
        assert parsed.type == ResponseType.UNKNOWN
        assert parsed.explanation is None

    def test_never_raises_on_bad_input(self):
        assert parse_response(None).type == ResponseType.UNKNOWN
        assert parse_response("").type == ResponseType.UNKNOWN
        assert parse_response(b"<invoice:accepted/>").type == ResponseType.UNKNOWN

    def test_history_message(self):
        assert parse_response(ACCEPTED_XML).history_message() == (
            "Insurer response: accepted — Leistungen übernommen"
        )
        assert parse_response("?").history_message() == "Insurer response: unknown"


class TestNotifications:
    def test_message_prefers_german(self):
        assert message_text({"fr": "Invalide", "de": "Ungültig"}) == "Ungültig"

    def test_message_falls_through_languages(self):
        assert message_text({"it": "Non valido"}) == "Non valido"

    def test_message_unknown_dict_serialised(self):
        assert message_text({"es": "Inválido"}) == '{"es": "Inválido"}'

    def test_message_plain_and_empty(self):
        assert message_text("Zugestellt") == "Zugestellt"
        assert message_text("") is None
        assert message_text(None) is None

    def test_error_code_explicit_wins(self):
        assert error_code("E42", "Fehler-Code: 123") == "E42"

    def test_error_code_from_text(self):
        assert error_code(None, "Übermittlung fehlgeschlagen. Fehler-Code: 4711 (Schema)") == "4711"
        assert error_code(None, "Alles gut") is None

    def test_severity(self):
        assert NotificationSeverity.parse("error") == NotificationSeverity.ERROR
        assert NotificationSeverity.parse("fatal") == NotificationSeverity.INFO
        assert NotificationSeverity.parse(None) == NotificationSeverity.INFO
