"""
Payrexx webhook parsing and reconciliation tests.
"""

import json
from decimal import Decimal
from urllib.parse import urlencode

import pytest

from app.models.audit import AuditEvent
from app.models.invoice import InvoiceStatus
from app.models.payment import PaymentEvent, PaymentOutcome, PaymentSource
from app.services.payments.payrexx import (
    PayrexxTransaction,
    WebhookPayloadError,
    is_transaction_paid,
    parse_webhook_payload,
    reconcile_transaction,
    settle_status,
    transaction_from_payload,
)


def _payload(tx_id=4711, status="confirmed", amount=8846, reference="INV-2024-0001"):
    return {
        "transaction": {
            "id": tx_id,
            "uuid": "5f0b2c1a",
            "status": status,
            "amount": amount,
            "referenceId": reference,
            "invoice": {"currency": "CHF"},
        }
    }


def _tx(**kwargs) -> PayrexxTransaction:
    return transaction_from_payload(_payload(**kwargs))


class TestParsePayload:
    def test_json_body(self):
        body = json.dumps(_payload()).encode()
        assert parse_webhook_payload(body, "application/json") == _payload()

    def test_json_without_content_type(self):
        body = json.dumps(_payload()).encode()
        assert parse_webhook_payload(body, None)["transaction"]["id"] == 4711

    def test_form_with_transaction_json_field(self):
        body = urlencode({"transaction": json.dumps(_payload()["transaction"])}).encode()
        payload = parse_webhook_payload(body, "application/x-www-form-urlencoded")
        assert payload["transaction"]["referenceId"] == "INV-2024-0001"

    def test_form_with_bracket_keys(self):
        body = urlencode(
            {
                "transaction[id]": "4711",
                "transaction[status]": "confirmed",
                "transaction[invoice][referenceId]": "INV-2024-0001",
                "transaction[invoice][amount]": "8846",
            }
        ).encode()
        payload = parse_webhook_payload(body, "application/x-www-form-urlencoded")
        tx = transaction_from_payload(payload)
        assert tx.id == "4711"
        assert tx.reference == "INV-2024-0001"
        assert tx.amount == Decimal("88.46")

    def test_empty_body(self):
        with pytest.raises(WebhookPayloadError):
            parse_webhook_payload(b"  ", "application/json")

    def test_invalid_json(self):
        with pytest.raises(WebhookPayloadError):
            parse_webhook_payload(b"{not json", "application/json")

    def test_json_array_rejected(self):
        with pytest.raises(WebhookPayloadError):
            parse_webhook_payload(b"[1, 2]", "application/json")


class TestTransactionFromPayload:
    def test_fields(self):
        tx = _tx()
        assert tx.id == "4711"
        assert tx.uuid == "5f0b2c1a"
        assert tx.status == "confirmed"
        assert tx.amount == Decimal("88.46")
        assert tx.currency == "CHF"
        assert tx.external_id == "4711:confirmed"
        assert tx.is_paid

    def test_unwrapped_transaction(self):
        tx = transaction_from_payload({"id": 1, "status": "Waiting"})
        assert tx.status == "waiting"
        assert tx.amount is None
        assert tx.reference is None

    def test_missing_id_or_status(self):
        with pytest.raises(WebhookPayloadError):
            transaction_from_payload({"transaction": {"status": "confirmed"}})
        with pytest.raises(WebhookPayloadError):
            transaction_from_payload({"transaction": {"id": 1}})

    def test_non_dict_transaction(self):
        with pytest.raises(WebhookPayloadError):
            transaction_from_payload({"transaction": "4711"})

    def test_paid_statuses(self):
        assert is_transaction_paid("confirmed")
        assert is_transaction_paid(" Confirmed ")
        assert not is_transaction_paid("authorized")
        assert not is_transaction_paid(None)

    def test_settle_status_boundary(self):
        assert settle_status(Decimal("88.46"), Decimal("88.46")) == InvoiceStatus.PAID
        assert settle_status(Decimal("88.45"), Decimal("88.46")) == InvoiceStatus.PARTIAL_LOSS
        assert settle_status(Decimal("88.44"), Decimal("88.46")) == InvoiceStatus.PARTIAL_LOSS
        assert settle_status(Decimal("90.00"), Decimal("88.46")) == InvoiceStatus.PAID


class TestReconcileTransaction:
    def test_confirmed_full_payment(self, db, invoice):
        result = reconcile_transaction(db, _tx(), payload=_payload())

        assert result.outcome == PaymentOutcome.PAID
        assert result.previous_status == InvoiceStatus.OPEN
        assert not result.duplicate
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_amount == Decimal("88.46")
        assert invoice.paid_at is not None
        assert invoice.gateway_transaction_id == "4711"
        assert invoice.gateway_payment_status == "confirmed"

        event = db.query(PaymentEvent).one()
        assert event.source == PaymentSource.PAYREXX
        assert event.external_id == "4711:confirmed"
        assert event.invoice_id == invoice.id
        assert event.payload["transaction"]["id"] == 4711

    def test_payment_audited(self, db, invoice):
        reconcile_transaction(db, _tx())
        events = db.query(AuditEvent).filter_by(
            entity_id=invoice.id, event_type="invoice.payment_applied"
        )
        assert events.count() == 1
        assert events.one().payload["to_status"] == InvoiceStatus.PAID

    def test_redelivery_is_duplicate(self, db, invoice):
        reconcile_transaction(db, _tx())
        again = reconcile_transaction(db, _tx())

        assert again.duplicate
        assert again.outcome == PaymentOutcome.PAID
        assert db.query(PaymentEvent).count() == 1

    def test_short_settlement_is_partial_loss(self, db, invoice):
        result = reconcile_transaction(db, _tx(amount=8500))

        assert result.outcome == PaymentOutcome.PAID_SHORT
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.PARTIAL_LOSS
        assert invoice.paid_amount == Decimal("85.00")

    def test_one_cent_short_is_partial_loss(self, db, invoice):
        result = reconcile_transaction(db, _tx(amount=8845))

        assert result.outcome == PaymentOutcome.PAID_SHORT
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.PARTIAL_LOSS
        assert invoice.paid_amount == Decimal("88.45")

    def test_gateway_fee_deducted(self, db, invoice):
        invoice.total_amount = Decimal("250.00")
        db.commit()

        reconcile_transaction(db, _tx(amount=24500))

        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.PARTIAL_LOSS
        assert invoice.paid_amount == Decimal("245.00")

    def test_missing_amount_settles_total(self, db, invoice):
        result = reconcile_transaction(db, _tx(amount=None))
        assert result.outcome == PaymentOutcome.PAID
        db.refresh(invoice)
        assert invoice.paid_amount == Decimal("88.46")

    def test_unconfirmed_status_records_only(self, db, invoice):
        result = reconcile_transaction(db, _tx(status="waiting"))

        assert result.outcome == PaymentOutcome.NOT_PAID
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.OPEN
        assert invoice.gateway_payment_status == "waiting"
        assert invoice.paid_amount is None

    def test_waiting_then_confirmed_both_applied(self, db, invoice):
        """Each (id, status) pair is its own update."""
        reconcile_transaction(db, _tx(status="waiting"))
        result = reconcile_transaction(db, _tx(status="confirmed"))
        assert result.outcome == PaymentOutcome.PAID
        assert db.query(PaymentEvent).count() == 2

    def test_unknown_reference(self, db, invoice):
        result = reconcile_transaction(db, _tx(reference="INV-NOPE"))

        assert result.outcome == PaymentOutcome.UNMATCHED
        event = db.query(PaymentEvent).one()
        assert event.invoice_id is None
        assert "INV-NOPE" in event.notes
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.OPEN

    def test_already_settled_invoice(self, db, invoice):
        reconcile_transaction(db, _tx(tx_id=1))
        result = reconcile_transaction(db, _tx(tx_id=2))

        assert result.outcome == PaymentOutcome.ALREADY_PAID
        assert not result.duplicate
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_amount == Decimal("88.46")
