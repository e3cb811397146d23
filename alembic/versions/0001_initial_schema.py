"""Initial schema — parties, invoices, clearing-house records, payments, audit

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _fk(column: str, target: str, nullable: bool, ondelete: str) -> sa.Column:
    return sa.Column(
        column,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(256), nullable=False, unique=True),
        sa.Column("hashed_password", sa.String(256), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"])

    # ── billing_entities ──────────────────────────────────────────────────────
    op.create_table(
        "billing_entities",
        _id(),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("gln", sa.String(32), nullable=True),
        sa.Column("zsr", sa.String(16), nullable=True),
        sa.Column("iban", sa.String(64), nullable=True),
        sa.Column("vat_number", sa.String(32), nullable=True),
        sa.Column("salutation", sa.String(32), nullable=True),
        sa.Column("title", sa.String(64), nullable=True),
        sa.Column("street", sa.String(256), nullable=True),
        sa.Column("street_no", sa.String(16), nullable=True),
        sa.Column("zip_code", sa.String(16), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("canton", sa.String(2), nullable=True),
        *_timestamps(),
    )

    # ── medical_staff ─────────────────────────────────────────────────────────
    op.create_table(
        "medical_staff",
        _id(),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("salutation", sa.String(32), nullable=True),
        sa.Column("title", sa.String(64), nullable=True),
        sa.Column("gln", sa.String(32), nullable=True),
        sa.Column("zsr", sa.String(16), nullable=True),
        sa.Column("street", sa.String(256), nullable=True),
        sa.Column("street_no", sa.String(16), nullable=True),
        sa.Column("zip_code", sa.String(16), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("canton", sa.String(2), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
    )

    # ── insurers ──────────────────────────────────────────────────────────────
    op.create_table(
        "insurers",
        _id(),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("gln", sa.String(32), nullable=True),
        sa.Column("receiver_gln", sa.String(32), nullable=True),
        sa.Column("tp_allowed", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
    )
    op.create_index("ix_insurers_gln", "insurers", ["gln"])

    # ── patients ──────────────────────────────────────────────────────────────
    op.create_table(
        "patients",
        _id(),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("birthdate", sa.Date, nullable=True),
        sa.Column("sex", sa.String(8), nullable=True),
        sa.Column("avs_number", sa.String(32), nullable=True),
        sa.Column("insurance_card_number", sa.String(32), nullable=True),
        sa.Column("email", sa.String(256), nullable=True),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("street", sa.String(256), nullable=True),
        sa.Column("zip_code", sa.String(16), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        *_timestamps(),
    )

    # ── invoices ──────────────────────────────────────────────────────────────
    op.create_table(
        "invoices",
        _id(),
        sa.Column("invoice_number", sa.String(64), nullable=False, unique=True),
        sa.Column("invoice_date", sa.Date, nullable=False),
        sa.Column("due_date", sa.Date, nullable=True),
        sa.Column("treatment_date", sa.Date, nullable=True),
        sa.Column("treatment_date_end", sa.Date, nullable=True),
        sa.Column("treatment_canton", sa.String(2), nullable=True),
        sa.Column("treatment_reason", sa.String(16), nullable=False, server_default="disease"),
        _fk("patient_id", "patients.id", False, "RESTRICT"),
        _fk("billing_entity_id", "billing_entities.id", True, "RESTRICT"),
        _fk("staff_id", "medical_staff.id", True, "SET NULL"),
        _fk("insurer_id", "insurers.id", True, "SET NULL"),
        sa.Column("provider_name", sa.String(256), nullable=True),
        sa.Column("provider_gln", sa.String(32), nullable=True),
        sa.Column("provider_zsr", sa.String(16), nullable=True),
        sa.Column("provider_iban", sa.String(64), nullable=True),
        sa.Column("doctor_name", sa.String(256), nullable=True),
        sa.Column("doctor_gln", sa.String(32), nullable=True),
        sa.Column("doctor_zsr", sa.String(16), nullable=True),
        sa.Column("law_type", sa.String(8), nullable=False, server_default="KVG"),
        sa.Column("billing_type", sa.String(4), nullable=False, server_default="TG"),
        sa.Column("diagnosis_codes", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("vat_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("reference_number", sa.String(32), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="DRAFT"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("gateway_transaction_id", sa.String(64), nullable=True),
        sa.Column("gateway_transaction_uuid", sa.String(64), nullable=True),
        sa.Column("gateway_payment_status", sa.String(32), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"])
    op.create_index("ix_invoices_patient_id", "invoices", ["patient_id"])
    op.create_index("ix_invoices_billing_entity_id", "invoices", ["billing_entity_id"])
    op.create_index("ix_invoices_reference_number", "invoices", ["reference_number"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    # ── invoice_line_items ────────────────────────────────────────────────────
    op.create_table(
        "invoice_line_items",
        _id(),
        _fk("invoice_id", "invoices.id", False, "CASCADE"),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("catalog_name", sa.String(16), nullable=False, server_default="TARDOC"),
        sa.Column("tariff_type", sa.String(3), nullable=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.Text, nullable=False, server_default=""),
        sa.Column("ref_code", sa.String(16), nullable=True),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=False, server_default="1"),
        sa.Column("session_number", sa.Integer, nullable=True),
        sa.Column("tax_points", sa.Numeric(10, 2), nullable=True),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("external_factor_mt", sa.Numeric(6, 4), nullable=True),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("date_begin", sa.Date, nullable=True),
        sa.Column("side_type", sa.Integer, nullable=False, server_default="0"),
        sa.Column("provider_gln", sa.String(32), nullable=True),
        sa.Column("responsible_gln", sa.String(32), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_invoice_line_items_invoice_id", "invoice_line_items", ["invoice_id"])

    # ── medidata_submissions ──────────────────────────────────────────────────
    op.create_table(
        "medidata_submissions",
        _id(),
        _fk("invoice_id", "invoices.id", False, "RESTRICT"),
        sa.Column("invoice_number", sa.String(64), nullable=False),
        sa.Column("invoice_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("billing_type", sa.String(4), nullable=False),
        sa.Column("law_type", sa.String(8), nullable=False),
        sa.Column("xml_content", sa.Text, nullable=True),
        sa.Column("xml_path", sa.String(512), nullable=True),
        sa.Column("xml_version", sa.String(32), nullable=False),
        sa.Column("validation_warning", sa.Text, nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("medidata_message_id", sa.String(128), nullable=True, unique=True),
        sa.Column("patient_copy_ref", sa.String(128), nullable=True),
        sa.Column("transmitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_status_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("medidata_response_code", sa.String(32), nullable=True),
        sa.Column("medidata_response_message", sa.Text, nullable=True),
        sa.Column("insurance_response_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("insurance_response_code", sa.String(32), nullable=True),
        sa.Column("insurance_response_message", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_medidata_submissions_invoice_id", "medidata_submissions", ["invoice_id"])
    op.create_index(
        "ix_medidata_submissions_invoice_number", "medidata_submissions", ["invoice_number"]
    )
    op.create_index("ix_medidata_submissions_status", "medidata_submissions", ["status"])

    # ── medidata_submission_history (append-only) ─────────────────────────────
    op.create_table(
        "medidata_submission_history",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        _fk("submission_id", "medidata_submissions.id", False, "CASCADE"),
        sa.Column("previous_status", sa.String(16), nullable=True),
        sa.Column("new_status", sa.String(16), nullable=False),
        sa.Column("response_code", sa.String(32), nullable=True),
        sa.Column("response_message", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_medidata_submission_history_submission_id",
        "medidata_submission_history",
        ["submission_id"],
    )

    # ── medidata_responses ────────────────────────────────────────────────────
    op.create_table(
        "medidata_responses",
        _id(),
        sa.Column("medidata_message_id", sa.String(128), nullable=False, unique=True),
        sa.Column("document_reference", sa.String(128), nullable=True),
        sa.Column("correlation_reference", sa.String(128), nullable=True),
        sa.Column("sender_gln", sa.String(32), nullable=True),
        _fk("submission_id", "medidata_submissions.id", True, "SET NULL"),
        sa.Column("match_method", sa.String(32), nullable=True),
        sa.Column("triage_status", sa.String(16), nullable=False, server_default="NOT_REQUIRED"),
        sa.Column("triage_notes", sa.Text, nullable=True),
        sa.Column("response_type", sa.String(16), nullable=False),
        sa.Column("status_in", sa.String(32), nullable=True),
        sa.Column("status_out", sa.String(32), nullable=True),
        sa.Column("explanation", sa.Text, nullable=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("document_path", sa.String(512), nullable=True),
        sa.Column("raw_data", postgresql.JSONB, nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_medidata_responses_correlation_reference",
        "medidata_responses",
        ["correlation_reference"],
    )
    op.create_index("ix_medidata_responses_submission_id", "medidata_responses", ["submission_id"])
    op.create_index("ix_medidata_responses_triage_status", "medidata_responses", ["triage_status"])

    # ── medidata_notifications ────────────────────────────────────────────────
    op.create_table(
        "medidata_notifications",
        _id(),
        sa.Column("medidata_notification_id", sa.String(128), nullable=False, unique=True),
        sa.Column("severity", sa.String(16), nullable=False, server_default="INFO"),
        sa.Column("error_code", sa.String(64), nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("transmission_reference", sa.String(128), nullable=True),
        _fk("submission_id", "medidata_submissions.id", True, "SET NULL"),
        sa.Column("medidata_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_medidata_notifications_transmission_reference",
        "medidata_notifications",
        ["transmission_reference"],
    )
    op.create_index(
        "ix_medidata_notifications_submission_id", "medidata_notifications", ["submission_id"]
    )

    # ── payment_events ────────────────────────────────────────────────────────
    op.create_table(
        "payment_events",
        _id(),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("external_id", sa.String(128), nullable=False),
        _fk("invoice_id", "invoices.id", True, "SET NULL"),
        sa.Column("reference", sa.String(64), nullable=True),
        sa.Column("external_status", sa.String(32), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="CHF"),
        sa.Column("outcome", sa.String(16), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payload", postgresql.JSONB, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("source", "external_id", name="uq_payment_event_source_ext"),
    )
    op.create_index("ix_payment_events_invoice_id", "payment_events", ["invoice_id"])

    # ── audit_events ──────────────────────────────────────────────────────────
    op.create_table(
        "audit_events",
        _id(),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("actor_type", sa.String(16), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_audit_events_entity_type", "audit_events", ["entity_type"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("audit_events")
    op.drop_table("payment_events")
    op.drop_table("medidata_notifications")
    op.drop_table("medidata_responses")
    op.drop_table("medidata_submission_history")
    op.drop_table("medidata_submissions")
    op.drop_table("invoice_line_items")
    op.drop_table("invoices")
    op.drop_table("patients")
    op.drop_table("insurers")
    op.drop_table("medical_staff")
    op.drop_table("billing_entities")
    op.drop_table("users")
