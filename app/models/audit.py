"""
AuditEvent — the immutable audit log.

CRITICAL DESIGN RULE:
  This table is append-only. No UPDATE or DELETE statements should ever
  be issued against it.

  The DB-level server_default on created_at (not application code) ensures
  the timestamp is authoritative and cannot be spoofed.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType


class ActorType:
    SYSTEM = "SYSTEM"
    OPERATOR = "OPERATOR"  # logged-in clinic user
    CLEARING_HOUSE = "CLEARING_HOUSE"  # MediData poll results
    PAYMENT_GATEWAY = "PAYMENT_GATEWAY"  # webhooks, bank files


class AuditEvent(Base):
    """
    Immutable record of every meaningful state change in the system.

    entity_type + entity_id: the thing that changed
    event_type: what happened (past-tense verb, e.g. "submission.status_changed")
    actor_*: who caused it
    payload: JSON snapshot of relevant state at the time of the event.
    """

    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── What changed ─────────────────────────────────────────────────────────
    entity_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="invoice | submission | medidata_response | payment_event | ...",
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
        comment=(
            "Past-tense dot-namespaced: submission.created, submission.status_changed, "
            "medidata_response.unmatched, invoice.payment_applied, ..."
        ),
    )

    # ── Who caused it ────────────────────────────────────────────────────────
    actor_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="SYSTEM | OPERATOR | CLEARING_HOUSE | PAYMENT_GATEWAY",
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="User.id if human-triggered; NULL for system events",
    )

    # ── State snapshot ────────────────────────────────────────────────────────
    payload: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    # ── Timestamp (server-authoritative, never set by application code) ──────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent event={self.event_type!r} "
            f"entity={self.entity_type}:{self.entity_id} "
            f"actor={self.actor_type}>"
        )
