# Import all models here so Alembic's env.py can discover them via Base.metadata
from app.models.base import Base  # noqa: F401
from app.models.party import User, BillingEntity, MedicalStaff, Insurer, Patient  # noqa: F401
from app.models.invoice import Invoice, LineItem  # noqa: F401
from app.models.submission import (  # noqa: F401
    Submission,
    SubmissionHistory,
    ResponseRecord,
    NotificationRecord,
)
from app.models.payment import PaymentEvent  # noqa: F401
from app.models.audit import AuditEvent  # noqa: F401
