"""
Bootstrap script — create the billing entity and the first admin operator.

Usage (local):
    python scripts/bootstrap.py

Prompts for the practice's name, GLN, ZSR number, IBAN and canton, then
for the admin email and password. Identifiers that fail their checks are
reported but still stored: the document builder falls back at submit time.

Idempotent: safe to re-run, skips records that already exist.
"""

import os
import sys

# Ensure the project root is on the path when run directly
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from getpass import getpass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.party import BillingEntity, User, UserRole
from app.routers.auth import hash_password
from app.services.invoice_document.identifiers import (
    gln_check_digit_ok,
    is_valid_zsr,
    sanitize_iban,
)
from app.tariff.constants import CANTON_TAX_POINT_VALUES, DEFAULT_CANTON


def prompt(label: str, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    value = input(f"{label}{suffix}: ").strip()
    return value or default


def identifier_warnings(
    gln: Optional[str], zsr: Optional[str], iban: Optional[str], canton: Optional[str]
) -> list[str]:
    warnings = []
    if gln and not gln_check_digit_ok(gln):
        warnings.append(f"GLN {gln} fails the check digit")
    if zsr and not is_valid_zsr(zsr):
        warnings.append(f"ZSR {zsr} is not one letter followed by six digits")
    if iban and sanitize_iban(iban) is None:
        warnings.append(f"IBAN {iban} is not a Swiss IBAN (CH + 19 characters)")
    if canton and canton.upper() not in CANTON_TAX_POINT_VALUES:
        warnings.append(f"Unknown canton {canton}; prices will use {DEFAULT_CANTON}")
    return warnings


def bootstrap(
    db: Session,
    entity_name: str,
    admin_email: str,
    admin_password: str,
    gln: Optional[str] = None,
    zsr: Optional[str] = None,
    iban: Optional[str] = None,
    canton: Optional[str] = None,
) -> tuple[BillingEntity, User, list[str]]:
    """
    Create (or find) the billing entity by name and the admin user by email.
    Returns both plus a list of what was created or skipped. Caller commits.
    """
    log = []

    entity = db.query(BillingEntity).filter(BillingEntity.name == entity_name).first()
    if entity:
        log.append(f"Billing entity '{entity_name}' already exists (id={entity.id}) — skipping.")
    else:
        entity = BillingEntity(
            name=entity_name,
            gln=gln or None,
            zsr=(zsr or "").upper() or None,
            iban=sanitize_iban(iban) or iban or None,
            canton=(canton or "").upper() or None,
        )
        db.add(entity)
        db.flush()
        log.append(f"Billing entity '{entity_name}' created (id={entity.id})")

    user = db.query(User).filter(User.email == admin_email).first()
    if user:
        log.append(f"User '{admin_email}' already exists (role={user.role}) — skipping.")
    else:
        user = User(
            email=admin_email,
            hashed_password=hash_password(admin_password),
            role=UserRole.ADMIN,
            is_active=True,
        )
        db.add(user)
        db.flush()
        log.append(f"Admin user '{admin_email}' created (role={UserRole.ADMIN})")

    return entity, user, log


def main() -> None:
    print("\n=== MediData Billing — Bootstrap ===\n")

    # ── Billing entity ────────────────────────────────────────────────────────
    print("── Billing entity ───────────────────────")
    entity_name = prompt("Practice name")
    if not entity_name:
        print("ERROR: practice name is required.")
        sys.exit(1)
    gln = prompt("GLN (13 digits)")
    zsr = prompt("ZSR number (e.g. H123456)")
    iban = prompt("IBAN / QR-IBAN")
    canton = prompt("Canton", DEFAULT_CANTON).upper()

    for warning in identifier_warnings(gln, zsr, iban, canton):
        print(f"WARNING: {warning}")

    # ── Admin user ────────────────────────────────────────────────────────────
    print("\n── Admin user ───────────────────────────")
    admin_email = prompt("Admin email")
    if not admin_email:
        print("ERROR: email is required.")
        sys.exit(1)

    admin_password = getpass("Admin password (min 8 chars): ")
    if len(admin_password) < 8:
        print("ERROR: password must be at least 8 characters.")
        sys.exit(1)

    confirm = getpass("Confirm password: ")
    if admin_password != confirm:
        print("ERROR: passwords do not match.")
        sys.exit(1)

    # ── Write to DB ───────────────────────────────────────────────────────────
    db = SessionLocal()
    try:
        _, _, log = bootstrap(
            db, entity_name, admin_email, admin_password, gln, zsr, iban, canton
        )
        db.commit()
        print()
        for line in log:
            print(f"✓ {line}")
        print("\n✅ Bootstrap complete. You can now log in at /auth/token\n")

    except IntegrityError as e:
        db.rollback()
        print(f"\nERROR: Database integrity error — {e.orig}")
        sys.exit(1)
    except Exception as e:
        db.rollback()
        print(f"\nERROR: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
