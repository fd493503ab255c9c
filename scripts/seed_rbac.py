#!/usr/bin/env python3
# scripts/seed_rbac.py
"""
RBAC catalog and role-default seeding.
This script is safe to run many times (idempotent).

Design notes:
- Resources, actions and fields are inserted only when missing.
- Default role grants are inserted only when missing, so admin edits survive
  a re-run. Pass --overwrite-role-defaults to reset them.
- --ensure-super-admin creates (or re-flags) a platform super admin.

Examples:
  # Catalog + default role grants
  python -m scripts.seed_rbac --catalog

  # Reset role defaults to the shipped values
  python -m scripts.seed_rbac --catalog --overwrite-role-defaults

  # Ensure a super admin exists
  python -m scripts.seed_rbac --ensure-super-admin --email admin@platform.local
"""

from __future__ import annotations

import argparse
import logging
import sys

from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.permission_cache import get_permission_cache
from app.models.user import User
from app.services.seed_service import seed_rbac

logger = logging.getLogger(__name__)


def ensure_super_admin(db: Session, *, email: str, full_name: str = "Super Admin") -> User:
    """
    Ensure a platform super admin exists and is active.
    """
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        existing.is_super_admin = True
        existing.is_active = True
        existing.full_name = existing.full_name or full_name
        db.commit()
        print(f"SUPER_ADMIN ensured (updated if needed): {email}")
        return existing

    user = User(email=email, full_name=full_name, is_super_admin=True, is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    print(f"SUPER_ADMIN created: {email} ({user.id})")
    return user


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="RBAC catalog and role-default seeding")
    p.add_argument("--catalog", action="store_true", help="Seed resources, actions, fields and role defaults")
    p.add_argument(
        "--overwrite-role-defaults",
        action="store_true",
        help="Reset existing default role grants to the shipped values",
    )
    p.add_argument("--ensure-super-admin", action="store_true", help="Ensure a super admin user exists")
    p.add_argument("--email", type=str, help="Super admin email")
    p.add_argument("--full-name", type=str, default="Super Admin", help="Super admin display name")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.INFO)

    if not args.catalog and not args.ensure_super_admin:
        print("Nothing to do. Use --catalog and/or --ensure-super-admin.")
        sys.exit(1)

    if args.ensure_super_admin and not args.email:
        raise SystemExit("Super admin email missing. Provide --email.")

    db: Session = SessionLocal()
    try:
        if args.catalog:
            result = seed_rbac(
                db,
                get_permission_cache(),
                overwrite_role_defaults=args.overwrite_role_defaults,
            )
            print(f"RBAC seeded: {result['resources']} resources, {result['role_permissions']} role grants written")

        if args.ensure_super_admin:
            ensure_super_admin(db, email=args.email, full_name=args.full_name)

    except Exception:
        db.rollback()
        logger.exception("RBAC seeding failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
