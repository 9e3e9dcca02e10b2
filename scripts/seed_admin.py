#!/usr/bin/env python
"""Idempotent bootstrap of an organization and its first administrator.

User creation through the API needs an existing administrator, so the very
first one is created here.

Usage:
    python scripts/seed_admin.py --org-id acme --org-name "Acme Repairs"
    python scripts/seed_admin.py --org-id acme --email boss@acme.test --dry-run

The password defaults to SEED_ADMIN_PASSWORD (or a temporary value that is printed).
"""
from __future__ import annotations
import os, sys, argparse, uuid
from sqlalchemy import select

# Allow running from repo root
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from repairdesk import create_app, get_db  # type: ignore
from repairdesk.models.authz import Base, Organization, AuthCredential, OrgUser
from repairdesk.services.policy import expand_role

DEFAULT_PASSWORD = 'ChangeMe123!'


def ensure_organization(session, org_id: str, name: str):
    org = session.get(Organization, org_id)
    if org is None:
        org = Organization(id=org_id, name=name)
        session.add(org)
        return org, True
    return org, False


def ensure_admin(session, org_id: str, email: str, password: str):
    """Return (OrgUser, created). An existing account is promoted, never re-passworded."""
    email = email.strip().lower()
    cred = session.execute(select(AuthCredential).where(AuthCredential.email == email)).scalar_one_or_none()
    admin_flags = expand_role('Administrator').to_dict()
    if cred is not None:
        if cred.organization_id is None:
            cred.organization_id = org_id
        profile = session.get(OrgUser, cred.uid)
        if profile is None:
            profile = OrgUser(uid=cred.uid, email=email, organization_id=org_id)
            session.add(profile)
        profile.permissions = admin_flags
        profile.role = 'Administrator'
        return profile, False
    uid = uuid.uuid4().hex
    cred = AuthCredential(uid=uid, email=email, organization_id=org_id)
    cred.set_password(password)
    profile = OrgUser(uid=uid, email=email, organization_id=org_id, permissions=admin_flags, role='Administrator')
    session.add(cred)
    session.add(profile)
    return profile, True


def parse_args():
    p = argparse.ArgumentParser(description='Bootstrap an organization and its first administrator')
    p.add_argument('--org-id', required=True, help='Organization id (tenant key)')
    p.add_argument('--org-name', help='Display name (defaults to the id)')
    p.add_argument('--email', default=os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com'))
    p.add_argument('--create-schema', action='store_true', help='Create missing tables (prefer alembic upgrade head)')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    return p.parse_args()


def main():
    args = parse_args()
    password = os.getenv('SEED_ADMIN_PASSWORD', DEFAULT_PASSWORD)
    app = create_app()
    with app.app_context():
        session = get_db()
        if args.create_schema:
            import repairdesk.models.audit, repairdesk.models.client, repairdesk.models.service_item, repairdesk.models.history  # noqa: F401
            Base.metadata.create_all(session.get_bind())
        try:
            _, org_created = ensure_organization(session, args.org_id, args.org_name or args.org_id)
            profile, user_created = ensure_admin(session, args.org_id, args.email, password)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) organization created: {org_created}, admin created: {user_created}")
                return
            session.commit()
            print(f"[DONE] organization {args.org_id} ({'created' if org_created else 'exists'}), admin {profile.email} ({'created' if user_created else 'promoted'})")
            if user_created and password == DEFAULT_PASSWORD:
                print(f"[INFO] Temporary password: {DEFAULT_PASSWORD}; change it after first login.")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

if __name__ == '__main__':
    main()
