"""User directory: credentials + organization profiles, managed by administrators.

Every privileged call re-reads the acting user's stored profile (`load_actor`);
permissions carried in a token or computed by a client are never consulted.
"""
from __future__ import annotations
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional
from sqlalchemy import select, func
from repairdesk import get_db
from repairdesk.constants.permissions import CAN_MANAGE_USERS
from repairdesk.errors import (
    AuthenticationError, ConflictSignal, NotFoundError, PreconditionError, ValidationError,
)
from repairdesk.models.authz import AuthCredential, OrgUser, RevokedToken
from repairdesk.services.policy import (
    Actor, assert_permission, assert_same_organization, load_actor, normalize_permissions, parse_permission_payload,
)
from repairdesk.services.store import store_call
from repairdesk.utils.validation import require_text

logger = logging.getLogger(__name__)

DUPLICATE_EMAIL_MESSAGE = 'A user with this email already exists'
MIN_PASSWORD_LENGTH = 6


def user_json(u: OrgUser) -> Dict[str, Any]:
    return {
        'uid': u.uid,
        'email': u.email,
        'organization_id': u.organization_id,
        'role': u.role,
        'permissions': normalize_permissions(u.permissions, u.is_admin).to_dict(),
    }


def _normalize_email(raw: Any) -> str:
    email = require_text(raw, 'email', 128).lower()
    if '@' not in email:
        raise ValidationError('email invalid')
    return email


def _admin(actor_uid: str) -> Actor:
    actor = load_actor(actor_uid)
    assert_permission(actor, CAN_MANAGE_USERS)
    return actor


def _load_member(actor: Actor, target_uid: str) -> OrgUser:
    user = get_db().get(OrgUser, target_uid)
    if user is None:
        raise NotFoundError('User', target_uid)
    assert_same_organization(actor, user.organization_id)
    return user


def list_users(actor_uid: str) -> List[OrgUser]:
    actor = _admin(actor_uid)
    session = get_db()
    with store_call(session, 'User list'):
        return session.execute(
            select(OrgUser).where(OrgUser.organization_id == actor.organization_id).order_by(OrgUser.email.asc())
        ).scalars().all()


def create_user(actor_uid: str, email: Any, password: Any, organization_id: Optional[str] = None,
                permissions: Optional[Mapping[str, Any]] = None, role: Optional[str] = None) -> OrgUser:
    actor = _admin(actor_uid)
    organization_id = organization_id or actor.organization_id
    assert_same_organization(actor, organization_id)
    email = _normalize_email(email)
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'password must be at least {MIN_PASSWORD_LENGTH} characters')
    # Role is expanded here, once; only the flags are stored
    perms = parse_permission_payload(permissions, role)

    session = get_db()
    existing = session.execute(select(AuthCredential).where(func.lower(AuthCredential.email) == email)).scalar_one_or_none()
    if existing is not None:
        raise ConflictSignal(DUPLICATE_EMAIL_MESSAGE)
    uid = uuid.uuid4().hex
    cred = AuthCredential(uid=uid, email=email, organization_id=organization_id)
    cred.set_password(password)
    profile = OrgUser(uid=uid, email=email, organization_id=organization_id, permissions=perms.to_dict(), role=role)
    with store_call(session, 'User save', conflict_message=DUPLICATE_EMAIL_MESSAGE):
        session.add(cred)
        session.add(profile)
        session.commit()
    logger.info('user %s (%s) created in %s by %s', uid, email, organization_id, actor.email)
    return profile


def update_permissions(actor_uid: str, target_uid: str, permissions: Optional[Mapping[str, Any]] = None,
                       role: Optional[str] = None) -> OrgUser:
    actor = _admin(actor_uid)
    perms = parse_permission_payload(permissions, role)
    user = _load_member(actor, target_uid)
    session = get_db()
    user.permissions = perms.to_dict()
    user.role = role
    # Structured flags supersede the legacy boolean
    user.is_admin = None
    with store_call(session, 'Permission save'):
        session.commit()
    logger.info('permissions of %s updated by %s', user.email, actor.email)
    return user


def delete_user(actor_uid: str, target_uid: str) -> Dict[str, Any]:
    """Remove credential and profile; whichever half is already gone is tolerated."""
    if actor_uid == target_uid:
        raise PreconditionError('You cannot delete your own account')
    actor = _admin(actor_uid)
    session = get_db()
    profile = session.get(OrgUser, target_uid)
    cred = session.get(AuthCredential, target_uid)
    if profile is None and cred is None:
        raise NotFoundError('User', target_uid)
    if profile is not None:
        assert_same_organization(actor, profile.organization_id)
    else:
        # Credentials without a recorded organization are never cleaned up across tenants
        assert_same_organization(actor, cred.organization_id)
        logger.warning('user %s has a credential but no profile; removing credential', target_uid)
    if cred is None:
        logger.warning('user %s has a profile but no credential; removing profile', target_uid)
    with store_call(session, 'User delete'):
        if cred is not None:
            session.delete(cred)
        if profile is not None:
            session.delete(profile)
        session.commit()
    logger.info('user %s deleted by %s', target_uid, actor.email)
    return {
        'uid': target_uid,
        'credential_removed': cred is not None,
        'profile_removed': profile is not None,
    }


# --- Authentication ---

def authenticate(email: Any, password: Any) -> AuthCredential:
    if not email or not password:
        raise ValidationError('email & password required')
    session = get_db()
    cred = session.execute(
        select(AuthCredential).where(func.lower(AuthCredential.email) == str(email).strip().lower())
    ).scalar_one_or_none()
    if cred is None or not cred.verify_password(password):
        logger.info('failed login for %s', email)
        raise AuthenticationError('invalid credentials')
    if session.get(OrgUser, cred.uid) is None:
        raise AuthenticationError('account has no organization profile')
    return cred


def revoke_token(jti: str, uid: Optional[str]) -> None:
    session = get_db()
    if session.get(RevokedToken, jti) is not None:
        return
    with store_call(session, 'Logout'):
        session.add(RevokedToken(jti=jti, uid=uid))
        session.commit()
    logger.info('session %s of %s revoked', jti, uid)


__all__ = [
    'user_json', 'list_users', 'create_user', 'update_permissions', 'delete_user', 'authenticate', 'revoke_token',
]
