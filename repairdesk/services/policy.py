"""Permission model: canonical permission sets, role expansion and checks.

Stored user records come in two shapes (structured `permissions` flags, or the
legacy `is_admin` boolean). `normalize_permissions` folds both into a
PermissionSet right after fetch; nothing downstream looks at the raw shape.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional
from repairdesk.constants.permissions import ALL_PERMISSION_FLAGS, ROLE_PRESETS, SUPER_ADMIN_FLAG
from repairdesk.errors import AuthorizationError, ValidationError, NotFoundError
from repairdesk.models.authz import OrgUser
from repairdesk import get_db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionSet:
    canScan: bool = False
    canViewServiceList: bool = False
    canViewClients: bool = False
    canViewScheduledServices: bool = False
    canViewHistory: bool = False
    canViewSettings: bool = False
    canManageUsers: bool = False

    @classmethod
    def all(cls) -> 'PermissionSet':
        return cls(**{f: True for f in ALL_PERMISSION_FLAGS})

    @classmethod
    def from_flags(cls, flags: Mapping[str, Any]) -> 'PermissionSet':
        ps = cls(**{f: bool(flags.get(f, False)) for f in ALL_PERMISSION_FLAGS})
        # Super-admin wins over whatever else is stored
        if getattr(ps, SUPER_ADMIN_FLAG):
            return cls.all()
        return ps

    def has(self, flag: str) -> bool:
        if flag not in ALL_PERMISSION_FLAGS:
            raise ValueError(f'unknown permission flag {flag}')
        return bool(getattr(self, flag))

    def to_dict(self) -> Dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def normalize_permissions(permissions: Optional[Mapping[str, Any]], is_admin: Optional[bool] = None) -> PermissionSet:
    """Fold stored permission shapes into one PermissionSet."""
    if isinstance(permissions, Mapping) and permissions:
        ps = PermissionSet.from_flags(permissions)
        if is_admin and not ps.canManageUsers:
            return PermissionSet.all()
        return ps
    if is_admin:
        return PermissionSet.all()
    return PermissionSet()


def expand_role(role: str) -> PermissionSet:
    """Role label -> permission set. Evaluated once, when a user record is written."""
    codes = ROLE_PRESETS.get(role) if isinstance(role, str) else None
    if codes is None:
        raise ValidationError(f"unknown role {role!r} (allowed: {', '.join(ROLE_PRESETS)})")
    if '*' in codes:
        return PermissionSet.all()
    return PermissionSet.from_flags({c: True for c in codes})


def parse_permission_payload(permissions: Any = None, role: Optional[str] = None) -> PermissionSet:
    """Validate an incoming permissions object (or role) into the set that gets stored."""
    if role:
        return expand_role(role)
    if not isinstance(permissions, Mapping):
        raise ValidationError('permissions object or role required')
    unknown = set(permissions) - set(ALL_PERMISSION_FLAGS)
    if unknown:
        raise ValidationError(f'Unknown permission flags: {sorted(unknown)}')
    if any(not isinstance(v, bool) for v in permissions.values()):
        raise ValidationError('permission flags must be booleans')
    return PermissionSet.from_flags(permissions)


@dataclass(frozen=True)
class Actor:
    uid: str
    email: str
    organization_id: str
    permissions: PermissionSet

    def can(self, flag: str) -> bool:
        return self.permissions.has(flag)


def actor_from_user(user: OrgUser) -> Actor:
    return Actor(
        uid=user.uid,
        email=user.email,
        organization_id=user.organization_id,
        permissions=normalize_permissions(user.permissions, user.is_admin),
    )


def load_actor(uid: str, session=None) -> Actor:
    """Re-read the acting user's stored record; the only authoritative source for checks."""
    session = session or get_db()
    user = session.get(OrgUser, uid, populate_existing=True)
    if user is None:
        raise NotFoundError('User profile', uid)
    return actor_from_user(user)


def assert_permission(actor: Actor, *flags: str):
    missing = [f for f in flags if not actor.can(f)]
    if missing:
        logger.info('permission denied for %s: missing %s', actor.email, ', '.join(missing))
        raise AuthorizationError(f"Insufficient permission: {', '.join(missing)} required")
    return True


def assert_same_organization(actor: Actor, organization_id: str):
    if actor.organization_id != organization_id:
        logger.info('organization mismatch for %s: %s', actor.email, organization_id)
        raise AuthorizationError('Organization access denied')


__all__ = [
    'PermissionSet', 'Actor', 'normalize_permissions', 'expand_role', 'parse_permission_payload',
    'actor_from_user', 'load_actor', 'assert_permission', 'assert_same_organization',
]
