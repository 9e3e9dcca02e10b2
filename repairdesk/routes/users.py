from flask import Blueprint, request, g
from repairdesk import get_db
from repairdesk.constants.permissions import CAN_MANAGE_USERS
from repairdesk.decorators.audit import audit_log
from repairdesk.decorators.auth import require_permissions
from repairdesk.models.audit import AuditLog
from repairdesk.services import users as svc
from repairdesk.utils.clock import isoformat
from repairdesk.utils.listing import cached_list, request_pagination

users_bp = Blueprint('users', __name__)


@users_bp.get('')
@require_permissions(CAN_MANAGE_USERS)
def list_users():
    return {'data': [svc.user_json(u) for u in svc.list_users(g.actor.uid)]}


@users_bp.post('')
@require_permissions(CAN_MANAGE_USERS)
@audit_log('USER.CREATE', entity='User', entity_id_key='uid', meta_keys=['email', 'role'])
def create_user():
    data = request.json or {}
    user = svc.create_user(
        g.actor.uid, data.get('email'), data.get('password'),
        organization_id=data.get('organization_id'),
        permissions=data.get('permissions'), role=data.get('role'),
    )
    return svc.user_json(user), 201


@users_bp.put('/<uid>/permissions')
@require_permissions(CAN_MANAGE_USERS)
@audit_log(
    'USER.PERMS.UPDATE', entity='User', entity_id_key='uid',
    meta_builder=lambda data, rv, a, kw: {'role': data.get('role'), 'permissions': data.get('permissions')},
)
def update_user_permissions(uid: str):
    data = request.json or {}
    user = svc.update_permissions(g.actor.uid, uid, permissions=data.get('permissions'), role=data.get('role'))
    return svc.user_json(user)


@users_bp.delete('/<uid>')
@require_permissions()
@audit_log('USER.DELETE', entity='User', entity_id_key='uid', meta_keys=['credential_removed', 'profile_removed'])
def delete_user(uid: str):
    # Flag check happens in the service, after the self-deletion guard
    return svc.delete_user(g.actor.uid, uid)


@users_bp.get('/audit')
@require_permissions(CAN_MANAGE_USERS)
def list_audit_logs():
    q = get_db().query(AuditLog).filter(AuditLog.organization_id == g.actor.organization_id)
    for key in ('action', 'entity', 'entity_id', 'actor_uid'):
        value = request.args.get(key)
        if value:
            q = q.filter(getattr(AuditLog, key) == value)
    limit, offset = request_pagination()
    total = q.count()
    rows = q.order_by(AuditLog.id.desc()).offset(offset).limit(limit).all()
    rows_json = [
        {
            'id': r.id,
            'actor_uid': r.actor_uid,
            'action': r.action,
            'entity': r.entity,
            'entity_id': r.entity_id,
            'meta': r.meta,
            'created_at': isoformat(r.created_at),
        } for r in rows
    ]
    # Most recent record drives the validators
    return cached_list(rows_json, total, limit, offset, rows[0].created_at if rows else None)
