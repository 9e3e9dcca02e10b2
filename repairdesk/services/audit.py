from __future__ import annotations
from typing import Any, Dict, Optional
from flask import g
from repairdesk import get_db
from repairdesk.models.audit import AuditLog


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None):
    """Stage an administrative audit entry in the current DB session.

    Parameters:
      action: short action code e.g. USER.CREATE, USER.PERMS.UPDATE, CLIENT.DELETE
      entity: optional entity name (User, Client, Contact)
      entity_id: optional primary key string
      meta: additional JSON-safe dictionary (will be shallow copied)

    The acting user comes from `g.actor`, set by require_permissions after the
    stored profile was re-read.
    """
    actor = getattr(g, 'actor', None)
    log = AuditLog(
        actor_uid=actor.uid if actor else 'system',
        organization_id=actor.organization_id if actor else None,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        perms_snapshot=actor.permissions.to_dict() if actor else {},
        meta=dict(meta or {}),
    )
    get_db().add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
