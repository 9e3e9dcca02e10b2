from __future__ import annotations
"""Audit logging decorator for administrative route handlers.

Usage examples:

@audit_log('CLIENT.CREATE', entity='Client', entity_id_key='id', meta_keys=['type', 'display_name'])
def create_client():
    ... return client_json(c), 201

@audit_log('USER.PERMS.UPDATE', entity='User', entity_id_arg='uid',
           meta_builder=lambda data, rv, args, kwargs: {'permissions': data.get('permissions')})
def update_user_permissions(uid): ...

Parameters:
  action: required audit action code (e.g. USER.CREATE)
  entity: optional entity label (User, Client, Contact)
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: name of the path parameter to use for entity_id (fallback if entity_id_key absent).
  meta_keys: list of keys to project from returned JSON into meta dict (shallow copy).
  meta_builder: callable returning a meta dict; receives (data, original_return_value, args, kwargs). If provided it overrides meta_keys.
  diff_keys / pre_fetch: record before/after values of the listed keys; pre_fetch receives (args, kwargs)
    and returns the "before" snapshot.

The audit row is written after the handler returned successfully; a failing
handler (domain error raised) leaves no audit row.
"""

import logging
from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict

from repairdesk.services.audit import add_audit
from repairdesk import get_db

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return (data, original_rv) where data is the JSON-able dict for inspection."""
    if isinstance(rv, tuple) and rv:
        data = rv[0]
        return data, rv
    return rv, rv


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    commit: bool = True,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data, _ = _extract_payload(rv)
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            meta = None
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs)
            elif meta_keys:
                meta = {k: data.get(k) for k in meta_keys if k in data}
            if diff_keys and isinstance(before_snapshot, dict):
                changes = {}
                for k in diff_keys:
                    if k in before_snapshot and k in data and before_snapshot.get(k) != data.get(k):
                        changes[k] = {'before': before_snapshot.get(k), 'after': data.get(k)}
                if changes:
                    meta = dict(meta or {})
                    meta['changes'] = changes
            add_audit(action, entity, entity_id, meta)
            if commit:
                session = get_db()
                try:
                    session.commit()
                except Exception:
                    # The audited change is already committed; losing its audit row must not fail the response
                    session.rollback()
                    logger.exception('audit write failed for %s', action)
            return rv
        return wrapper
    return outer
