from __future__ import annotations
from flask import Blueprint, request, g, current_app
from flask_jwt_extended import get_jwt
from repairdesk.constants.permissions import (
    CAN_SCAN, CAN_VIEW_SERVICE_LIST, CAN_VIEW_SCHEDULED, CAN_VIEW_HISTORY, CAN_MANAGE_USERS,
)
from repairdesk.decorators.auth import require_permissions
from repairdesk.services import tickets as svc
from repairdesk.services.resolver import resolver
from repairdesk.services.tips import DiagnosticTipsClient
from repairdesk.utils.clock import isoformat
from repairdesk.utils.listing import cached_list, make_cached_item_response, request_pagination
from repairdesk.utils.validation import parse_date, parse_optional_int

tickets_bp = Blueprint('tickets', __name__)

# Keys accepted in ticket payloads besides the editable fields
_CONTROL_KEYS = ('note', 'version')


def _payload():
    data = request.json or {}
    fields = {k: v for k, v in data.items() if k not in _CONTROL_KEYS}
    return fields, data.get('note'), parse_optional_int(data.get('version'), 'version')


def _draft_json(draft: dict):
    body = dict(draft)
    body['date_received'] = isoformat(draft['date_received'])
    body['last_updated'] = isoformat(draft['last_updated'])
    return body


def _update_json(result: svc.UpdateResult):
    return {
        'changed': result.changed,
        'ticket': svc.ticket_json(result.item),
        'history': [svc.history_json(h) for h in result.entries],
    }


@tickets_bp.post('/scan')
@require_permissions(CAN_SCAN)
def scan():
    data = request.json or {}
    # One session per scanning device; falls back to the login session
    scan_session = request.headers.get('X-Scan-Session') or get_jwt()['jti']
    res = resolver.resolve(g.actor.organization_id, data.get('id'), scan_session, g.actor)
    if res.found:
        return {'found': True, 'ticket': svc.ticket_json(res.item)}
    return {'found': False, 'draft': _draft_json(res.draft)}


@tickets_bp.route('/tickets', methods=['GET', 'HEAD'])
@require_permissions(CAN_VIEW_SERVICE_LIST)
def list_tickets():
    limit, offset = request_pagination()
    filters = {k: request.args.get(k) for k in ('status', 'client_id', 'assigned_to', 'q')}
    rows, total = svc.list_tickets(g.actor, filters, request.args.get('sort'), limit, offset)
    rows_json = [svc.ticket_json(t, with_notes=False) for t in rows]
    return cached_list(rows_json, total, limit, offset, svc.latest_change(rows))


@tickets_bp.post('/tickets')
@require_permissions(CAN_SCAN)
def create_ticket():
    fields, note, _ = _payload()
    item = svc.create_ticket(g.actor.organization_id, fields, note, g.actor)
    return svc.ticket_json(item), 201


@tickets_bp.route('/tickets/<tag_id>', methods=['GET', 'HEAD'])
@require_permissions(CAN_VIEW_SERVICE_LIST)
def get_ticket(tag_id: str):
    item = svc.get_ticket(g.actor.organization_id, tag_id, g.actor)
    return make_cached_item_response(svc.ticket_json(item), f'{item.tag_id}:{item.version}', svc.latest_change([item]))


@tickets_bp.put('/tickets/<tag_id>')
@require_permissions(CAN_VIEW_SERVICE_LIST)
def update_ticket(tag_id: str):
    fields, note, version = _payload()
    result = svc.update_ticket(g.actor.organization_id, tag_id, fields, note, g.actor, expected_version=version)
    return _update_json(result)


@tickets_bp.post('/tickets/<tag_id>/status')
@require_permissions(CAN_SCAN)
def quick_update(tag_id: str):
    data = request.json or {}
    result = svc.quick_update(
        g.actor.organization_id, tag_id, data.get('status'), data.get('note'), g.actor,
        expected_version=parse_optional_int(data.get('version'), 'version'),
    )
    return _update_json(result)


@tickets_bp.post('/tickets/<tag_id>/notes')
@require_permissions(CAN_VIEW_SERVICE_LIST)
def append_note(tag_id: str):
    data = request.json or {}
    result = svc.append_note(g.actor.organization_id, tag_id, data.get('text'), g.actor)
    return _update_json(result), 201


@tickets_bp.delete('/tickets/<tag_id>')
@require_permissions(CAN_MANAGE_USERS)
def delete_ticket(tag_id: str):
    return svc.delete_ticket(g.actor.organization_id, tag_id, g.actor)


@tickets_bp.get('/tickets/<tag_id>/history')
@require_permissions(CAN_VIEW_HISTORY)
def ticket_history(tag_id: str):
    rows = svc.ticket_history(g.actor.organization_id, tag_id, g.actor)
    return {'data': [svc.history_json(h) for h in rows]}


@tickets_bp.get('/tickets/<tag_id>/tips')
@require_permissions(CAN_VIEW_SERVICE_LIST)
def ticket_tips(tag_id: str):
    item = svc.get_ticket(g.actor.organization_id, tag_id, g.actor)
    return DiagnosticTipsClient.from_config(current_app.config).tips_for(item).to_dict()


@tickets_bp.get('/scheduled')
@require_permissions(CAN_VIEW_SCHEDULED)
def list_scheduled():
    limit, offset = request_pagination()
    rows, total = svc.list_scheduled(
        g.actor,
        parse_date(request.args.get('from'), 'from'),
        parse_date(request.args.get('to'), 'to'),
        limit, offset,
    )
    rows_json = [svc.ticket_json(t, with_notes=False) for t in rows]
    return cached_list(rows_json, total, limit, offset, svc.latest_change(rows))
