from __future__ import annotations
from flask import Blueprint, request, g
from repairdesk.constants.permissions import CAN_VIEW_CLIENTS
from repairdesk.decorators.audit import audit_log
from repairdesk.decorators.auth import require_permissions
from repairdesk.services import clients as svc
from repairdesk.utils.listing import cached_list, make_cached_item_response, request_pagination
from repairdesk.utils.sorting import apply_multi_sort
from repairdesk.models.client import Client

clients_bp = Blueprint('clients', __name__)

SORT_FIELDS = {
    'name': Client.name,
    'company_name': Client.company_name,
    'type': Client.type,
    'updated_at': Client.updated_at,
    'id': Client.id,
}


def _prefetch_client(client_id: int):  # helper for audit decorator pre_fetch
    return svc.client_json(svc.get_client(g.actor, client_id))


@clients_bp.route('', methods=['GET', 'HEAD'])
@require_permissions(CAN_VIEW_CLIENTS)
def list_clients():
    q = svc.client_query(g.actor, request.args.get('q'), request.args.get('type'))
    q = apply_multi_sort(q, request.args.get('sort'), SORT_FIELDS, Client.id)
    limit, offset = request_pagination()
    total = q.count()
    rows = q.offset(offset).limit(limit).all()
    stamps = [r.updated_at for r in rows if r.updated_at]
    return cached_list([svc.client_json(c) for c in rows], total, limit, offset, max(stamps) if stamps else None)


@clients_bp.post('')
@require_permissions(CAN_VIEW_CLIENTS)
@audit_log('CLIENT.CREATE', entity='Client', entity_id_key='id', meta_keys=['type', 'display_name'])
def create_client():
    c = svc.create_client(g.actor, request.json or {})
    return svc.client_json(c, with_contacts=True), 201


@clients_bp.route('/<int:client_id>', methods=['GET', 'HEAD'])
@require_permissions(CAN_VIEW_CLIENTS)
def get_client(client_id: int):
    c = svc.get_client(g.actor, client_id)
    return make_cached_item_response(svc.client_json(c, with_contacts=True), c.id, c.updated_at)


@clients_bp.put('/<int:client_id>')
@require_permissions(CAN_VIEW_CLIENTS)
@audit_log(
    'CLIENT.UPDATE', entity='Client', entity_id_key='id',
    diff_keys=['type', 'name', 'company_name', 'phone', 'email', 'address', 'nip'],
    pre_fetch=lambda a, kw: _prefetch_client(kw.get('client_id')),
)
def update_client(client_id: int):
    c = svc.update_client(g.actor, client_id, request.json or {})
    return svc.client_json(c, with_contacts=True)


@clients_bp.delete('/<int:client_id>')
@require_permissions(CAN_VIEW_CLIENTS)
@audit_log('CLIENT.DELETE', entity='Client', entity_id_key='id', meta_keys=['contacts_removed'])
def delete_client(client_id: int):
    return svc.delete_client(g.actor, client_id)


# --- Contacts ---

@clients_bp.get('/<int:client_id>/contacts')
@require_permissions(CAN_VIEW_CLIENTS)
def list_contacts(client_id: int):
    return {'data': [svc.contact_json(ct) for ct in svc.list_contacts(g.actor, client_id)]}


@clients_bp.post('/<int:client_id>/contacts')
@require_permissions(CAN_VIEW_CLIENTS)
def create_contact(client_id: int):
    ct = svc.create_contact(g.actor, client_id, request.json or {})
    return svc.contact_json(ct), 201


@clients_bp.put('/<int:client_id>/contacts/<int:contact_id>')
@require_permissions(CAN_VIEW_CLIENTS)
def update_contact(client_id: int, contact_id: int):
    ct = svc.update_contact(g.actor, client_id, contact_id, request.json or {})
    return svc.contact_json(ct)


@clients_bp.delete('/<int:client_id>/contacts/<int:contact_id>')
@require_permissions(CAN_VIEW_CLIENTS)
def delete_contact(client_id: int, contact_id: int):
    return svc.delete_contact(g.actor, client_id, contact_id)
