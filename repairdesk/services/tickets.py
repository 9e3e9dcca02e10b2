"""Ticket lifecycle: create, update, append notes, delete and read tickets.

Every mutation runs the same pipeline: permission check -> payload validation ->
load persisted state -> derive history -> one transaction writing the ticket,
its new notes and its history entries -> publish to the change feed. An update
that derives no history entries is a no-op and touches nothing.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple
from flask import current_app
from sqlalchemy import select, or_
from repairdesk import get_db
from repairdesk.constants.permissions import (
    CAN_SCAN, CAN_VIEW_SERVICE_LIST, CAN_VIEW_SCHEDULED, CAN_VIEW_HISTORY, CAN_MANAGE_USERS,
)
from repairdesk.config.pagination import HISTORY_DEFAULT_LIMIT
from repairdesk.errors import ConflictSignal, NotFoundError, ValidationError, VersionConflict
from repairdesk.models.authz import OrgUser
from repairdesk.models.history import HistoryEntry
from repairdesk.models.service_item import ServiceItem, ServiceNote
from repairdesk.services.clients import client_snapshot, resolve_selection
from repairdesk.services.feed import change_feed, TOPIC_TICKETS, TOPIC_HISTORY
from repairdesk.services.history import derive_history, Derivation
from repairdesk.services.policy import Actor, assert_permission, assert_same_organization
from repairdesk.services.resolver import find_by_identifier
from repairdesk.services.store import store_call
from repairdesk.utils.clock import ensure_utc, isoformat, monotonic_after, utcnow
from repairdesk.utils.fsm import StatusWorkflow
from repairdesk.utils.filters import apply_filters
from repairdesk.utils.sorting import apply_multi_sort
from repairdesk.utils.validation import clean_text, parse_date, parse_optional_int, require_text

logger = logging.getLogger(__name__)

REPAIR_FLOW = StatusWorkflow(ServiceItem.ALL_STATUSES)

DUPLICATE_TAG_MESSAGE = 'This tag is already assigned to a ticket; use update instead'

# Free-text ticket fields and their maximum length
TEXT_FIELDS: Dict[str, int] = {
    'client_name': 160,
    'client_phone': 40,
    'client_email': 128,
    'device_name': 160,
    'device_model': 160,
    'serial_number': 128,
    'reported_fault': 4000,
}

NOTE_MAX_LENGTH = 4000

SORT_FIELDS = {
    'last_updated': ServiceItem.last_updated,
    'date_received': ServiceItem.date_received,
    'status': ServiceItem.status,
    'client_name': ServiceItem.client_name,
    'device_name': ServiceItem.device_name,
    'next_service_date': ServiceItem.next_service_date,
    'id': ServiceItem.tag_id,
}


def _search(q, text: str):
    like = f'%{text}%'
    return q.filter(or_(
        ServiceItem.tag_id.ilike(like),
        ServiceItem.client_name.ilike(like),
        ServiceItem.device_name.ilike(like),
        ServiceItem.device_model.ilike(like),
        ServiceItem.serial_number.ilike(like),
    ))


TICKET_FILTERS = {
    'status': {
        'op': lambda q, v: q.filter(ServiceItem.status == v),
        'validate': lambda v: v in ServiceItem.ALL_STATUSES,
    },
    'client_id': {'op': lambda q, v: q.filter(ServiceItem.client_id == v), 'coerce': int},
    'assigned_to': {'op': lambda q, v: q.filter(ServiceItem.assigned_to == v)},
    'q': {'op': _search, 'coerce': str.strip},
}


@dataclass
class UpdateResult:
    changed: bool
    item: ServiceItem
    entries: List[HistoryEntry] = field(default_factory=list)


# --- Serialization ---

def note_json(n: ServiceNote) -> Dict[str, Any]:
    return {'text': n.text, 'user': n.user, 'timestamp': isoformat(n.timestamp)}


def history_json(h: HistoryEntry) -> Dict[str, Any]:
    return {
        'id': h.id,
        'service_item_id': h.service_item_tag,
        'service_item_name': h.service_item_name,
        'type': h.type,
        'details': h.details,
        'user': h.user,
        'timestamp': isoformat(h.timestamp),
    }


def ticket_json(t: ServiceItem, with_notes: bool = True) -> Dict[str, Any]:
    body = {
        'id': t.tag_id,
        'organization_id': t.organization_id,
        'client_id': t.client_id,
        'contact_id': t.contact_id,
        'client_name': t.client_name or '',
        'client_phone': t.client_phone or '',
        'client_email': t.client_email or '',
        'device_name': t.device_name,
        'device_model': t.device_model or '',
        'serial_number': t.serial_number or '',
        'reported_fault': t.reported_fault or '',
        'status': t.status,
        'assigned_to': t.assigned_to,
        'assigned_to_name': t.assigned_to_name,
        'next_service_date': t.next_service_date.isoformat() if t.next_service_date else None,
        'date_received': isoformat(t.date_received),
        'last_updated': isoformat(t.last_updated),
        'version': t.version,
    }
    if with_notes:
        body['service_notes'] = [note_json(n) for n in t.notes]
    return body


# --- Payload normalization ---

def _assignee(organization_id: str, uid: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    if not uid:
        return None, None
    user = get_db().get(OrgUser, uid)
    if user is None or user.organization_id != organization_id:
        raise ValidationError(f'assigned_to {uid} is not a member of this organization')
    return user.uid, user.email


def normalize_fields(organization_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate the editable keys present in `data`; absent keys stay absent."""
    out: Dict[str, Any] = {}
    for key, max_len in TEXT_FIELDS.items():
        if key in data:
            out[key] = clean_text(data[key], key, max_len)
    if 'device_name' in out and not out['device_name']:
        raise ValidationError('device_name required')
    if data.get('status') is not None:
        out['status'] = REPAIR_FLOW.assert_known(data['status'])
    if 'next_service_date' in data:
        out['next_service_date'] = parse_date(data['next_service_date'], 'next_service_date')
    if 'assigned_to' in data:
        out['assigned_to'], out['assigned_to_name'] = _assignee(organization_id, data['assigned_to'])
    if 'client_id' in data:
        out['client_id'] = parse_optional_int(data['client_id'], 'client_id')
    if 'contact_id' in data:
        out['contact_id'] = parse_optional_int(data['contact_id'], 'contact_id')
    return out


def _apply_client_selection(organization_id: str, fields: Dict[str, Any], current: Optional[ServiceItem] = None):
    """Copy the selected client's details onto the ticket when the selection changes."""
    if 'client_id' not in fields and 'contact_id' not in fields:
        return
    client_id = fields.get('client_id', current.client_id if current else None)
    contact_id = fields.get('contact_id', current.contact_id if current else None)
    if 'client_id' in fields and 'contact_id' not in fields and current is not None and client_id != current.client_id:
        contact_id = None
    fields['client_id'], fields['contact_id'] = client_id, contact_id
    if current is not None and client_id == current.client_id and contact_id == current.contact_id:
        return
    client, contact = resolve_selection(organization_id, client_id, contact_id)
    if client is not None:
        fields.update(client_snapshot(client, contact))


def _history_rows(item: ServiceItem, derivation: Derivation, stamp) -> List[HistoryEntry]:
    return [
        HistoryEntry(
            organization_id=item.organization_id,
            service_item_tag=item.tag_id,
            service_item_name=item.device_name,
            type=d.type,
            details=d.details,
            user=d.user,
            timestamp=stamp,
        )
        for d in derivation.entries
    ]


def _publish(item: ServiceItem, entries: List[HistoryEntry]):
    change_feed.publish(item.organization_id, TOPIC_TICKETS, ticket_json(item))
    if entries:
        change_feed.publish(item.organization_id, TOPIC_HISTORY, [history_json(h) for h in entries])


def _load_ticket(organization_id: str, tag_id: str, session=None) -> ServiceItem:
    item = find_by_identifier(organization_id, tag_id, session)
    if item is None:
        raise NotFoundError('Ticket', tag_id)
    return item


# --- Mutations ---

def create_ticket(organization_id: str, draft: Mapping[str, Any], note_text: Optional[str], actor: Actor) -> ServiceItem:
    assert_same_organization(actor, organization_id)
    assert_permission(actor, CAN_SCAN)
    tag_id = require_text(draft.get('id'), 'id', 128)
    note_text = clean_text(note_text, 'note', NOTE_MAX_LENGTH)
    fields = normalize_fields(organization_id, draft)
    fields['device_name'] = require_text(fields.get('device_name'), 'device_name')
    fields.setdefault('status', REPAIR_FLOW.initial)
    _apply_client_selection(organization_id, fields)

    session = get_db()
    if find_by_identifier(organization_id, tag_id, session) is not None:
        raise ConflictSignal(DUPLICATE_TAG_MESSAGE)

    derivation = derive_history(None, fields, note_text, actor.email)
    now = utcnow()
    item = ServiceItem(
        tag_id=tag_id,
        organization_id=organization_id,
        date_received=now,
        last_updated=now,
        version=1,
        **fields,
    )
    if derivation.note:
        item.notes.append(ServiceNote(position=0, text=derivation.note.text, user=derivation.note.user, timestamp=now))
    entries = _history_rows(item, derivation, now)
    item.history.extend(entries)
    with store_call(session, 'Ticket save', conflict_message=DUPLICATE_TAG_MESSAGE):
        session.add(item)
        session.commit()
    logger.info('ticket %s created in %s by %s', tag_id, organization_id, actor.email)
    _publish(item, entries)
    return item


def _update(organization_id: str, tag_id: str, proposed: Dict[str, Any], note_text: Optional[str], actor: Actor,
            expected_version: Optional[int] = None) -> UpdateResult:
    session = get_db()
    item = _load_ticket(organization_id, tag_id, session)
    if expected_version is not None and expected_version != item.version:
        raise VersionConflict(expected_version, item.version)
    _apply_client_selection(organization_id, proposed, item)

    derivation = derive_history(item, proposed, note_text, actor.email)
    if derivation.is_noop:
        logger.debug('update of ticket %s derived no changes; skipping write', tag_id)
        return UpdateResult(changed=False, item=item)

    if 'status' in proposed and REPAIR_FLOW.is_regression(item.status, proposed['status']):
        logger.info('ticket %s reopened: %s -> %s by %s', tag_id, item.status, proposed['status'], actor.email)

    now = monotonic_after(item.last_updated)
    for key, value in proposed.items():
        setattr(item, key, value)
    item.last_updated = now
    item.version = (item.version or 0) + 1
    if derivation.note:
        item.notes.append(ServiceNote(
            position=len(item.notes), text=derivation.note.text, user=derivation.note.user, timestamp=now,
        ))
    entries = _history_rows(item, derivation, now)
    item.history.extend(entries)
    with store_call(session, 'Ticket save'):
        session.commit()
    logger.info('ticket %s updated (%s) by %s', tag_id, ', '.join(derivation.types), actor.email)
    _publish(item, entries)
    return UpdateResult(changed=True, item=item, entries=entries)


def update_ticket(organization_id: str, tag_id: str, proposed: Mapping[str, Any], note_text: Optional[str], actor: Actor,
                  expected_version: Optional[int] = None) -> UpdateResult:
    """Apply an edit to an existing ticket; returns changed=False when nothing differs."""
    assert_same_organization(actor, organization_id)
    assert_permission(actor, CAN_VIEW_SERVICE_LIST)
    new_id = proposed.get('id')
    if new_id is not None and str(new_id).strip() != tag_id:
        raise ValidationError('id cannot be changed once a ticket is created')
    note_text = clean_text(note_text, 'note', NOTE_MAX_LENGTH)
    fields = normalize_fields(organization_id, proposed)
    return _update(organization_id, tag_id, fields, note_text, actor, expected_version)


def quick_update(organization_id: str, tag_id: str, status: Optional[str], note_text: Optional[str], actor: Actor,
                 expected_version: Optional[int] = None) -> UpdateResult:
    """Status and/or note change straight from a scan."""
    assert_same_organization(actor, organization_id)
    assert_permission(actor, CAN_SCAN)
    fields = {'status': REPAIR_FLOW.assert_known(status)} if status else {}
    note_text = clean_text(note_text, 'note', NOTE_MAX_LENGTH)
    return _update(organization_id, tag_id, fields, note_text, actor, expected_version)


def append_note(organization_id: str, tag_id: str, note_text: Optional[str], actor: Actor) -> UpdateResult:
    assert_same_organization(actor, organization_id)
    assert_permission(actor, CAN_VIEW_SERVICE_LIST)
    note_text = require_text(note_text, 'note', NOTE_MAX_LENGTH)
    return _update(organization_id, tag_id, {}, note_text, actor)


def delete_ticket(organization_id: str, tag_id: str, actor: Actor) -> Dict[str, Any]:
    """Administrative delete: the ticket goes together with its notes and history."""
    assert_same_organization(actor, organization_id)
    assert_permission(actor, CAN_MANAGE_USERS)
    session = get_db()
    item = _load_ticket(organization_id, tag_id, session)
    removed_history = len(item.history)
    with store_call(session, 'Ticket delete'):
        session.delete(item)
        session.commit()
    logger.info('ticket %s deleted by %s (%d history entries removed)', tag_id, actor.email, removed_history)
    change_feed.publish(organization_id, TOPIC_TICKETS, {'id': tag_id, 'deleted': True})
    return {'id': tag_id, 'history_removed': removed_history}


# --- Reads ---

def get_ticket(organization_id: str, tag_id: str, actor: Actor) -> ServiceItem:
    assert_same_organization(actor, organization_id)
    assert_permission(actor, CAN_VIEW_SERVICE_LIST)
    return _load_ticket(organization_id, tag_id)


def list_tickets(actor: Actor, filters: Optional[Mapping[str, Any]] = None, sort: Optional[str] = None,
                 limit: int = 50, offset: int = 0) -> Tuple[List[ServiceItem], int]:
    assert_permission(actor, CAN_VIEW_SERVICE_LIST)
    filters = filters or {}
    session = get_db()
    q = session.query(ServiceItem).filter(ServiceItem.organization_id == actor.organization_id)
    q = apply_filters(q, TICKET_FILTERS, filters)
    q = apply_multi_sort(q, sort, SORT_FIELDS, ServiceItem.doc_id, default=ServiceItem.last_updated.desc())
    with store_call(session, 'Ticket list'):
        total = q.count()
        rows = q.offset(offset).limit(limit).all()
    return rows, total


def list_scheduled(actor: Actor, date_from: Optional[date] = None, date_to: Optional[date] = None,
                   limit: int = 50, offset: int = 0) -> Tuple[List[ServiceItem], int]:
    """Tickets with a planned service date, soonest first."""
    assert_permission(actor, CAN_VIEW_SCHEDULED)
    if date_from and date_to and date_from > date_to:
        raise ValidationError('from must not be after to')
    session = get_db()
    q = session.query(ServiceItem).filter(
        ServiceItem.organization_id == actor.organization_id,
        ServiceItem.next_service_date.isnot(None),
    )
    if date_from:
        q = q.filter(ServiceItem.next_service_date >= date_from)
    if date_to:
        q = q.filter(ServiceItem.next_service_date <= date_to)
    q = q.order_by(ServiceItem.next_service_date.asc(), ServiceItem.doc_id.asc())
    with store_call(session, 'Scheduled list'):
        total = q.count()
        rows = q.offset(offset).limit(limit).all()
    return rows, total


def ticket_history(organization_id: str, tag_id: str, actor: Actor) -> List[HistoryEntry]:
    assert_same_organization(actor, organization_id)
    assert_permission(actor, CAN_VIEW_HISTORY)
    session = get_db()
    item = _load_ticket(organization_id, tag_id, session)
    with store_call(session, 'History read'):
        return session.execute(
            select(HistoryEntry)
            .where(HistoryEntry.service_item_id == item.doc_id)
            .order_by(HistoryEntry.timestamp.desc(), HistoryEntry.id.asc())
        ).scalars().all()


def organization_history(actor: Actor, limit: Optional[int] = None, offset: int = 0,
                         entry_type: Optional[str] = None) -> Tuple[List[HistoryEntry], int]:
    """Cross-ticket feed, newest first; defaults to the configured feed size."""
    assert_permission(actor, CAN_VIEW_HISTORY)
    if limit is None:
        limit = current_app.config.get('HISTORY_FEED_LIMIT', HISTORY_DEFAULT_LIMIT)
    session = get_db()
    q = session.query(HistoryEntry).filter(HistoryEntry.organization_id == actor.organization_id)
    if entry_type:
        if entry_type not in HistoryEntry.ALL_TYPES:
            raise ValidationError('type invalid')
        q = q.filter(HistoryEntry.type == entry_type)
    q = q.order_by(HistoryEntry.timestamp.desc(), HistoryEntry.id.asc())
    with store_call(session, 'History read'):
        total = q.count()
        rows = q.offset(offset).limit(limit).all()
    return rows, total


def latest_change(rows) -> Optional[Any]:
    stamps = [ensure_utc(getattr(r, 'last_updated', None) or getattr(r, 'timestamp', None)) for r in rows]
    stamps = [s for s in stamps if s is not None]
    return max(stamps) if stamps else None


__all__ = [
    'UpdateResult', 'REPAIR_FLOW', 'create_ticket', 'update_ticket', 'quick_update', 'append_note',
    'delete_ticket', 'get_ticket', 'list_tickets', 'list_scheduled', 'ticket_history',
    'organization_history', 'ticket_json', 'history_json', 'note_json', 'normalize_fields', 'latest_change',
]
