"""Client/contact directory.

Company clients own contacts, individual clients never do. Deleting a client
removes its contacts but leaves tickets alone; tickets carry a snapshot of the
client's name/phone/email taken when the client was selected.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Mapping, Optional
from sqlalchemy import select, or_
from repairdesk import get_db
from repairdesk.constants.permissions import CAN_VIEW_CLIENTS
from repairdesk.errors import NotFoundError, ValidationError
from repairdesk.models.client import Client, Contact
from repairdesk.services.feed import change_feed, TOPIC_CLIENTS
from repairdesk.services.policy import Actor, assert_permission
from repairdesk.services.store import store_call
from repairdesk.utils.validation import clean_text, require_text, validate_status

logger = logging.getLogger(__name__)

_CLIENT_TEXT_FIELDS = {'name': 160, 'company_name': 160, 'phone': 40, 'email': 128, 'address': 255, 'nip': 32}


def client_json(c: Client, with_contacts: bool = False) -> Dict[str, Any]:
    body = {
        'id': c.id,
        'organization_id': c.organization_id,
        'type': c.type,
        'name': c.name,
        'company_name': c.company_name,
        'display_name': c.display_name,
        'phone': c.phone,
        'email': c.email,
        'address': c.address,
        'nip': c.nip,
    }
    if with_contacts:
        body['contacts'] = [contact_json(ct) for ct in c.contacts]
    return body


def contact_json(ct: Contact) -> Dict[str, Any]:
    return {'id': ct.id, 'client_id': ct.client_id, 'name': ct.name, 'phone': ct.phone, 'email': ct.email}


def client_snapshot(client: Client, contact: Optional[Contact] = None) -> Dict[str, Optional[str]]:
    """Denormalized copy written onto a ticket at selection time."""
    if contact is not None:
        return {
            'client_name': client.display_name,
            'client_phone': contact.phone or client.phone,
            'client_email': contact.email or client.email,
        }
    return {'client_name': client.display_name, 'client_phone': client.phone, 'client_email': client.email}


def client_query(actor: Actor, search: Optional[str] = None, client_type: Optional[str] = None):
    assert_permission(actor, CAN_VIEW_CLIENTS)
    q = get_db().query(Client).filter(Client.organization_id == actor.organization_id)
    if client_type:
        q = q.filter(Client.type == validate_status(client_type, Client.ALL_TYPES, 'type'))
    if search:
        like = f'%{search}%'
        q = q.filter(or_(Client.name.ilike(like), Client.company_name.ilike(like), Client.phone.ilike(like), Client.email.ilike(like)))
    return q


def _load_client(organization_id: str, client_id: int, session=None) -> Client:
    session = session or get_db()
    with store_call(session, 'Client lookup'):
        c = session.execute(select(Client).where(Client.id == client_id, Client.organization_id == organization_id)).scalar_one_or_none()
    if c is None:
        raise NotFoundError('Client', client_id)
    return c


def _load_contact(client: Client, contact_id: int, session=None) -> Contact:
    session = session or get_db()
    with store_call(session, 'Contact lookup'):
        ct = session.execute(select(Contact).where(Contact.id == contact_id, Contact.client_id == client.id)).scalar_one_or_none()
    if ct is None:
        raise NotFoundError('Contact', contact_id)
    return ct


def get_client(actor: Actor, client_id: int) -> Client:
    assert_permission(actor, CAN_VIEW_CLIENTS)
    return _load_client(actor.organization_id, client_id)


def resolve_selection(organization_id: str, client_id: Optional[int], contact_id: Optional[int]):
    """Load the client (and contact) a ticket is being pointed at."""
    if client_id is None:
        if contact_id is not None:
            raise ValidationError('contact_id requires client_id')
        return None, None
    client = _load_client(organization_id, client_id)
    contact = None
    if contact_id is not None:
        if client.type != Client.TYPE_COMPANY:
            raise ValidationError('contacts exist only under company clients')
        contact = _load_contact(client, contact_id)
    return client, contact


def _apply_client_fields(c: Client, data: Mapping[str, Any]):
    if 'type' in data:
        new_type = validate_status(data['type'], Client.ALL_TYPES, 'type')
        if new_type == Client.TYPE_INDIVIDUAL and c.type == Client.TYPE_COMPANY and c.contacts:
            raise ValidationError('client with contacts cannot become individual; remove contacts first')
        c.type = new_type
    for key, max_len in _CLIENT_TEXT_FIELDS.items():
        if key in data:
            setattr(c, key, clean_text(data[key], key, max_len))
    if c.type == Client.TYPE_COMPANY:
        if not c.company_name:
            raise ValidationError('company_name required for company clients')
    elif not c.name:
        raise ValidationError('name required for individual clients')


def create_client(actor: Actor, data: Mapping[str, Any]) -> Client:
    assert_permission(actor, CAN_VIEW_CLIENTS)
    c = Client(organization_id=actor.organization_id, type=Client.TYPE_INDIVIDUAL)
    _apply_client_fields(c, {'type': data.get('type') or Client.TYPE_INDIVIDUAL, **{k: v for k, v in data.items() if k != 'type'}})
    session = get_db()
    with store_call(session, 'Client save'):
        session.add(c)
        session.commit()
    logger.info('client %s created by %s', c.id, actor.email)
    change_feed.publish(actor.organization_id, TOPIC_CLIENTS, client_json(c))
    return c


def update_client(actor: Actor, client_id: int, data: Mapping[str, Any]) -> Client:
    assert_permission(actor, CAN_VIEW_CLIENTS)
    session = get_db()
    c = _load_client(actor.organization_id, client_id, session)
    try:
        _apply_client_fields(c, data)
    except ValidationError:
        session.rollback()
        raise
    with store_call(session, 'Client save'):
        session.commit()
    change_feed.publish(actor.organization_id, TOPIC_CLIENTS, client_json(c))
    return c


def delete_client(actor: Actor, client_id: int) -> Dict[str, Any]:
    """Delete a client and its contacts; tickets keep their dangling client_id."""
    assert_permission(actor, CAN_VIEW_CLIENTS)
    session = get_db()
    c = _load_client(actor.organization_id, client_id, session)
    removed_contacts = len(c.contacts)
    snapshot = client_json(c)
    with store_call(session, 'Client delete'):
        session.delete(c)
        session.commit()
    logger.info('client %s deleted by %s (%d contacts removed)', client_id, actor.email, removed_contacts)
    change_feed.publish(actor.organization_id, TOPIC_CLIENTS, {**snapshot, 'deleted': True})
    return {'id': client_id, 'contacts_removed': removed_contacts}


# --- Contacts ---

def list_contacts(actor: Actor, client_id: int):
    c = get_client(actor, client_id)
    return list(c.contacts)


def _apply_contact_fields(ct: Contact, data: Mapping[str, Any]):
    if 'name' in data or ct.name is None:
        ct.name = require_text(data.get('name'), 'name', 160)
    if 'phone' in data or ct.phone is None:
        ct.phone = require_text(data.get('phone'), 'phone', 40)
    if 'email' in data:
        ct.email = clean_text(data['email'], 'email', 128)


def create_contact(actor: Actor, client_id: int, data: Mapping[str, Any]) -> Contact:
    assert_permission(actor, CAN_VIEW_CLIENTS)
    session = get_db()
    c = _load_client(actor.organization_id, client_id, session)
    if c.type != Client.TYPE_COMPANY:
        raise ValidationError('contacts can only be added to company clients')
    ct = Contact()
    _apply_contact_fields(ct, data)
    with store_call(session, 'Contact save'):
        c.contacts.append(ct)
        session.commit()
    change_feed.publish(actor.organization_id, TOPIC_CLIENTS, client_json(c, with_contacts=True))
    return ct


def update_contact(actor: Actor, client_id: int, contact_id: int, data: Mapping[str, Any]) -> Contact:
    assert_permission(actor, CAN_VIEW_CLIENTS)
    session = get_db()
    c = _load_client(actor.organization_id, client_id, session)
    ct = _load_contact(c, contact_id, session)
    try:
        _apply_contact_fields(ct, data)
    except ValidationError:
        session.rollback()
        raise
    with store_call(session, 'Contact save'):
        session.commit()
    change_feed.publish(actor.organization_id, TOPIC_CLIENTS, client_json(c, with_contacts=True))
    return ct


def delete_contact(actor: Actor, client_id: int, contact_id: int):
    assert_permission(actor, CAN_VIEW_CLIENTS)
    session = get_db()
    c = _load_client(actor.organization_id, client_id, session)
    ct = _load_contact(c, contact_id, session)
    with store_call(session, 'Contact delete'):
        session.delete(ct)
        session.commit()
    session.expire(c, ['contacts'])
    change_feed.publish(actor.organization_id, TOPIC_CLIENTS, client_json(c, with_contacts=True))
    return {'id': contact_id}
