"""Scanned identifier -> ticket resolution.

A scan (NFC serial or barcode text, the resolver does not know which) either finds
the organization's ticket with that identifier or yields an unsaved draft for the
create path. Resolution is a read, not a reservation: duplicate creation is
stopped by the store's (organization_id, tag_id) unique constraint.

Calls are serialized per scan session so one physical scan cannot open two prompts.
"""
from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Set, Tuple
from sqlalchemy import select
from repairdesk import get_db
from repairdesk.constants.permissions import CAN_SCAN
from repairdesk.errors import ScanInProgress
from repairdesk.models.service_item import ServiceItem
from repairdesk.services.policy import Actor, assert_permission, assert_same_organization
from repairdesk.services.store import store_call
from repairdesk.utils.clock import utcnow
from repairdesk.utils.validation import require_text

logger = logging.getLogger(__name__)


def new_ticket_draft(organization_id: str, identifier: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        'id': identifier,
        'organization_id': organization_id,
        'client_id': None,
        'contact_id': None,
        'client_name': '',
        'client_phone': '',
        'client_email': '',
        'device_name': '',
        'device_model': '',
        'serial_number': '',
        'reported_fault': '',
        'status': ServiceItem.STATUS_RECEIVED,
        'assigned_to': None,
        'assigned_to_name': None,
        'next_service_date': None,
        'date_received': now,
        'last_updated': now,
        'service_notes': [],
    }


@dataclass
class Resolution:
    identifier: str
    found: bool
    item: Optional[ServiceItem] = None
    draft: Optional[Dict[str, Any]] = None


def find_by_identifier(organization_id: str, identifier: str, session=None) -> Optional[ServiceItem]:
    session = session or get_db()
    with store_call(session, 'Ticket lookup'):
        return session.execute(
            select(ServiceItem)
            .where(ServiceItem.organization_id == organization_id, ServiceItem.tag_id == identifier)
            .limit(1)
        ).scalar_one_or_none()


class IdentityResolver:
    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: Set[Tuple[str, str]] = set()

    @contextmanager
    def _exclusive(self, organization_id: str, scan_session: str):
        key = (organization_id, scan_session)
        with self._lock:
            if key in self._in_flight:
                logger.info('re-entrant scan rejected for session %s', scan_session)
                raise ScanInProgress(scan_session)
            self._in_flight.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(key)

    def is_busy(self, organization_id: str, scan_session: str) -> bool:
        with self._lock:
            return (organization_id, scan_session) in self._in_flight

    def resolve(self, organization_id: str, identifier: str, scan_session: str, actor: Actor) -> Resolution:
        assert_same_organization(actor, organization_id)
        assert_permission(actor, CAN_SCAN)
        identifier = require_text(identifier, 'identifier', 128)
        with self._exclusive(organization_id, scan_session):
            item = find_by_identifier(organization_id, identifier)
            if item is not None:
                logger.debug('scan %s resolved to ticket %s', identifier, item.doc_id)
                return Resolution(identifier=identifier, found=True, item=item)
            logger.debug('scan %s not found, offering create draft', identifier)
            return Resolution(identifier=identifier, found=False, draft=new_ticket_draft(organization_id, identifier))


resolver = IdentityResolver()

__all__ = ['IdentityResolver', 'Resolution', 'resolver', 'new_ticket_draft', 'find_by_identifier']
