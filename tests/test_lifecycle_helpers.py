"""Reusable test helpers for ticket lifecycle flows.

Patterns unified:
 - Auth header creation (direct JWT for a uid, or login based).
 - Ticket creation / status move sequencing with assertion helpers.
 - Row counting for "nothing was written" assertions.
"""
from __future__ import annotations
from typing import Dict, List, Optional
from flask_jwt_extended import create_access_token
from sqlalchemy import func, select
from repairdesk import get_db
from repairdesk.models.history import HistoryEntry
from repairdesk.models.service_item import ServiceItem, ServiceNote
from tests.test_utils_seed import DEFAULT_PASSWORD

# ---------- Generic Auth Helpers ---------- #

def jwt_headers(uid: str, claims: Optional[dict] = None):
    token = create_access_token(identity=uid, additional_claims=claims or {})
    return {'Authorization': f'Bearer {token}'}


def login_headers(client, email: str, password: str = DEFAULT_PASSWORD):
    resp = client.post('/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return {'Authorization': f"Bearer {resp.get_json()['access_token']}"}

# ---------- Store Inspection ---------- #

def row_counts(org_id: str) -> Dict[str, int]:
    session = get_db()
    return {
        'tickets': session.scalar(select(func.count()).select_from(ServiceItem).where(ServiceItem.organization_id == org_id)),
        'history': session.scalar(select(func.count()).select_from(HistoryEntry).where(HistoryEntry.organization_id == org_id)),
        'notes': session.scalar(
            select(func.count()).select_from(ServiceNote).join(ServiceItem).where(ServiceItem.organization_id == org_id)
        ),
    }

# ---------- Assertion Helpers ---------- #

def create_ticket_and_assert(client, headers: Dict[str, str], payload: dict, expected_status: str = 'Received'):
    resp = client.post('/service/tickets', json=payload, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['status'] == expected_status
    return body


def move_status_and_assert(client, headers: Dict[str, str], tag: str, status: str, expected_code: int = 200):
    resp = client.post(f'/service/tickets/{tag}/status', json={'status': status}, headers=headers)
    assert resp.status_code == expected_code, resp.get_json()
    return resp.get_json()


def history_types(client, headers: Dict[str, str], tag: str) -> List[str]:
    resp = client.get(f'/service/tickets/{tag}/history', headers=headers)
    assert resp.status_code == 200, resp.get_json()
    return [h['type'] for h in resp.get_json()['data']]

__all__ = [
    'jwt_headers', 'login_headers', 'row_counts', 'create_ticket_and_assert', 'move_status_and_assert', 'history_types',
]
