from datetime import date, datetime, timezone
import pytest
from sqlalchemy.exc import OperationalError
from repairdesk import get_db
from repairdesk.constants.permissions import (
    CAN_SCAN, CAN_VIEW_SERVICE_LIST, CAN_VIEW_HISTORY, CAN_VIEW_SCHEDULED, CAN_MANAGE_USERS,
)
from repairdesk.errors import (
    AuthorizationError, ConfigurationError, ConflictSignal, NotFoundError, StoreError, ValidationError, VersionConflict,
)
from repairdesk.services import tickets as svc
from repairdesk.services.feed import change_feed, TOPIC_TICKETS, TOPIC_HISTORY
from repairdesk.utils import clock
from repairdesk.utils.clock import ensure_utc
from tests.test_utils_seed import ensure_company, ensure_org, seed_actor, seed_admin, ensure_user, flags, unique
from tests.test_lifecycle_helpers import row_counts

STAFF = (CAN_SCAN, CAN_VIEW_SERVICE_LIST, CAN_VIEW_HISTORY, CAN_VIEW_SCHEDULED)


@pytest.fixture()
def org(app_context):
    return ensure_org()


@pytest.fixture()
def staff(org):
    return seed_actor(*STAFF, org_id=org.id)


def _types(org_id, tag, actor):
    return [h.type for h in svc.ticket_history(org_id, tag, actor)]


def test_new_tag_scenario(org, staff):
    item = svc.create_ticket(org.id, {'id': 'TAG-001', 'device_name': 'Laptop X'}, "dropped, won't boot", staff)
    assert item.tag_id == 'TAG-001'
    assert item.status == 'Received'
    assert [n.text for n in item.notes] == ["dropped, won't boot"]
    assert item.notes[0].user == staff.email
    assert _types(org.id, 'TAG-001', staff) == ['Created', 'NoteAdded']


def test_create_round_trip_without_note(org, staff):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'Printer', 'client_name': 'Anna'}, None, staff)
    loaded = svc.get_ticket(org.id, tag, staff)
    assert loaded.notes == []
    hist = svc.ticket_history(org.id, tag, staff)
    assert [h.type for h in hist] == ['Created']
    assert hist[0].details == 'Received device "Printer" from client "Anna".'
    assert ensure_utc(loaded.last_updated) >= ensure_utc(loaded.date_received)
    assert loaded.version == 1


def test_create_validates_before_store(org, staff):
    before = row_counts(org.id)
    with pytest.raises(ValidationError):
        svc.create_ticket(org.id, {'id': unique('T'), 'device_name': '   '}, None, staff)
    with pytest.raises(ValidationError):
        svc.create_ticket(org.id, {'id': '', 'device_name': 'Phone'}, None, staff)
    with pytest.raises(ValidationError):
        svc.create_ticket(org.id, {'id': unique('T'), 'device_name': 'Phone', 'status': 'Lost'}, None, staff)
    assert row_counts(org.id) == before


def test_permission_denial_writes_nothing(org, monkeypatch):
    no_scan = seed_actor(CAN_VIEW_SERVICE_LIST, org_id=org.id)
    before = row_counts(org.id)

    def no_store_access(*a, **kw):
        raise AssertionError('store touched before permission check')

    monkeypatch.setattr(svc, 'get_db', no_store_access)
    monkeypatch.setattr(svc, 'find_by_identifier', no_store_access)
    with pytest.raises(AuthorizationError):
        svc.create_ticket(org.id, {'id': 'TAG-DENIED', 'device_name': 'Laptop'}, 'note', no_scan)
    monkeypatch.undo()
    assert row_counts(org.id) == before


def test_duplicate_tag_is_a_conflict(org, staff):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'A'}, None, staff)
    with pytest.raises(ConflictSignal) as exc:
        svc.create_ticket(org.id, {'id': tag, 'device_name': 'B'}, None, staff)
    assert 'use update instead' in exc.value.detail
    # same tag in another organization is fine
    other = ensure_org()
    svc.create_ticket(other.id, {'id': tag, 'device_name': 'C'}, None, seed_actor(CAN_SCAN, org_id=other.id))


def test_status_only_edit(org, staff):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'Laptop'}, 'first', staff)
    res = svc.update_ticket(org.id, tag, {'status': 'Repairing'}, None, staff)
    assert res.changed
    assert [e.type for e in res.entries] == ['StatusChanged']
    assert res.entries[0].details == 'Status changed from "Received" to "Repairing".'
    assert [n.text for n in res.item.notes] == ['first']
    assert res.item.version == 2


def test_identical_update_is_a_noop(org, staff):
    tag = unique('T')
    item = svc.create_ticket(org.id, {'id': tag, 'device_name': 'Laptop', 'client_name': 'Jan'}, None, staff)
    stamp, version = item.last_updated, item.version
    before = row_counts(org.id)
    res = svc.update_ticket(org.id, tag, {'device_name': 'Laptop', 'client_name': ' Jan ', 'status': 'Received',
                                          'client_email': ''}, '  ', staff)
    assert res.changed is False
    assert res.entries == []
    assert row_counts(org.id) == before
    loaded = svc.get_ticket(org.id, tag, staff)
    assert loaded.version == version
    assert ensure_utc(loaded.last_updated) == ensure_utc(stamp)


def test_one_entry_per_rule_category(org, staff):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'Laptop'}, None, staff)
    res = svc.update_ticket(org.id, tag, {
        'status': 'Diagnosing', 'device_model': 'T480', 'serial_number': 'PF-1', 'next_service_date': '2026-12-01',
    }, 'opened case', staff)
    assert [e.type for e in res.entries] == ['StatusChanged', 'DataEdited', 'NoteAdded']
    assert res.item.next_service_date == date(2026, 12, 1)
    assert len(res.item.notes) == 1


def test_last_updated_strictly_increases_even_with_a_stuck_clock(org, staff, monkeypatch):
    frozen = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    monkeypatch.setattr(clock, 'utcnow', lambda: frozen)
    monkeypatch.setattr(svc, 'utcnow', lambda: frozen)
    tag = unique('T')
    item = svc.create_ticket(org.id, {'id': tag, 'device_name': 'Laptop'}, None, staff)
    stamps = [ensure_utc(item.last_updated)]
    for status in ('Diagnosing', 'Repairing', 'ReadyForPickup'):
        res = svc.update_ticket(org.id, tag, {'status': status}, None, staff)
        stamps.append(ensure_utc(res.item.last_updated))
        assert ensure_utc(res.entries[0].timestamp) == stamps[-1]
    assert stamps == sorted(stamps) and len(set(stamps)) == len(stamps)
    assert stamps[0] >= ensure_utc(item.date_received)


def test_reopen_is_allowed_and_recorded(org, staff):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'Laptop', 'status': 'ReturnedToClient'}, None, staff)
    res = svc.quick_update(org.id, tag, 'Repairing', 'came back', staff)
    assert [e.type for e in res.entries] == ['StatusChanged', 'NoteAdded']
    assert res.item.status == 'Repairing'


def test_quick_update_requires_scan(org):
    viewer = seed_actor(CAN_VIEW_SERVICE_LIST, CAN_VIEW_HISTORY, org_id=org.id)
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'X'}, None, seed_actor(CAN_SCAN, org_id=org.id))
    with pytest.raises(AuthorizationError):
        svc.quick_update(org.id, tag, 'Repairing', None, viewer)
    assert svc.update_ticket(org.id, tag, {'status': 'Repairing'}, None, viewer).changed


def test_append_note(org, staff):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'X'}, 'one', staff)
    res = svc.append_note(org.id, tag, 'two', staff)
    assert [n.text for n in res.item.notes] == ['one', 'two']
    assert [n.position for n in res.item.notes] == [0, 1]
    assert [e.details for e in res.entries] == ['Added note: "two"']
    with pytest.raises(ValidationError):
        svc.append_note(org.id, tag, '   ', staff)


def test_identifier_is_immutable(org, staff):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'X'}, None, staff)
    with pytest.raises(ValidationError):
        svc.update_ticket(org.id, tag, {'id': 'OTHER'}, None, staff)
    assert svc.update_ticket(org.id, tag, {'id': tag}, None, staff).changed is False


def test_expected_version_detects_concurrent_edit(org, staff):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'X'}, None, staff)
    svc.update_ticket(org.id, tag, {'status': 'Diagnosing'}, None, staff, expected_version=1)
    with pytest.raises(VersionConflict) as exc:
        svc.update_ticket(org.id, tag, {'status': 'Repairing'}, None, staff, expected_version=1)
    assert exc.value.actual == 2
    assert svc.get_ticket(org.id, tag, staff).status == 'Diagnosing'


def test_failed_commit_leaves_no_partial_state(org, staff, monkeypatch):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'X'}, None, staff)
    before = row_counts(org.id)
    session = get_db()

    def broken_commit():
        raise OperationalError('COMMIT', {}, Exception('database is locked'))

    monkeypatch.setattr(session, 'commit', broken_commit)
    with pytest.raises(StoreError):
        svc.update_ticket(org.id, tag, {'status': 'Repairing'}, 'note', staff)
    with pytest.raises(StoreError):
        svc.create_ticket(org.id, {'id': unique('T'), 'device_name': 'Y'}, 'note', staff)
    monkeypatch.undo()
    assert row_counts(org.id) == before
    loaded = svc.get_ticket(org.id, tag, staff)
    assert loaded.status == 'Received'
    assert loaded.notes == []
    assert loaded.version == 1


def test_missing_schema_is_a_configuration_error(org, staff, monkeypatch):
    session = get_db()

    def broken_commit():
        raise OperationalError('INSERT INTO history_entries', {}, Exception('no such table: history_entries'))

    monkeypatch.setattr(session, 'commit', broken_commit)
    with pytest.raises(ConfigurationError) as exc:
        svc.create_ticket(org.id, {'id': unique('T'), 'device_name': 'Y'}, None, staff)
    assert exc.value.code == 'backend-misconfigured'


def test_delete_removes_notes_and_history(org, staff):
    admin = seed_admin(org_id=org.id)
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'X'}, 'n1', staff)
    svc.update_ticket(org.id, tag, {'status': 'Repairing'}, 'n2', staff)
    with pytest.raises(AuthorizationError):
        svc.delete_ticket(org.id, tag, staff)
    result = svc.delete_ticket(org.id, tag, admin)
    assert result['history_removed'] == 4
    assert row_counts(org.id) == {'tickets': 0, 'history': 0, 'notes': 0}
    with pytest.raises(NotFoundError):
        svc.get_ticket(org.id, tag, staff)


def test_assignment_resolves_user_in_organization(org, staff):
    tech_uid = ensure_user(email=f"{unique('tech')}@example.com", org_id=org.id, permissions=flags(CAN_SCAN))
    outsider = ensure_user(permissions=flags(CAN_SCAN))
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'X'}, None, staff)
    res = svc.update_ticket(org.id, tag, {'assigned_to': tech_uid}, None, staff)
    assert res.item.assigned_to == tech_uid
    assert res.entries[0].type == 'DataEdited'
    assert res.entries[0].details.startswith("'Assigned to' changed from \"\" to ")
    with pytest.raises(ValidationError):
        svc.update_ticket(org.id, tag, {'assigned_to': outsider}, None, staff)


def test_change_feed_receives_committed_changes(org, staff):
    tickets, history = [], []
    tag = unique('T')
    with change_feed.subscribe(org.id, TOPIC_TICKETS, tickets.append), \
            change_feed.subscribe(org.id, TOPIC_HISTORY, history.append):
        svc.create_ticket(org.id, {'id': tag, 'device_name': 'X'}, None, staff)
        svc.update_ticket(org.id, tag, {'status': 'Received'}, None, staff)  # no-op, nothing published
        svc.update_ticket(org.id, tag, {'status': 'Repairing'}, None, staff)
    svc.update_ticket(org.id, tag, {'status': 'ReadyForPickup'}, None, staff)
    assert [t['status'] for t in tickets] == ['Received', 'Repairing']
    assert [[h['type'] for h in batch] for batch in history] == [['Created'], ['StatusChanged']]


def test_organization_history_feed_is_newest_first_and_limited(org, staff, app_context):
    for i in range(15):
        svc.create_ticket(org.id, {'id': f'FEED-{i}', 'device_name': f'Device {i}'}, f'note {i}', staff)
    rows, total = svc.organization_history(staff)
    assert total == 30
    assert len(rows) == app_context.config['HISTORY_FEED_LIMIT'] == 25
    stamps = [ensure_utc(r.timestamp) for r in rows]
    assert stamps == sorted(stamps, reverse=True)
    assert rows[0].service_item_tag == 'FEED-14'
    notes_only, n = svc.organization_history(staff, limit=5, entry_type='NoteAdded')
    assert n == 15 and all(r.type == 'NoteAdded' for r in notes_only)
    with pytest.raises(AuthorizationError):
        svc.organization_history(seed_actor(CAN_SCAN, org_id=org.id))


def test_list_and_scheduled(org, staff):
    svc.create_ticket(org.id, {'id': 'S-1', 'device_name': 'Alpha', 'next_service_date': '2026-11-10'}, None, staff)
    svc.create_ticket(org.id, {'id': 'S-2', 'device_name': 'Bravo', 'next_service_date': '2026-11-01'}, None, staff)
    svc.create_ticket(org.id, {'id': 'S-3', 'device_name': 'Charlie', 'status': 'Repairing'}, None, staff)
    rows, total = svc.list_scheduled(staff, date(2026, 11, 1), date(2026, 11, 30))
    assert [r.tag_id for r in rows] == ['S-2', 'S-1'] and total == 2
    rows, total = svc.list_tickets(staff, {'status': 'Repairing'})
    assert [r.tag_id for r in rows] == ['S-3']
    rows, _ = svc.list_tickets(staff, {'q': 'ALPHA'})
    assert [r.tag_id for r in rows] == ['S-1']
    rows, _ = svc.list_tickets(staff, sort='-device_name')
    assert [r.device_name for r in rows] == ['Charlie', 'Bravo', 'Alpha']
    with pytest.raises(ValidationError):
        svc.list_tickets(staff, {'status': 'Lost'})
    with pytest.raises(ValidationError):
        svc.list_scheduled(staff, date(2026, 12, 1), date(2026, 11, 1))


def test_relinking_to_a_look_alike_client_is_recorded(org, staff):
    first = ensure_company(org.id, company_name='Twin Sp. z o.o.', phone='+48 1', email='twin@example.com')
    second = ensure_company(org.id, company_name='Twin Sp. z o.o.', phone='+48 1', email='twin@example.com')
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'Router', 'client_id': first.id}, None, staff)
    res = svc.update_ticket(org.id, tag, {'client_id': second.id}, None, staff)
    assert res.changed
    assert [e.type for e in res.entries] == ['DataEdited']
    assert res.entries[0].details == f"'Client' changed from \"#{first.id}\" to \"#{second.id}\""
    assert res.item.client_id == second.id
    assert res.item.version == 2
    assert _types(org.id, tag, staff) == ['Created', 'DataEdited']


@pytest.mark.parametrize('note', [123, ['fixed'], {'text': 'fixed'}])
def test_non_string_note_is_rejected_everywhere(org, staff, note):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'Laptop'}, None, staff)
    before = row_counts(org.id)
    with pytest.raises(ValidationError):
        svc.create_ticket(org.id, {'id': unique('T'), 'device_name': 'Laptop'}, note, staff)
    with pytest.raises(ValidationError):
        svc.update_ticket(org.id, tag, {'status': 'Repairing'}, note, staff)
    with pytest.raises(ValidationError):
        svc.quick_update(org.id, tag, 'Repairing', note, staff)
    with pytest.raises(ValidationError):
        svc.append_note(org.id, tag, note, staff)
    assert row_counts(org.id) == before
    assert svc.get_ticket(org.id, tag, staff).status == 'Received'


@pytest.mark.parametrize('status', [['Received'], {'status': 'Repairing'}, 7])
def test_non_string_status_is_rejected(org, staff, status):
    tag = unique('T')
    svc.create_ticket(org.id, {'id': tag, 'device_name': 'Laptop'}, None, staff)
    before = row_counts(org.id)
    with pytest.raises(ValidationError):
        svc.create_ticket(org.id, {'id': unique('T'), 'device_name': 'Laptop', 'status': status}, None, staff)
    with pytest.raises(ValidationError):
        svc.update_ticket(org.id, tag, {'status': status}, None, staff)
    with pytest.raises(ValidationError):
        svc.quick_update(org.id, tag, status, None, staff)
    assert row_counts(org.id) == before
