import httpx
import pytest
from repairdesk.constants.permissions import (
    CAN_SCAN, CAN_VIEW_SERVICE_LIST, CAN_VIEW_HISTORY, CAN_VIEW_SCHEDULED,
)
from tests.test_utils_seed import ensure_org, ensure_user, flags, unique
from tests.test_lifecycle_helpers import jwt_headers, create_ticket_and_assert, move_status_and_assert, history_types

STAFF = flags(CAN_SCAN, CAN_VIEW_SERVICE_LIST, CAN_VIEW_HISTORY, CAN_VIEW_SCHEDULED)


@pytest.fixture()
def headers(app_context):
    uid = ensure_user(org_id=ensure_org().id, permissions=STAFF)
    return jwt_headers(uid)


def test_scan_create_then_scan_again(client, headers):
    tag = unique('NFC')
    r = client.post('/service/scan', json={'id': tag}, headers=headers)
    assert r.status_code == 200
    body = r.get_json()
    assert body['found'] is False
    assert body['draft']['id'] == tag and body['draft']['status'] == 'Received'
    assert body['draft']['date_received'].endswith('Z')

    created = create_ticket_and_assert(client, headers, {'id': tag, 'device_name': 'Laptop X', 'note': "won't boot"})
    assert [n['text'] for n in created['service_notes']] == ["won't boot"]
    assert created['version'] == 1

    r = client.post('/service/scan', json={'id': tag}, headers={**headers, 'X-Scan-Session': 'bench-1'})
    assert r.get_json()['found'] is True
    assert r.get_json()['ticket']['device_name'] == 'Laptop X'
    assert history_types(client, headers, tag) == ['Created', 'NoteAdded']


def test_status_moves_and_unchanged_save(client, headers):
    tag = unique('T')
    create_ticket_and_assert(client, headers, {'id': tag, 'device_name': 'Phone'})
    body = move_status_and_assert(client, headers, tag, 'Repairing')
    assert body['changed'] is True
    assert [h['type'] for h in body['history']] == ['StatusChanged']
    assert body['history'][0]['service_item_id'] == tag

    r = client.put(f'/service/tickets/{tag}', json={'device_name': 'Phone', 'status': 'Repairing'}, headers=headers)
    assert r.status_code == 200
    assert r.get_json()['changed'] is False
    assert r.get_json()['history'] == []
    assert r.get_json()['ticket']['version'] == 2
    move_status_and_assert(client, headers, tag, 'Broken', expected_code=400)


def test_conflicts(client, headers):
    tag = unique('T')
    create_ticket_and_assert(client, headers, {'id': tag, 'device_name': 'Phone'})
    r = client.post('/service/tickets', json={'id': tag, 'device_name': 'Other'}, headers=headers)
    assert r.status_code == 409
    assert r.get_json()['error']['code'] == 'already-exists'

    ok = client.put(f'/service/tickets/{tag}', json={'device_model': 'A1', 'version': 1}, headers=headers)
    assert ok.status_code == 200 and ok.get_json()['ticket']['version'] == 2
    stale = client.put(f'/service/tickets/{tag}', json={'device_model': 'B2', 'version': 1}, headers=headers)
    assert stale.status_code == 409
    assert stale.get_json()['error']['code'] == 'version-conflict'


def test_ticket_validators_and_head(client, headers):
    tag = unique('T')
    create_ticket_and_assert(client, headers, {'id': tag, 'device_name': 'Phone'})
    first = client.get(f'/service/tickets/{tag}', headers=headers)
    etag = first.headers.get('ETag')
    assert first.status_code == 200 and etag
    assert first.headers.get('Last-Modified')
    again = client.get(f'/service/tickets/{tag}', headers={**headers, 'If-None-Match': etag})
    assert again.status_code == 304
    head = client.head(f'/service/tickets/{tag}', headers=headers)
    assert head.status_code == 200
    assert head.data == b''
    assert head.headers.get('ETag') == etag

    client.post(f'/service/tickets/{tag}/notes', json={'text': 'checked battery'}, headers=headers)
    changed = client.get(f'/service/tickets/{tag}', headers={**headers, 'If-None-Match': etag})
    assert changed.status_code == 200
    assert changed.get_json()['service_notes'][0]['text'] == 'checked battery'


def test_malformed_note_and_status_are_client_errors(client, headers):
    tag = unique('T')
    create_ticket_and_assert(client, headers, {'id': tag, 'device_name': 'Phone'})
    bad_requests = [
        client.post('/service/tickets', json={'id': unique('T'), 'device_name': 'Phone', 'note': 123}, headers=headers),
        client.post('/service/tickets', json={'id': unique('T'), 'device_name': 'Phone', 'status': ['Received']},
                    headers=headers),
        client.put(f'/service/tickets/{tag}', json={'status': {'to': 'Repairing'}}, headers=headers),
        client.post(f'/service/tickets/{tag}/status', json={'status': ['Repairing']}, headers=headers),
        client.post(f'/service/tickets/{tag}/notes', json={'text': ['checked']}, headers=headers),
    ]
    for r in bad_requests:
        assert r.status_code == 400, r.get_json()
        assert r.get_json()['error']['code'] == 'invalid-argument'
    assert history_types(client, headers, tag) == ['Created']


def test_list_filters_and_sort(client, headers):
    for tag, device, status in (('L-1', 'Bravo', 'Received'), ('L-2', 'Alpha', 'Repairing'), ('L-3', 'Charlie', 'Received')):
        create_ticket_and_assert(client, headers, {'id': tag, 'device_name': device, 'status': status}, expected_status=status)
    r = client.get('/service/tickets?sort=status,-device_name', headers=headers)
    assert [t['id'] for t in r.get_json()['data']] == ['L-3', 'L-1', 'L-2']
    assert 'service_notes' not in r.get_json()['data'][0]
    r = client.get('/service/tickets?status=Received&limit=1', headers=headers)
    assert r.get_json()['pagination'] == {'total': 2, 'limit': 1, 'offset': 0, 'returned': 1}
    assert client.get('/service/tickets?sort=bogus', headers=headers).status_code == 400
    assert client.get('/service/tickets?client_id=abc', headers=headers).status_code == 400
    first = client.get('/service/tickets', headers=headers)
    assert client.get('/service/tickets', headers={**headers, 'If-None-Match': first.headers['ETag']}).status_code == 304


def test_scheduled_range(client, headers):
    create_ticket_and_assert(client, headers, {'id': unique('S'), 'device_name': 'Boiler', 'next_service_date': '2027-03-10'})
    create_ticket_and_assert(client, headers, {'id': unique('S'), 'device_name': 'Pump', 'next_service_date': '2027-05-10'})
    r = client.get('/service/scheduled?from=2027-03-01&to=2027-03-31', headers=headers)
    assert [t['device_name'] for t in r.get_json()['data']] == ['Boiler']
    assert client.get('/service/scheduled?from=2027-04-01&to=2027-03-01', headers=headers).status_code == 400
    assert client.get('/service/scheduled?from=March', headers=headers).status_code == 400


def test_history_feed_endpoint(client, headers):
    for i in range(3):
        create_ticket_and_assert(client, headers, {'id': f'H-{i}', 'device_name': f'Dev {i}', 'note': 'n'})
    r = client.get('/history?limit=4', headers=headers)
    assert r.status_code == 200
    body = r.get_json()
    assert body['pagination']['total'] == 6
    assert [h['service_item_id'] for h in body['data']][:2] == ['H-2', 'H-2']
    r = client.get('/history?type=NoteAdded', headers=headers)
    assert {h['type'] for h in r.get_json()['data']} == {'NoteAdded'}
    assert client.get('/history?type=Exploded', headers=headers).status_code == 400


def test_delete_requires_admin(client, headers, app_context):
    tag = unique('T')
    create_ticket_and_assert(client, headers, {'id': tag, 'device_name': 'Phone'})
    assert client.delete(f'/service/tickets/{tag}', headers=headers).status_code == 403


def test_tips_unavailable_without_key(client, headers):
    tag = unique('T')
    create_ticket_and_assert(client, headers, {'id': tag, 'device_name': 'Phone'})
    r = client.get(f'/service/tickets/{tag}/tips', headers=headers)
    assert r.status_code == 200
    assert r.get_json() == {'available': False, 'text': None, 'message': 'Tips unavailable'}


def test_tips_via_model_endpoint(client, headers, app_instance, monkeypatch):
    seen = {}

    def handler(request):
        seen['url'] = str(request.url)
        seen['key'] = request.url.params.get('key')
        return httpx.Response(200, json={'candidates': [{'content': {'parts': [{'text': ' 1. Check PSU \n'}]}}]})

    monkeypatch.setitem(app_instance.config, 'TIPS_API_KEY', 'test-key')
    monkeypatch.setitem(app_instance.config, 'TIPS_TRANSPORT', httpx.MockTransport(handler))
    tag = unique('T')
    create_ticket_and_assert(client, headers, {'id': tag, 'device_name': 'PC', 'reported_fault': 'no power'})
    r = client.get(f'/service/tickets/{tag}/tips', headers=headers)
    assert r.get_json() == {'available': True, 'text': '1. Check PSU', 'message': None}
    assert seen['key'] == 'test-key'
    assert ':generateContent' in seen['url']

    monkeypatch.setitem(app_instance.config, 'TIPS_TRANSPORT', httpx.MockTransport(lambda req: httpx.Response(503)))
    assert client.get(f'/service/tickets/{tag}/tips', headers=headers).get_json()['available'] is False
    monkeypatch.setitem(app_instance.config, 'TIPS_TRANSPORT', httpx.MockTransport(lambda req: httpx.Response(200, json={})))
    assert client.get(f'/service/tickets/{tag}/tips', headers=headers).get_json()['available'] is False
