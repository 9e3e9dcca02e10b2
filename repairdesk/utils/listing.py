from __future__ import annotations
"""List/single response helpers with cache validators (ETag, Last-Modified)."""
from typing import Iterable, Optional, Tuple
from flask import request, make_response, jsonify
from repairdesk.config.pagination import normalize_pagination
from repairdesk.errors import ValidationError
from repairdesk.utils.clock import ensure_utc, isoformat
import hashlib
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime, format_datetime

TIMESTAMP_TOLERANCE = timedelta(seconds=1)

def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds (microseconds removed)."""
    return ensure_utc(dt).replace(microsecond=0)

def request_pagination(default_limit: Optional[int] = None) -> Tuple[int, int]:
    try:
        return normalize_pagination(request.args.get('limit'), request.args.get('offset'), default_limit)
    except ValueError as e:
        raise ValidationError(str(e))

def apply_pagination(q, default_limit: Optional[int] = None):
    limit, offset = request_pagination(default_limit)
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset

def compute_etag(ids: Iterable, total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]

def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }

def _http_date(dt: datetime) -> str:
    """Return RFC1123 HTTP-date string in GMT."""
    return format_datetime(dt, usegmt=True)

def _set_validators(resp, etag: str, latest_ts: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest_ts:
        latest_c = canonicalize_timestamp(latest_ts)
        resp.headers['Last-Modified'] = _http_date(latest_c)
        resp.headers['X-Last-Modified-ISO'] = isoformat(latest_c)
    return resp

def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None, id_key: str = 'id'):
    ids = [r.get(id_key) for r in rows]
    latest_iso = isoformat(canonicalize_timestamp(latest_ts)) if latest_ts else ''
    etag = compute_etag(ids, total, limit, offset, latest_iso)
    resp = make_response(build_list_payload(rows, total, limit, offset))
    return _set_validators(resp, etag, latest_ts), etag

def make_cached_item_response(body: dict, key, latest_ts: Optional[datetime]):
    """Single-resource response honouring conditional headers and HEAD."""
    latest_iso = isoformat(canonicalize_timestamp(latest_ts)) if latest_ts else ''
    etag = compute_etag([key], 1, 1, 0, latest_iso)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        cond.set_data(b'')
        return cond
    resp = _set_validators(make_response(jsonify(body)), etag, latest_ts)
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp

def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    # Try ISO 8601 first
    try:
        return ensure_utc(datetime.fromisoformat(header_val.replace('Z', '+00:00')))
    except ValueError:
        pass
    # Try HTTP-date (RFC 1123)
    try:
        return ensure_utc(parsedate_to_datetime(header_val))
    except (TypeError, ValueError):
        return None

def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Evaluate conditional request headers.

    Precedence: If-None-Match over If-Modified-Since (per RFC 9110 semantics).
    Returns a 304 response object if conditions satisfied, else None.
    """
    inm = request.headers.get('If-None-Match')
    if inm and inm.strip('"') == etag_value:
        return _set_validators(make_response('', 304), etag_value, latest_ts)
    ims_raw = request.headers.get('If-Modified-Since')
    if ims_raw and latest_ts:
        ims_dt = _parse_if_modified_since(ims_raw)
        if ims_dt and canonicalize_timestamp(latest_ts) <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
            return _set_validators(make_response('', 304), etag_value, latest_ts)
    return None

def cached_list(rows_json: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime], id_key: str = 'id'):
    """Full list flow: build response, short-circuit with 304, strip body on HEAD."""
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts, id_key=id_key)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        cond.set_data(b'')
        return cond
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp
