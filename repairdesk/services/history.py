"""History derivation: which audit entries does a proposed ticket change imply?

Pure computation over plain values; no store access, no timestamps or ids (the
lifecycle manager stamps those at commit time). Rules fire in a fixed order:

1. no previous state      -> Created (status/field rules skipped)
2. status differs         -> StatusChanged, old and new values verbatim
3. compared fields differ -> one DataEdited listing every changed field
4. non-empty note         -> NoteAdded, plus the note to append

An empty entry list means "no changes"; deciding to skip the write is up to the caller.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple
from repairdesk.models.history import HistoryEntry

# (attribute, label) pairs; order is part of the DataEdited details format
COMPARED_FIELDS: List[Tuple[str, str]] = [
    ('client_name', 'Client name'),
    ('client_phone', 'Client phone'),
    ('client_email', 'Client email'),
    ('device_name', 'Device name'),
    ('device_model', 'Device model'),
    ('serial_number', 'Serial number'),
    ('reported_fault', 'Reported fault'),
    ('assigned_to_name', 'Assigned to'),
    ('next_service_date', 'Next service date'),
    ('client_id', 'Client'),
    ('contact_id', 'Contact'),
]

# Record links render as '#<id>' so relinking between look-alike clients stays visible
LINK_FIELDS = frozenset({'client_id', 'contact_id'})


@dataclass(frozen=True)
class HistoryDraft:
    type: str
    details: str
    user: str


@dataclass(frozen=True)
class NoteDraft:
    text: str
    user: str


@dataclass
class Derivation:
    entries: List[HistoryDraft] = field(default_factory=list)
    note: Optional[NoteDraft] = None
    changed_fields: Dict[str, Tuple[str, str]] = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return not self.entries

    @property
    def types(self) -> List[str]:
        return [e.type for e in self.entries]


def _get(source: Any, key: str):
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def display_value(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _display(key: str, value: Any) -> str:
    if key in LINK_FIELDS and value is not None:
        return f"#{value}"
    return display_value(value)


def _created_details(proposed: Any) -> str:
    device = display_value(_get(proposed, 'device_name'))
    client = display_value(_get(proposed, 'client_name'))
    if client:
        return f'Received device "{device}" from client "{client}".'
    return f'Received device "{device}".'


def derive_history(previous: Any, proposed: Mapping[str, Any], note_text: Optional[str], user: str) -> Derivation:
    """Compute history drafts for `proposed` relative to `previous` (None for a new ticket).

    Only keys present in `proposed` are compared, so partial updates never
    report untouched fields as edited.
    """
    result = Derivation()
    if previous is None:
        result.entries.append(HistoryDraft(HistoryEntry.TYPE_CREATED, _created_details(proposed), user))
    else:
        if 'status' in proposed and proposed['status'] is not None:
            old_status = _get(previous, 'status')
            new_status = proposed['status']
            if old_status != new_status:
                result.entries.append(HistoryDraft(
                    HistoryEntry.TYPE_STATUS_CHANGED,
                    f'Status changed from "{old_status}" to "{new_status}".',
                    user,
                ))
        parts = []
        for key, label in COMPARED_FIELDS:
            if key not in proposed:
                continue
            old = _display(key, _get(previous, key))
            new = _display(key, proposed[key])
            if old != new:
                result.changed_fields[key] = (old, new)
                parts.append(f"'{label}' changed from \"{old}\" to \"{new}\"")
        if parts:
            result.entries.append(HistoryDraft(HistoryEntry.TYPE_DATA_EDITED, ', '.join(parts), user))

    text = (note_text or '').strip()
    if text:
        result.note = NoteDraft(text, user)
        result.entries.append(HistoryDraft(HistoryEntry.TYPE_NOTE_ADDED, f'Added note: "{text}"', user))
    return result


__all__ = ['COMPARED_FIELDS', 'LINK_FIELDS', 'HistoryDraft', 'NoteDraft', 'Derivation', 'derive_history', 'display_value']
