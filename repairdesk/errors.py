"""Domain error taxonomy shared by services and routes.

Services raise these; the app-level error handler renders them using the
standard JSON error shape: {"error": {"status", "title", "detail", "code"}}.

- ValidationError / AuthorizationError / PreconditionError are raised before
  any store interaction.
- StoreError / ConfigurationError are only raised after a store call failed;
  the surrounding transaction has been rolled back by then.
"""
from __future__ import annotations
from typing import Optional

__all__ = [
    'RepairDeskError', 'AuthenticationError', 'AuthorizationError', 'NotFoundError', 'ValidationError',
    'PreconditionError', 'ConflictSignal', 'ScanInProgress', 'VersionConflict',
    'StoreError', 'ConfigurationError',
]


class RepairDeskError(Exception):
    status_code = 500
    title = 'Internal Server Error'
    code = 'internal'

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.title
        super().__init__(self.detail)

    def to_dict(self):
        return {
            'error': {
                'status': self.status_code,
                'title': self.title,
                'detail': self.detail,
                'code': self.code,
            }
        }


class AuthorizationError(RepairDeskError):
    status_code = 403
    title = 'Forbidden'
    code = 'permission-denied'

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or 'Insufficient permission')


class NotFoundError(RepairDeskError):
    status_code = 404
    title = 'Not Found'
    code = 'not-found'

    def __init__(self, entity: str, key=None):
        self.entity = entity
        self.key = key
        detail = f'{entity} not found' if key is None else f'{entity} {key} not found'
        super().__init__(detail)


class ValidationError(RepairDeskError):
    status_code = 400
    title = 'Bad Request'
    code = 'invalid-argument'


class PreconditionError(RepairDeskError):
    status_code = 400
    title = 'Bad Request'
    code = 'failed-precondition'


class ConflictSignal(RepairDeskError):
    """Soft conflict: the caller must block this operation and ask the user to disambiguate."""
    status_code = 409
    title = 'Conflict'
    code = 'already-exists'


class ScanInProgress(ConflictSignal):
    code = 'scan-in-progress'

    def __init__(self, scan_session: str):
        self.scan_session = scan_session
        super().__init__('A scan is already being resolved for this session')


class VersionConflict(ConflictSignal):
    code = 'version-conflict'

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f'Ticket was modified concurrently (expected version {expected}, found {actual})')


class StoreError(RepairDeskError):
    status_code = 503
    title = 'Service Unavailable'
    code = 'store-unavailable'

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or 'Save failed')


class ConfigurationError(RepairDeskError):
    status_code = 500
    title = 'Configuration Error'
    code = 'backend-misconfigured'


class AuthenticationError(RepairDeskError):
    status_code = 401
    title = 'Unauthorized'
    code = 'unauthenticated'
