"""Transaction boundary helpers.

Every mutating service call runs its writes inside `store_call` and commits once;
SQLAlchemy errors are rolled back and re-raised as domain errors so callers never
see a half-applied unit of work.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError, ProgrammingError
from repairdesk.errors import ConflictSignal, ConfigurationError, StoreError

logger = logging.getLogger(__name__)

# Driver messages that mean "schema/index prerequisite missing" rather than a transient failure
_MISSING_SCHEMA_MARKERS = ('no such table', 'no such column', 'does not exist', 'undefined table', 'undefinedcolumn')


def translate_store_error(exc: SQLAlchemyError, action: str):
    message = str(getattr(exc, 'orig', exc) or exc).lower()
    if isinstance(exc, (OperationalError, ProgrammingError)) and any(m in message for m in _MISSING_SCHEMA_MARKERS):
        return ConfigurationError(f'{action} failed: database schema is missing or outdated; run the migrations')
    return StoreError(f'{action} failed')


@contextmanager
def store_call(session, action: str, conflict_message: Optional[str] = None):
    try:
        yield session
    except IntegrityError as exc:
        session.rollback()
        logger.warning('%s rejected by store constraint: %s', action, exc.orig)
        raise ConflictSignal(conflict_message or f'{action} conflicts with an existing record') from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error('%s failed: %s', action, exc)
        raise translate_store_error(exc, action) from exc
