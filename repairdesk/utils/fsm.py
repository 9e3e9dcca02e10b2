from __future__ import annotations
"""Status workflow helper for ticket lifecycles.

Unlike a strict transition graph, the repair workflow is a fixed ordered list of
states where every move between known states is permitted (a returned ticket can
be reopened). The helper validates membership and classifies direction so callers
can log reopen events.
Usage:
    from repairdesk.utils.fsm import StatusWorkflow
    REPAIR_FLOW = StatusWorkflow(['Received', 'Repairing', 'ReturnedToClient'])
    REPAIR_FLOW.assert_known(target_status)
    REPAIR_FLOW.is_regression('ReturnedToClient', 'Repairing')  # True

Raises ValidationError on unknown states.
"""
from typing import Iterable, Optional
from repairdesk.errors import ValidationError

class StatusWorkflow:
    def __init__(self, ordered: Iterable[str], field_name: str = 'status'):
        self.ordered = list(ordered)
        self.field_name = field_name
        self._rank = {s: i for i, s in enumerate(self.ordered)}

    @property
    def initial(self) -> str:
        return self.ordered[0]

    def assert_known(self, status: str) -> str:
        if not isinstance(status, str) or status not in self._rank:
            raise ValidationError(f"{self.field_name} invalid: {status!r} (allowed: {', '.join(self.ordered)})")
        return status

    def is_regression(self, current: Optional[str], target: str) -> bool:
        if current not in self._rank or target not in self._rank:
            return False
        return self._rank[target] < self._rank[current]

__all__ = ['StatusWorkflow']
