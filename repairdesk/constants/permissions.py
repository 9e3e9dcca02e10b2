"""Central definitions of capability flags and role presets.
Extend cautiously; never rename flags silently, stored user records reference them by name.
"""
from __future__ import annotations
from typing import Dict, List

CAN_SCAN = 'canScan'
CAN_VIEW_SERVICE_LIST = 'canViewServiceList'
CAN_VIEW_CLIENTS = 'canViewClients'
CAN_VIEW_SCHEDULED = 'canViewScheduledServices'
CAN_VIEW_HISTORY = 'canViewHistory'
CAN_VIEW_SETTINGS = 'canViewSettings'
CAN_MANAGE_USERS = 'canManageUsers'

# Ordered as shown in the user settings screen
ALL_PERMISSION_FLAGS: List[str] = [
    CAN_SCAN,
    CAN_VIEW_SERVICE_LIST,
    CAN_VIEW_CLIENTS,
    CAN_VIEW_SCHEDULED,
    CAN_VIEW_HISTORY,
    CAN_VIEW_SETTINGS,
    CAN_MANAGE_USERS,
]

# Super-admin flag: implies every other flag
SUPER_ADMIN_FLAG = CAN_MANAGE_USERS

ROLE_PRESETS: Dict[str, List[str]] = {
    'Administrator': ['*'],
    'Technician': [CAN_SCAN, CAN_VIEW_SERVICE_LIST, CAN_VIEW_SCHEDULED, CAN_VIEW_HISTORY],
    'Office': [CAN_VIEW_SERVICE_LIST, CAN_VIEW_CLIENTS, CAN_VIEW_SCHEDULED, CAN_VIEW_HISTORY],
}
