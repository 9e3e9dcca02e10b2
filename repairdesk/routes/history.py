from flask import Blueprint, request, g, current_app
from repairdesk.constants.permissions import CAN_VIEW_HISTORY
from repairdesk.decorators.auth import require_permissions
from repairdesk.services import tickets as svc
from repairdesk.utils.listing import cached_list, request_pagination

history_bp = Blueprint('history', __name__)


@history_bp.route('', methods=['GET', 'HEAD'])
@require_permissions(CAN_VIEW_HISTORY)
def organization_feed():
    limit, offset = request_pagination(current_app.config['HISTORY_FEED_LIMIT'])
    rows, total = svc.organization_history(g.actor, limit, offset, request.args.get('type'))
    return cached_list([svc.history_json(h) for h in rows], total, limit, offset, svc.latest_change(rows))
