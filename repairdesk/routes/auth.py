from flask import Blueprint, request, current_app
from flask_jwt_extended import create_access_token, jwt_required, get_jwt
from repairdesk.constants.permissions import CAN_VIEW_SETTINGS
from repairdesk.decorators.auth import current_actor
from repairdesk.services.users import authenticate, revoke_token

auth_bp = Blueprint('auth', __name__)


@auth_bp.post('/login')
def login():
    data = request.json or {}
    cred = authenticate(data.get('email'), data.get('password'))
    # Identity only; permissions are re-read from the profile on every request
    token = create_access_token(identity=cred.uid)
    return {'access_token': token}


@auth_bp.post('/logout')
@jwt_required()
def logout():
    claims = get_jwt()
    revoke_token(claims['jti'], claims.get('sub'))
    return {'revoked': True}


@auth_bp.get('/me')
def me():
    actor = current_actor()
    body = {
        'uid': actor.uid,
        'email': actor.email,
        'organization_id': actor.organization_id,
        'permissions': actor.permissions.to_dict(),
    }
    if actor.can(CAN_VIEW_SETTINGS):
        body['settings'] = {
            'history_feed_limit': current_app.config['HISTORY_FEED_LIMIT'],
            'tips_enabled': bool(current_app.config.get('TIPS_API_KEY')),
        }
    return body
