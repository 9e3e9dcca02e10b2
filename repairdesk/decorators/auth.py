from functools import wraps
from flask import g
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from repairdesk.errors import AuthenticationError, NotFoundError
from repairdesk.services.policy import load_actor, assert_permission


def current_actor():
    """Re-read the caller's stored profile; token claims never carry authority."""
    verify_jwt_in_request()
    try:
        actor = load_actor(get_jwt_identity())
    except NotFoundError:
        raise AuthenticationError('account no longer exists')
    g.actor = actor
    return actor


def require_permissions(*flags: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            actor = current_actor()
            if flags:
                assert_permission(actor, *flags)
            return fn(*args, **kwargs)
        return wrapper
    return outer
