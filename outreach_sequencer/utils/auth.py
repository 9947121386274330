from functools import wraps

from flask import current_app
from flask_jwt_extended import verify_jwt_in_request


def operator_required(fn):
    """Require a bearer JWT from the external auth provider when AUTH_REQUIRED is set."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if current_app.config.get('AUTH_REQUIRED', False):
            verify_jwt_in_request()
        return fn(*args, **kwargs)
    return wrapper
