import hmac
from functools import wraps

from flask import abort, current_app, request


def admin_key_required(view):
    """Operator endpoints: require the shared key in the X-Admin-Key header."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_KEY")
        supplied = request.headers.get("X-Admin-Key")
        if not supplied:
            abort(401)
        if not expected or not hmac.compare_digest(supplied, expected):
            abort(403)
        return view(*args, **kwargs)
    return wrapped
