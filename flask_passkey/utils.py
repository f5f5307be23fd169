from functools import wraps
from flask import current_app, g, jsonify, request

from .errors import PasskeyError, Unauthenticated


def _extension():
    return current_app.extensions.get('passkey')


def _resolve_principal():
    passkey = _extension()
    if not passkey:
        raise Unauthenticated()
    return passkey.gate.require_principal(
        request.headers.get('Authorization'),
        passkey.current_user(),
    )


def login_required(f):
    """Decorator to require a signed-in caller for a view.

    Accepts either an ``Authorization: Bearer <id token>`` header or a live
    Flask session. Unauthenticated callers get the JSON error envelope.

    Example:
        @app.route('/profile')
        @login_required
        def profile():
            return f'Hello {g.principal.user_id}'
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            g.principal = _resolve_principal()
        except PasskeyError as e:
            return jsonify(e.to_dict()), e.status
        return f(*args, **kwargs)
    return decorated_function


def get_current_user():
    """Get the user behind the current request.

    Returns:
        dict or None: The user if the caller is authenticated, None otherwise
    """
    try:
        principal = _resolve_principal()
    except PasskeyError:
        return None
    return _extension().storage.get_user_by_id(principal.user_id)


def is_authenticated():
    """Check if the current caller is authenticated.

    Returns:
        bool: True if authenticated, False otherwise
    """
    try:
        _resolve_principal()
    except PasskeyError:
        return False
    return True


def logout():
    """Clear the Flask login session, if any."""
    passkey = _extension()
    if passkey:
        passkey.logout()
