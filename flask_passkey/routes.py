"""
JSON HTTP boundary.

Success bodies look like ``{"ok": true, ...}``; failures use the error
envelope ``{"ok": false, "code": ..., "message": ...}`` with the status
that belongs to the error kind.
"""

from flask import Blueprint, current_app, jsonify, request

from .errors import Internal, MethodNotAllowed, PasskeyError
from .service import CallContext


def call_context(passkey):
    """Collect what the passkey protocol needs to know about the current request."""
    return CallContext(
        authorization=request.headers.get('Authorization'),
        origin=request.headers.get('Origin'),
        host=request.headers.get('X-Forwarded-Host') or request.host,
        user_agent=request.headers.get('User-Agent'),
        session_user=passkey.current_user(),
    )


def json_payload():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def error_response(error):
    return jsonify(error.to_dict()), error.status


def method_not_allowed():
    return error_response(MethodNotAllowed())


def respond(operation, *args):
    try:
        result = operation(*args)
    except PasskeyError as e:
        current_app.logger.info(f"Passkey request to {request.path} failed: {e.code}")
        return error_response(e)
    except Exception:
        current_app.logger.exception(f"Unhandled error in passkey request to {request.path}")
        return error_response(Internal())
    return jsonify({'ok': True, **result})


def create_blueprint(passkey):
    """Blueprint exposing the passkey ceremonies over plain JSON."""
    blueprint = Blueprint('passkey', __name__)

    # ==================== Registration ====================

    @blueprint.route('/passkey/register/options', methods=['GET'])
    def register_options():
        """Creation options for the signed-in caller."""
        payload = {'origin': request.args.get('origin'), 'rpId': request.args.get('rpId')}
        return respond(passkey.service.begin_registration, call_context(passkey), payload)

    @blueprint.route('/passkey/register/verify', methods=['POST'])
    def register_verify():
        """Verify the attestation and store the passkey."""
        return respond(passkey.service.finish_registration, call_context(passkey), json_payload())

    # ==================== Login ====================

    @blueprint.route('/passkey/login/options', methods=['GET'])
    def login_options():
        """Request options for the account behind ?email=."""
        payload = {
            'email': request.args.get('email'),
            'origin': request.args.get('origin'),
            'rpId': request.args.get('rpId'),
        }
        return respond(passkey.service.begin_authentication, call_context(passkey), payload)

    @blueprint.route('/passkey/login/verify', methods=['POST'])
    def login_verify():
        """Verify the assertion; answers with a login token."""
        def finish(ctx, payload):
            result = passkey.service.finish_authentication(ctx, payload)
            if current_app.config.get('PASSKEY_LOGIN_SESSION', False):
                passkey.login(result['userId'])
            return result

        return respond(finish, call_context(passkey), json_payload())

    # ==================== Passkey Management ====================

    @blueprint.route('/passkeys', methods=['GET'])
    def list_passkeys():
        """List the caller's registered passkeys."""
        return respond(passkey.service.list_passkeys, call_context(passkey))

    @blueprint.route('/passkeys/<credential_id>', methods=['DELETE'])
    def remove_passkey(credential_id):
        """Remove one of the caller's passkeys."""
        return respond(passkey.service.remove_passkey, call_context(passkey), credential_id)

    return blueprint
