"""
Callable (RPC-style) boundary.

``POST <prefix>/<operation>`` with ``{"data": {...}}``. Answers with
``{"result": ...}`` or ``{"error": {"status", "message", "details"}}``,
where ``status`` is the canonical RPC status for the error kind and
``details.code`` is the same machine-readable code the JSON routes use.
"""

from flask import Blueprint, current_app, jsonify, request

from .errors import ChallengeMismatch, ChallengeMissing, Internal, InvalidRequest, PasskeyError
from .routes import call_context

RPC_STATUS = {
    400: 'INVALID_ARGUMENT',
    401: 'UNAUTHENTICATED',
    403: 'PERMISSION_DENIED',
    404: 'NOT_FOUND',
    405: 'UNIMPLEMENTED',
    500: 'INTERNAL',
}


def rpc_status(error):
    if isinstance(error, (ChallengeMissing, ChallengeMismatch)):
        return 'FAILED_PRECONDITION'
    return RPC_STATUS.get(error.status, 'INTERNAL')


def rpc_error(error):
    body = {
        'error': {
            'status': rpc_status(error),
            'message': error.message,
            'details': {'code': error.code},
        }
    }
    return jsonify(body), error.status


def create_rpc_blueprint(passkey):
    blueprint = Blueprint('passkey_rpc', __name__)

    operations = {
        'beginRegistration': lambda ctx, data: passkey.service.begin_registration(ctx, data),
        'finishRegistration': lambda ctx, data: passkey.service.finish_registration(ctx, data),
        'beginAuthentication': lambda ctx, data: passkey.service.begin_authentication(ctx, data),
        'finishAuthentication': lambda ctx, data: passkey.service.finish_authentication(ctx, data),
    }

    @blueprint.route('/<name>', methods=['POST'])
    def call(name):
        operation = operations.get(name)
        if operation is None:
            body = {'error': {'status': 'NOT_FOUND', 'message': f"Unknown operation {name!r}.",
                              'details': {'code': 'notFound'}}}
            return jsonify(body), 404

        body = request.get_json(silent=True)
        data = body.get('data', {}) if isinstance(body, dict) else None
        if not isinstance(data, dict):
            return rpc_error(InvalidRequest('Callable requests must carry a "data" object.'))

        try:
            result = operation(call_context(passkey), data)
        except PasskeyError as e:
            current_app.logger.info(f"Passkey call {name} failed: {e.code}")
            return rpc_error(e)
        except Exception:
            current_app.logger.exception(f"Unhandled error in passkey call {name}")
            return rpc_error(Internal())

        return jsonify({'result': result})

    return blueprint
