"""
Flask-Passkey Errors
====================
Every failure a ceremony step can end in, with a stable machine-readable
code and the HTTP status the JSON boundary answers with.
"""


class PasskeyError(Exception):
    """Base class for all passkey ceremony failures."""

    code = 'internal'
    status = 500
    default_message = 'Internal server error.'

    def __init__(self, message=None, status=None):
        self.message = message or self.default_message
        if status is not None:
            self.status = status
        super().__init__(self.message)

    def with_status(self, status):
        """Return the same error answered with a different HTTP status."""
        return type(self)(self.message, status=status)

    def to_dict(self):
        return {'ok': False, 'code': self.code, 'message': self.message}


class Unauthenticated(PasskeyError):
    code = 'unauthenticated'
    status = 401
    default_message = 'You must be signed in to do this.'


class OriginUnresolvable(PasskeyError):
    code = 'originUnresolvable'
    status = 400
    default_message = 'The request origin could not be determined.'


class OriginNotAllowed(PasskeyError):
    code = 'originNotAllowed'
    status = 403
    default_message = 'The request origin is not allowed.'


class MissingEmail(PasskeyError):
    code = 'missingEmail'
    status = 400
    default_message = 'An email address is required.'


class InvalidRequest(PasskeyError):
    code = 'invalidRequest'
    status = 400
    default_message = 'The passkey credential payload is missing.'


class InvalidCredentialId(PasskeyError):
    code = 'invalidCredentialId'
    status = 400
    default_message = 'The credential ID is missing or malformed.'


class ChallengeMissing(PasskeyError):
    code = 'challengeMissing'
    status = 400
    default_message = 'No challenge is in progress, please start again.'


class ChallengeMismatch(PasskeyError):
    code = 'challengeMismatch'
    status = 400
    default_message = 'The challenge is not valid for this ceremony, please start again.'


class UserNotFound(PasskeyError):
    code = 'userNotFound'
    status = 404
    default_message = 'No matching user was found.'


class CredentialNotFound(PasskeyError):
    code = 'credentialNotFound'
    status = 404
    default_message = 'No passkey is registered for this user.'


class ExpectedOriginMismatch(PasskeyError):
    code = 'expectedOriginMismatch'
    status = 400
    default_message = 'The response was produced for a different origin.'


class ExpectedRPIDMismatch(PasskeyError):
    code = 'expectedRPIDMismatch'
    status = 400
    default_message = 'The response was produced for a different relying party.'


class UserVerificationFailed(PasskeyError):
    code = 'userVerificationFailed'
    status = 400
    default_message = 'Passkey verification failed.'


class VerificationFailed(PasskeyError):
    code = 'verificationFailed'
    status = 400
    default_message = 'Passkey verification failed.'


class CounterRegression(PasskeyError):
    code = 'counterRegression'
    status = 401
    default_message = 'The authenticator signature counter went backwards.'


class MethodNotAllowed(PasskeyError):
    code = 'methodNotAllowed'
    status = 405
    default_message = 'This method is not supported.'


class Internal(PasskeyError):
    pass


ERROR_KINDS = {
    cls.code: cls for cls in (
        Unauthenticated,
        OriginUnresolvable,
        OriginNotAllowed,
        MissingEmail,
        InvalidRequest,
        InvalidCredentialId,
        ChallengeMissing,
        ChallengeMismatch,
        UserNotFound,
        CredentialNotFound,
        ExpectedOriginMismatch,
        ExpectedRPIDMismatch,
        UserVerificationFailed,
        VerificationFailed,
        CounterRegression,
        MethodNotAllowed,
        Internal,
    )
}
