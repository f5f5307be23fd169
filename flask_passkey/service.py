"""
The boundary-agnostic passkey protocol.

Both the JSON HTTP routes and the callable RPC endpoint translate their
requests into a CallContext plus a payload dict and call into here, so
the ceremonies behave the same whichever door they came through.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .authentication import normalize_email
from .errors import InvalidCredentialId


@dataclass(frozen=True)
class CallContext:
    authorization: Optional[str] = None
    origin: Optional[str] = None
    host: Optional[str] = None
    user_agent: Optional[str] = None
    session_user: Optional[Dict[str, Any]] = None


class PasskeyService:

    def __init__(self, gate, registration, authentication, credentials):
        self.gate = gate
        self.registration = registration
        self.authentication = authentication
        self.credentials = credentials

    def _rp(self, ctx, payload):
        return self.gate.rp_context(
            origin=payload.get('origin') or ctx.origin,
            host=ctx.host,
            rp_id=payload.get('rpId'),
        )

    def _principal(self, ctx):
        return self.gate.require_principal(ctx.authorization, ctx.session_user)

    def begin_registration(self, ctx, payload=None):
        payload = payload or {}
        principal = self._principal(ctx)
        rp = self._rp(ctx, payload)
        return {'options': self.registration.begin(principal, rp)}

    def finish_registration(self, ctx, payload=None):
        payload = payload or {}
        principal = self._principal(ctx)
        rp = self._rp(ctx, payload)
        return self.registration.finish(principal, rp, payload.get('credential'), ctx.user_agent)

    def begin_authentication(self, ctx, payload=None):
        payload = payload or {}
        email = normalize_email(payload.get('email'))
        rp = self._rp(ctx, payload)
        return {'options': self.authentication.begin(email, rp)}

    def finish_authentication(self, ctx, payload=None):
        payload = payload or {}
        email = normalize_email(payload.get('email'))
        rp = self._rp(ctx, payload)
        result = self.authentication.finish(email, rp, payload.get('credential'))
        return {'token': result.token, 'userId': result.user_id}

    def list_passkeys(self, ctx):
        principal = self._principal(ctx)
        self._rp(ctx, {})
        records = self.credentials.list_for_user(principal.user_id)
        return {'passkeys': [record.to_public_dict() for record in records]}

    def remove_passkey(self, ctx, credential_id):
        principal = self._principal(ctx)
        self._rp(ctx, {})
        if not credential_id:
            raise InvalidCredentialId()
        self.credentials.delete(principal.user_id, credential_id)
        return {'removed': credential_id}
