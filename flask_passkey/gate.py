"""
Access Gate: who is calling, and from which origin.
"""

import re

from .errors import Unauthenticated
from .identity import Principal
from .origin import resolve_rp_context

_BEARER = re.compile(r'^Bearer\s+(.+)$', re.IGNORECASE)


class AccessGate:

    def __init__(self, identity, policy, default_rp_id=None):
        self.identity = identity
        self.policy = policy
        self.default_rp_id = default_rp_id

    @staticmethod
    def bearer_from_header(authorization):
        match = _BEARER.match((authorization or '').strip())
        return match.group(1).strip() if match else None

    def require_principal(self, authorization=None, session_user=None):
        """
        Authenticate the caller.

        A bearer token always wins; an already signed-in Flask session user
        is accepted when no Authorization header was sent.
        """
        bearer = self.bearer_from_header(authorization)
        if bearer:
            return self.identity.resolve_caller_principal(bearer)
        if authorization:
            raise Unauthenticated()
        if session_user and session_user.get('id') is not None:
            return Principal(user_id=str(session_user['id']), email=session_user.get('email'))
        raise Unauthenticated()

    def rp_context(self, origin=None, host=None, rp_id=None):
        """Resolve the RP context and hold the origin to the allow-list."""
        rp = resolve_rp_context(
            origin=origin,
            host=host,
            rp_id=rp_id,
            default_rp_id=self.default_rp_id,
            platform_prefixes=self.policy.allowed_prefixes,
        )
        self.policy.check(rp.origin)
        return rp
