"""
Identity Provider
=================
Who the caller is (for registration) and the login token handed back
after a successful passkey authentication.

The bundled provider signs both kinds of token with itsdangerous, using
the app's SECRET_KEY and a distinct salt per token purpose.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .errors import Unauthenticated

ID_TOKEN_SALT = 'flask-passkey-id-token'
LOGIN_TOKEN_SALT = 'flask-passkey-login'


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: Optional[str] = None


class IdentityProvider(ABC):

    @abstractmethod
    def resolve_caller_principal(self, bearer):
        """Return the Principal for a bearer credential or raise Unauthenticated."""

    @abstractmethod
    def mint_session_token(self, user_id):
        """Issue a short-lived login token scoped to ``user_id``."""

    @abstractmethod
    def find_user_by_email(self, email):
        """Return the user dict for a lower-cased email, or None."""

    @abstractmethod
    def remember_email(self, user_id, email):
        """Record the principal's email so it can be used as a lookup key."""


class SignedTokenIdentityProvider(IdentityProvider):
    """Identity provider backed by a RecordStore user directory and signed tokens."""

    def __init__(self, storage, secret_key, id_token_max_age=3600, session_token_max_age=300):
        if not secret_key:
            raise RuntimeError('A SECRET_KEY is required to sign passkey tokens.')
        self.storage = storage
        self.id_token_max_age = int(id_token_max_age)
        self.session_token_max_age = int(session_token_max_age)
        self._id_tokens = URLSafeTimedSerializer(secret_key, salt=ID_TOKEN_SALT)
        self._login_tokens = URLSafeTimedSerializer(secret_key, salt=LOGIN_TOKEN_SALT)

    def issue_id_token(self, user_id, email=None):
        """Token the host app hands out after its own (password/email) sign-in."""
        return self._id_tokens.dumps({'uid': str(user_id), 'email': email})

    def resolve_caller_principal(self, bearer):
        if not bearer:
            raise Unauthenticated()
        try:
            payload = self._id_tokens.loads(bearer, max_age=self.id_token_max_age)
        except SignatureExpired:
            raise Unauthenticated('Your sign-in has expired, please sign in again.')
        except BadSignature:
            raise Unauthenticated('Your sign-in is no longer valid, please sign in again.')

        user_id = payload.get('uid') if isinstance(payload, dict) else None
        if not user_id:
            raise Unauthenticated('Your sign-in is no longer valid, please sign in again.')
        return Principal(user_id=str(user_id), email=payload.get('email'))

    def mint_session_token(self, user_id):
        return self._login_tokens.dumps({'uid': str(user_id), 'purpose': 'login'})

    def verify_session_token(self, token):
        """Return the user ID a login token was minted for, or None."""
        try:
            payload = self._login_tokens.loads(token, max_age=self.session_token_max_age)
        except BadSignature:
            return None
        if not isinstance(payload, dict) or payload.get('purpose') != 'login':
            return None
        return payload.get('uid')

    def find_user_by_email(self, email):
        return self.storage.get_user_by_email(email)

    def remember_email(self, user_id, email):
        if email:
            self.storage.upsert_user(user_id, email=email.strip().lower())
        else:
            self.storage.upsert_user(user_id)
