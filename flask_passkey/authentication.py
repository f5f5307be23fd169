"""
Passkey login: look the account up by email, issue a challenge, verify
the assertion, advance the signature counter and mint a login token.
"""

import json
import logging
from dataclasses import dataclass

from webauthn import generate_authentication_options, options_to_json
from webauthn.helpers.structs import UserVerificationRequirement

from .challenge import ChallengePurpose, challenge_bytes
from .credentials import is_credential_id
from .errors import (
    CounterRegression,
    CredentialNotFound,
    InvalidCredentialId,
    InvalidRequest,
    MissingEmail,
    PasskeyError,
    UserNotFound,
    UserVerificationFailed,
)
from .verification import categorize_verification_error

logger = logging.getLogger(__name__)

COUNTER_POLICIES = ('reject', 'clamp')


def normalize_email(raw):
    email = (raw or '').strip().lower() if isinstance(raw, str) else ''
    if not email:
        raise MissingEmail()
    return email


@dataclass(frozen=True)
class LoginResult:
    user_id: str
    token: str
    counter: int
    clone_warning: bool = False


class AuthenticationFlow:
    """Idle -> UserResolved -> ChallengeIssued -> Verified -> CounterUpdated -> TokenIssued."""

    def __init__(self, challenges, credentials, identity, engine, *,
                 user_verification='preferred', timeout_ms=60000, counter_policy='reject'):
        if counter_policy not in COUNTER_POLICIES:
            raise ValueError(f"counter_policy must be one of {COUNTER_POLICIES}, got {counter_policy!r}")
        self.challenges = challenges
        self.credentials = credentials
        self.identity = identity
        self.engine = engine
        self.user_verification = UserVerificationRequirement(user_verification)
        self.timeout_ms = int(timeout_ms)
        self.counter_policy = counter_policy

    def resolve_user(self, email):
        user = self.identity.find_user_by_email(normalize_email(email))
        if not user:
            raise UserNotFound()
        return str(user['id'])

    def begin(self, email, rp):
        """Build request options for the account behind ``email``."""
        user_id = self.resolve_user(email)

        logger.info("Passkey login started for user %s (origin=%s, rpID=%s)",
                    user_id, rp.origin, rp.rp_id)

        records = self.credentials.list_for_user(user_id)
        if not records:
            raise CredentialNotFound()

        challenge = self.challenges.issue(user_id, ChallengePurpose.AUTHENTICATION)

        options = generate_authentication_options(
            rp_id=rp.rp_id,
            challenge=challenge_bytes(challenge),
            timeout=self.timeout_ms,
            allow_credentials=[record.descriptor() for record in records],
            user_verification=self.user_verification,
        )
        options = json.loads(options_to_json(options))
        options.setdefault('allowCredentials', [])
        return options

    def finish(self, email, rp, credential):
        """Verify an assertion and return a LoginResult carrying the session token."""
        email = normalize_email(email)
        if not credential or not isinstance(credential, dict):
            raise InvalidRequest('The passkey login payload is incomplete.')

        credential_id = credential.get('id')
        if not is_credential_id(credential_id):
            raise InvalidCredentialId()
        credential_id = credential_id.rstrip('=')

        user_id = self.resolve_user(email)
        expected_challenge = self.challenges.consume(user_id, ChallengePurpose.AUTHENTICATION)
        record = self.credentials.get(user_id, credential_id)

        logger.info("Passkey login verifying for user %s (origin=%s, rpID=%s)",
                    user_id, rp.origin, rp.rp_id)

        try:
            verification = self.engine.verify_authentication(
                credential, expected_challenge, [rp.origin], rp.rp_id, record
            )
        except PasskeyError:
            raise
        except Exception as e:
            error = categorize_verification_error(e).with_status(401)
            logger.warning("Passkey login rejected for user %s: %s", user_id, error.code)
            raise error from e

        if not verification.verified:
            raise UserVerificationFailed('Passkey login could not be verified.', status=401)

        counter, clone_warning = self._advance_counter(user_id, record, int(verification.new_counter))

        token = self.identity.mint_session_token(user_id)
        logger.info("Passkey login succeeded for user %s", user_id)
        return LoginResult(user_id=user_id, token=token, counter=counter, clone_warning=clone_warning)

    def _advance_counter(self, user_id, record, new_counter):
        """
        Apply the counter policy. Authenticators without a counter report 0
        forever; that is only acceptable while the stored value is 0 too.
        """
        stored = record.counter
        regressed = (new_counter > 0 or stored > 0) and new_counter <= stored

        if regressed:
            logger.warning(
                "Signature counter regression on credential %s for user %s (stored=%d, reported=%d)",
                record.credential_id, user_id, stored, new_counter
            )
            if self.counter_policy == 'reject':
                raise CounterRegression()
            self.credentials.update_counter(user_id, record.credential_id, stored,
                                            expected=stored, clone_warning=True)
            return stored, True

        if not self.credentials.update_counter(user_id, record.credential_id, new_counter, expected=stored):
            if self.counter_policy == 'reject':
                raise CounterRegression('The signature counter changed during login, please try again.')
            logger.warning("Concurrent counter update on credential %s for user %s",
                           record.credential_id, user_id)
            return new_counter, record.clone_warning

        return new_counter, record.clone_warning
