"""
Passkey registration: issue a challenge for a signed-in user, verify the
attestation that comes back, and store the new credential.
"""

import json
import logging

from user_agents import parse as parse_user_agent
from webauthn import generate_registration_options, options_to_json
from webauthn.helpers import bytes_to_base64url
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .challenge import ChallengePurpose, challenge_bytes
from .credentials import CredentialRecord, is_credential_id
from .errors import (
    InvalidCredentialId,
    InvalidRequest,
    PasskeyError,
    Unauthenticated,
    UserVerificationFailed,
)
from .verification import categorize_verification_error

logger = logging.getLogger(__name__)


def describe_device(user_agent_string):
    """Human-readable label for the authenticator's device, e.g. 'Mobile - Safari on iOS'."""
    if not user_agent_string:
        return None
    user_agent = parse_user_agent(user_agent_string)
    device_type = 'Mobile' if user_agent.is_mobile else \
                  'Tablet' if user_agent.is_tablet else \
                  'Computer'
    return f"{device_type} - {user_agent.browser.family} on {user_agent.os.family}"


def client_transports(credential):
    """Transport hints the browser reported, wherever the client library put them."""
    transports = credential.get('transports')
    if transports is None and isinstance(credential.get('response'), dict):
        transports = credential['response'].get('transports')
    if not isinstance(transports, (list, tuple)):
        return []
    return [t for t in transports if isinstance(t, str) and t]


class RegistrationFlow:
    """Idle -> ChallengeIssued -> Verified -> Stored, or Rejected on any failure."""

    def __init__(self, challenges, credentials, identity, engine, *, rp_name,
                 user_verification='preferred', timeout_ms=60000):
        self.challenges = challenges
        self.credentials = credentials
        self.identity = identity
        self.engine = engine
        self.rp_name = rp_name
        self.user_verification = UserVerificationRequirement(user_verification)
        self.timeout_ms = int(timeout_ms)

    def begin(self, principal, rp):
        """Build creation options for ``principal`` and issue a registration challenge."""
        if principal is None:
            raise Unauthenticated()

        logger.info("Passkey registration started for user %s (origin=%s, rpID=%s)",
                    principal.user_id, rp.origin, rp.rp_id)

        self.identity.remember_email(principal.user_id, principal.email)

        existing = self.credentials.list_for_user(principal.user_id)
        challenge = self.challenges.issue(principal.user_id, ChallengePurpose.REGISTRATION)

        options = generate_registration_options(
            rp_id=rp.rp_id,
            rp_name=self.rp_name,
            user_id=principal.user_id.encode('utf-8'),
            user_name=principal.email or principal.user_id,
            challenge=challenge_bytes(challenge),
            timeout=self.timeout_ms,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=self.user_verification,
            ),
            exclude_credentials=[record.descriptor() for record in existing],
        )
        options = json.loads(options_to_json(options))
        options.setdefault('excludeCredentials', [])
        return options

    def finish(self, principal, rp, credential, user_agent=None):
        """
        Verify the attestation and persist the credential.

        The challenge is consumed before verification, so a failed
        verification still burns it. A payload without a response object or
        a well-formed credential ID is rejected first and leaves it usable
        for a retry.
        """
        if principal is None:
            raise Unauthenticated()
        if not credential or not isinstance(credential, dict) \
                or not isinstance(credential.get('response'), dict):
            raise InvalidRequest()
        if not is_credential_id(credential.get('rawId') or credential.get('id')):
            raise InvalidCredentialId()

        expected_challenge = self.challenges.consume(principal.user_id, ChallengePurpose.REGISTRATION)

        logger.info("Passkey registration verifying for user %s (origin=%s, rpID=%s)",
                    principal.user_id, rp.origin, rp.rp_id)

        try:
            verification = self.engine.verify_registration(
                credential, expected_challenge, [rp.origin], rp.rp_id
            )
        except PasskeyError:
            raise
        except Exception as e:
            error = categorize_verification_error(e)
            logger.warning("Passkey registration rejected for user %s: %s", principal.user_id, error.code)
            raise error from e

        if not verification.verified or not verification.credential_id:
            raise UserVerificationFailed('Passkey registration could not be verified.')

        record = CredentialRecord(
            credential_id=bytes_to_base64url(verification.credential_id),
            public_key=bytes_to_base64url(verification.public_key),
            counter=verification.counter,
            transports=client_transports(credential),
            device_name=describe_device(user_agent),
        )
        self.credentials.put(principal.user_id, record)

        logger.info("Passkey registered for user %s", principal.user_id)
        return {'verified': True, 'credentialId': record.credential_id}
