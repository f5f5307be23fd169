"""
Verification Engine
===================
The cryptographic half of a ceremony: checking an attestation or an
assertion against the expected challenge, origin and rpID. The default
engine delegates to py_webauthn; tests and other deployments can inject
their own implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Sequence

from webauthn import (
    base64url_to_bytes,
    verify_authentication_response,
    verify_registration_response,
)

from .errors import (
    ChallengeMismatch,
    CounterRegression,
    ExpectedOriginMismatch,
    ExpectedRPIDMismatch,
    UserVerificationFailed,
    VerificationFailed,
)


@dataclass(frozen=True)
class RegistrationVerification:
    verified: bool
    credential_id: bytes = b''
    public_key: bytes = b''
    counter: int = 0


@dataclass(frozen=True)
class AuthenticationVerification:
    verified: bool
    new_counter: int = 0


class VerificationEngine(ABC):

    @abstractmethod
    def verify_registration(
        self,
        response: Dict[str, Any],
        expected_challenge: str,
        expected_origins: Sequence[str],
        expected_rp_id: str,
    ) -> RegistrationVerification:
        """Verify an attestation. Raises on any failure."""

    @abstractmethod
    def verify_authentication(
        self,
        response: Dict[str, Any],
        expected_challenge: str,
        expected_origins: Sequence[str],
        expected_rp_id: str,
        record,
    ) -> AuthenticationVerification:
        """Verify an assertion against a stored CredentialRecord. Raises on any failure."""


class WebAuthnVerificationEngine(VerificationEngine):
    """py_webauthn-backed engine."""

    def __init__(self, require_user_verification: bool = False):
        self.require_user_verification = require_user_verification

    def verify_registration(self, response, expected_challenge, expected_origins, expected_rp_id):
        verification = verify_registration_response(
            credential=response,
            expected_challenge=base64url_to_bytes(expected_challenge),
            expected_origin=list(expected_origins),
            expected_rp_id=expected_rp_id,
            require_user_verification=self.require_user_verification,
        )
        return RegistrationVerification(
            verified=True,
            credential_id=verification.credential_id,
            public_key=verification.credential_public_key,
            counter=verification.sign_count,
        )

    def verify_authentication(self, response, expected_challenge, expected_origins,
                              expected_rp_id, record):
        # Counter comparison is AuthenticationFlow's job (it owns the
        # reject/clamp policy), so py_webauthn's own check is neutralised.
        verification = verify_authentication_response(
            credential=response,
            expected_challenge=base64url_to_bytes(expected_challenge),
            expected_origin=list(expected_origins),
            expected_rp_id=expected_rp_id,
            credential_public_key=base64url_to_bytes(record.public_key),
            credential_current_sign_count=0,
            require_user_verification=self.require_user_verification,
        )
        return AuthenticationVerification(verified=True, new_counter=verification.new_sign_count)


def categorize_verification_error(error):
    """Map an engine failure to the error kind callers branch on."""
    message = str(error or '').lower()

    if 'origin' in message:
        kind = ExpectedOriginMismatch
    elif 'rp id' in message or 'rpid' in message:
        kind = ExpectedRPIDMismatch
    elif 'challenge' in message:
        kind = ChallengeMismatch
    elif 'user verification' in message or 'not verified' in message:
        kind = UserVerificationFailed
    elif 'sign count' in message or 'counter' in message:
        kind = CounterRegression
    else:
        kind = VerificationFailed

    return kind(str(error) or None)
