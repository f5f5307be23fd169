"""
One-time WebAuthn challenges.

Each user has a single challenge slot. Issuing a challenge overwrites
whatever was there, for either purpose; consuming it removes it so the
same value can never be verified twice.
"""

import enum
import logging
import secrets
from datetime import datetime, timedelta, timezone

from webauthn import base64url_to_bytes
from webauthn.helpers import bytes_to_base64url

from .errors import ChallengeMismatch, ChallengeMissing

logger = logging.getLogger(__name__)

CHALLENGE_COLLECTION = 'webauthn'
CHALLENGE_KEY = 'challenge'


class ChallengePurpose(str, enum.Enum):
    REGISTRATION = 'registration'
    AUTHENTICATION = 'authentication'


class ChallengeStore:
    """Issues and single-use-consumes per-user challenges."""

    def __init__(self, storage, ttl_seconds=300, entropy_bytes=32):
        self.storage = storage
        self.ttl_seconds = int(ttl_seconds)
        self.entropy_bytes = max(16, int(entropy_bytes))

    def issue(self, user_id, purpose):
        """Generate a fresh challenge for ``user_id``, replacing any live one."""
        purpose = ChallengePurpose(purpose)
        value = bytes_to_base64url(secrets.token_bytes(self.entropy_bytes))

        self.storage.set(user_id, CHALLENGE_COLLECTION, CHALLENGE_KEY, {
            'value': value,
            'purpose': purpose.value,
            'createdAt': datetime.now(timezone.utc).isoformat(),
        })
        return value

    def consume(self, user_id, purpose):
        """
        Take the live challenge for ``user_id`` if it was issued for ``purpose``.

        A purpose mismatch leaves the record in place. An expired record is
        removed and reported as missing. Removal is a conditional delete on
        the value read, so of two concurrent consumers only one gets it.
        """
        purpose = ChallengePurpose(purpose)
        record = self.storage.get(user_id, CHALLENGE_COLLECTION, CHALLENGE_KEY)
        if not record:
            raise ChallengeMissing()

        value = record.get('value')
        if record.get('purpose') != purpose.value or not value:
            raise ChallengeMismatch()

        if self._is_expired(record):
            self.storage.delete(user_id, CHALLENGE_COLLECTION, CHALLENGE_KEY,
                                expect={'value': value})
            logger.info("Expired %s challenge discarded for user %s", purpose.value, user_id)
            raise ChallengeMissing('The challenge has expired, please start again.')

        if not self.storage.delete(user_id, CHALLENGE_COLLECTION, CHALLENGE_KEY,
                                   expect={'value': value, 'purpose': purpose.value}):
            raise ChallengeMissing()

        return value

    def discard(self, user_id):
        self.storage.delete(user_id, CHALLENGE_COLLECTION, CHALLENGE_KEY)

    def _is_expired(self, record):
        if self.ttl_seconds <= 0:
            return False
        try:
            created_at = datetime.fromisoformat(record.get('createdAt'))
        except (TypeError, ValueError):
            return True
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - created_at > timedelta(seconds=self.ttl_seconds)


def challenge_bytes(value):
    """Decode a stored challenge back to the bytes the client signed over."""
    return base64url_to_bytes(value)
