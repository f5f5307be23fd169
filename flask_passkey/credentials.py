"""
Registered passkey credentials, one document per authenticator, keyed by
the base64url credential ID.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from webauthn import base64url_to_bytes
from webauthn.helpers.structs import AuthenticatorTransport, PublicKeyCredentialDescriptor

from .errors import CredentialNotFound

CREDENTIALS_COLLECTION = 'credentials'

_CREDENTIAL_ID = re.compile(r'^[A-Za-z0-9_-]+={0,2}$')


def is_credential_id(value):
    """True for a base64url credential ID, padded or not."""
    return isinstance(value, str) and bool(_CREDENTIAL_ID.match(value))


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CredentialRecord:
    credential_id: str
    public_key: str
    counter: int = 0
    transports: List[str] = field(default_factory=list)
    device_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    clone_warning: bool = False

    def to_document(self):
        return {
            'credentialID': self.credential_id,
            'publicKey': self.public_key,
            'counter': int(self.counter),
            'transports': list(self.transports),
            'deviceName': self.device_name,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'cloneWarning': self.clone_warning,
        }

    @classmethod
    def from_document(cls, key, doc):
        return cls(
            credential_id=doc.get('credentialID') or key,
            public_key=doc.get('publicKey', ''),
            counter=int(doc.get('counter') or 0),
            transports=list(doc.get('transports') or []),
            device_name=doc.get('deviceName'),
            created_at=doc.get('createdAt'),
            updated_at=doc.get('updatedAt'),
            clone_warning=bool(doc.get('cloneWarning', False)),
        )

    def descriptor(self):
        """PublicKeyCredentialDescriptor for allow/exclude lists."""
        transports = []
        for hint in self.transports:
            try:
                transports.append(AuthenticatorTransport(hint))
            except ValueError:
                continue
        return PublicKeyCredentialDescriptor(
            id=base64url_to_bytes(self.credential_id),
            transports=transports or None,
        )

    def to_public_dict(self):
        """Fields safe to show the account owner (no key material)."""
        return {
            'credentialId': self.credential_id,
            'transports': list(self.transports),
            'deviceName': self.device_name,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'cloneWarning': self.clone_warning,
        }


class CredentialStore:
    """Per-user credential records on top of a RecordStore."""

    def __init__(self, storage):
        self.storage = storage

    def list_for_user(self, user_id):
        records = [
            CredentialRecord.from_document(key, doc)
            for key, doc in self.storage.list(user_id, CREDENTIALS_COLLECTION)
        ]
        return sorted(records, key=lambda r: r.created_at or '')

    def get(self, user_id, credential_id):
        doc = self.storage.get(user_id, CREDENTIALS_COLLECTION, credential_id)
        if doc is None:
            raise CredentialNotFound('This passkey is not registered or has been removed.')
        return CredentialRecord.from_document(credential_id, doc)

    def put(self, user_id, record):
        """Create or overwrite the record stored under its credential ID."""
        now = _now_iso()
        existing = self.storage.get(user_id, CREDENTIALS_COLLECTION, record.credential_id)
        if existing and existing.get('createdAt'):
            record.created_at = existing['createdAt']
        else:
            record.created_at = record.created_at or now
        record.updated_at = now

        self.storage.set(user_id, CREDENTIALS_COLLECTION, record.credential_id, record.to_document())
        return record

    def update_counter(self, user_id, credential_id, new_counter, expected=None, clone_warning=None):
        """
        Overwrite the stored counter.

        With ``expected`` the write is conditional on the counter still
        holding that value. Returns False when nothing was written.
        """
        fields = {'counter': int(new_counter), 'updatedAt': _now_iso()}
        if clone_warning is not None:
            fields['cloneWarning'] = bool(clone_warning)

        expect = {'counter': int(expected)} if expected is not None else None
        return self.storage.update(user_id, CREDENTIALS_COLLECTION, credential_id, fields, expect=expect)

    def delete(self, user_id, credential_id):
        if not self.storage.delete(user_id, CREDENTIALS_COLLECTION, credential_id):
            raise CredentialNotFound('This passkey is not registered or has been removed.')
