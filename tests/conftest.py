"""
Pytest fixtures for Flask-Passkey tests.

The WebAuthn cryptography is replaced by FakeVerificationEngine: it
reads what a real authenticator would have signed (challenge, origin,
rpID, counter) straight from the response dict and fails with the same
messages py_webauthn uses, so the flows see realistic failures.
"""

import sys
from pathlib import Path

import pytest
from flask import Flask, g, jsonify
from webauthn import base64url_to_bytes
from webauthn.helpers import bytes_to_base64url

# Ensure project root is importable when running tests from /tests
PROJECT_ROOT = str(Path(__file__).resolve().parent.parent)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from flask_passkey import FlaskPasskey, login_required
from flask_passkey.origin import RPContext
from flask_passkey.storage import InMemoryRecordStore
from flask_passkey.verification import (
    AuthenticationVerification,
    RegistrationVerification,
    VerificationEngine,
)

ORIGIN = "http://localhost:5000"
RP_ID = "localhost"


class FakeVerificationEngine(VerificationEngine):
    """Checks the fields a real engine would check, minus the signatures."""

    def __init__(self):
        self.calls = []

    def _check(self, response, expected_challenge, expected_origins, expected_rp_id):
        client = response["response"]
        if client.get("challenge") != expected_challenge:
            raise ValueError("Client data challenge was not expected challenge")
        if client.get("origin") not in expected_origins:
            raise ValueError(
                f'Unexpected client data origin "{client.get("origin")}", expected "{expected_origins}"'
            )
        if client.get("rpId") != expected_rp_id:
            raise ValueError("Unexpected RP ID hash")
        if client.get("userVerified") is False:
            raise ValueError("User verification is required but user was not verified")

    def verify_registration(self, response, expected_challenge, expected_origins, expected_rp_id):
        self.calls.append(("registration", expected_challenge, list(expected_origins), expected_rp_id))
        self._check(response, expected_challenge, expected_origins, expected_rp_id)
        return RegistrationVerification(
            verified=True,
            credential_id=base64url_to_bytes(response["rawId"]),
            public_key=response["response"]["publicKey"].encode(),
            counter=response["response"].get("counter", 0),
        )

    def verify_authentication(self, response, expected_challenge, expected_origins,
                              expected_rp_id, record):
        self.calls.append(("authentication", expected_challenge, list(expected_origins), expected_rp_id))
        self._check(response, expected_challenge, expected_origins, expected_rp_id)
        if base64url_to_bytes(record.public_key) != response["response"]["publicKey"].encode():
            raise ValueError("Could not verify authentication signature")
        return AuthenticationVerification(verified=True, new_counter=response["response"]["counter"])


def make_attestation(challenge, credential_id=b"credential-1", origin=ORIGIN, rp_id=RP_ID,
                     public_key="public-key-1", counter=0, transports=("internal", "hybrid"),
                     user_verified=True):
    """A registration response as the browser would post it."""
    cred_id = bytes_to_base64url(credential_id)
    return {
        "id": cred_id,
        "rawId": cred_id,
        "type": "public-key",
        "response": {
            "challenge": challenge,
            "origin": origin,
            "rpId": rp_id,
            "publicKey": public_key,
            "counter": counter,
            "userVerified": user_verified,
            "transports": list(transports),
        },
    }


def make_assertion(challenge, credential_id=b"credential-1", origin=ORIGIN, rp_id=RP_ID,
                   public_key="public-key-1", counter=1):
    """An authentication response as the browser would post it."""
    cred_id = bytes_to_base64url(credential_id)
    return {
        "id": cred_id,
        "rawId": cred_id,
        "type": "public-key",
        "response": {
            "challenge": challenge,
            "origin": origin,
            "rpId": rp_id,
            "publicKey": public_key,
            "counter": counter,
        },
    }


@pytest.fixture
def base_config():
    # Keep config minimal and explicit for test determinism
    return {
        "SECRET_KEY": "test-secret-key",
        "TESTING": True,

        "PASSKEY_RP_NAME": "Test App",
        "PASSKEY_ALLOWED_ORIGINS": [ORIGIN, "https://app.example.test"],
        "PASSKEY_ALLOWED_ORIGIN_PREFIXES": ["android:"],
        "PASSKEY_CHALLENGE_TTL": 300,
        "PASSKEY_COUNTER_POLICY": "reject",
        "PASSKEY_SESSION_DURATION": 3600,
    }


@pytest.fixture
def engine():
    return FakeVerificationEngine()


@pytest.fixture
def app(base_config, engine):
    """Flask app with Flask-Passkey, in-memory storage and the fake engine."""
    app = Flask(__name__)
    app.config.update(base_config)

    passkey = FlaskPasskey(app, storage=InMemoryRecordStore(), engine=engine)

    @app.route("/protected")
    @login_required
    def protected():
        return jsonify({"user_id": g.principal.user_id})

    @app.route("/public")
    def public():
        return "Public content"

    yield app

    passkey.shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def passkey(app):
    return app.extensions["passkey"]


@pytest.fixture
def rp():
    return RPContext(origin=ORIGIN, rp_id=RP_ID)


@pytest.fixture
def test_email():
    return "test@example.com"


@pytest.fixture
def test_user(passkey, test_email):
    """
    A user the host application already knows about.

    In production the host app's own sign-in creates users; here we write
    the directory entry directly.
    """
    return passkey.storage.upsert_user("user-1", email=test_email)


@pytest.fixture
def principal(test_user):
    from flask_passkey.identity import Principal
    return Principal(user_id=test_user["id"], email=test_user["email"])


@pytest.fixture
def id_token(passkey, test_user):
    return passkey.identity.issue_id_token(test_user["id"], test_user["email"])


@pytest.fixture
def auth_headers(id_token):
    return {"Authorization": f"Bearer {id_token}", "Origin": ORIGIN}


@pytest.fixture
def registered_credential(passkey, principal, rp):
    """Run a full registration ceremony so the test user owns credential-1."""
    options = passkey.registration.begin(principal, rp)
    passkey.registration.finish(principal, rp, make_attestation(options["challenge"]))
    return passkey.credentials.get(principal.user_id, bytes_to_base64url(b"credential-1"))


@pytest.fixture
def attestation():
    return make_attestation


@pytest.fixture
def assertion():
    return make_assertion
