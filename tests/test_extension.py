"""
Extension setup, teardown and session helpers.
"""

import pytest
from datetime import datetime, timedelta, timezone
from flask import Flask

from flask_passkey import FlaskPasskey, get_current_user, is_authenticated, logout
from flask_passkey.storage import InMemoryRecordStore
from flask_passkey.verification import WebAuthnVerificationEngine


@pytest.mark.unit
class TestInitialization:

    def test_config_defaults(self):
        app = Flask(__name__)
        app.config['SECRET_KEY'] = 'test-secret-key'
        FlaskPasskey(app)

        assert app.config['PASSKEY_RP_NAME'] == 'Flask-Passkey'
        assert app.config['PASSKEY_RP_ID'] is None
        assert app.config['PASSKEY_ALLOWED_ORIGINS'] == ['http://localhost:5000']
        assert app.config['PASSKEY_CHALLENGE_TTL'] == 300
        assert app.config['PASSKEY_COUNTER_POLICY'] == 'reject'
        assert app.config['PASSKEY_URL_PREFIX'] == '/auth'
        assert app.config['PASSKEY_RPC_URL_PREFIX'] == '/rpc'

    def test_default_components(self):
        app = Flask(__name__)
        app.config['SECRET_KEY'] = 'test-secret-key'
        app.config['PASSKEY_USER_VERIFICATION'] = 'required'
        passkey = FlaskPasskey(app)

        assert isinstance(passkey.storage, InMemoryRecordStore)
        assert isinstance(passkey.engine, WebAuthnVerificationEngine)
        assert passkey.engine.require_user_verification is True
        assert app.extensions['passkey'] is passkey

    def test_init_app_factory_pattern(self):
        passkey = FlaskPasskey()
        app = Flask(__name__)
        app.config['SECRET_KEY'] = 'test-secret-key'
        app.config['PASSKEY_URL_PREFIX'] = '/passkeys-api'

        passkey.init_app(app)

        rules = {rule.rule for rule in app.url_map.iter_rules()}
        assert '/passkeys-api/passkey/register/options' in rules
        assert '/rpc/<name>' in rules

    def test_initializes_only_once(self, app, passkey):
        with pytest.raises(RuntimeError):
            passkey.init_app(app)

    def test_requires_secret_key(self):
        with pytest.raises(RuntimeError):
            FlaskPasskey(Flask(__name__))

    def test_rejects_unknown_counter_policy(self):
        app = Flask(__name__)
        app.config['SECRET_KEY'] = 'test-secret-key'
        app.config['PASSKEY_COUNTER_POLICY'] = 'ignore'

        with pytest.raises(ValueError):
            FlaskPasskey(app)

    def test_shutdown(self):
        app = Flask(__name__)
        app.config['SECRET_KEY'] = 'test-secret-key'
        storage = InMemoryRecordStore()
        passkey = FlaskPasskey(app, storage=storage)
        storage.set('user-1', 'webauthn', 'challenge', {'value': 'abc'})

        passkey.shutdown()

        assert 'passkey' not in app.extensions
        assert passkey.service is None
        assert storage.get('user-1', 'webauthn', 'challenge') is None


@pytest.mark.unit
class TestSessionHelpers:

    def test_login_and_logout(self, app, passkey, test_user):
        with app.test_request_context():
            assert passkey.is_authenticated() is False

            passkey.login('user-1')
            assert passkey.is_authenticated() is True
            assert passkey.current_user()['email'] == 'test@example.com'
            assert is_authenticated() is True
            assert get_current_user()['id'] == 'user-1'

            logout()
            assert passkey.is_authenticated() is False
            assert get_current_user() is None

    def test_session_expires(self, app, passkey, test_user):
        with app.test_request_context():
            from flask import session

            passkey.login('user-1')
            session['logged_in_at'] = (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat()

            assert passkey.is_authenticated() is False
            assert 'user_id' not in session

    def test_corrupt_session_timestamp(self, app, passkey):
        with app.test_request_context():
            from flask import session

            session['user_id'] = 'user-1'
            session['logged_in_at'] = 'yesterday'

            assert passkey.is_authenticated() is False

    def test_bearer_token_helpers(self, app, id_token):
        with app.test_request_context(headers={'Authorization': f'Bearer {id_token}'}):
            assert is_authenticated() is True
            assert get_current_user()['email'] == 'test@example.com'


@pytest.mark.unit
class TestPackageImports:

    def test_public_names_resolve(self):
        import flask_passkey

        for name in flask_passkey.__all__:
            assert getattr(flask_passkey, name) is not None

    @pytest.mark.parametrize("module", [
        'flask_passkey.challenge',
        'flask_passkey.registration',
        'flask_passkey.authentication',
        'flask_passkey.verification',
    ])
    def test_ceremony_modules_import(self, module):
        import importlib

        assert importlib.import_module(module) is not None
