from flask import session, current_app, jsonify, request
from flask_cors import CORS
from datetime import datetime, timedelta, timezone
from werkzeug.exceptions import MethodNotAllowed as HTTPMethodNotAllowed

from .authentication import AuthenticationFlow
from .callable import create_rpc_blueprint
from .challenge import ChallengeStore
from .credentials import CredentialStore
from .errors import MethodNotAllowed
from .gate import AccessGate
from .identity import SignedTokenIdentityProvider
from .origin import OriginPolicy
from .registration import RegistrationFlow
from .routes import create_blueprint
from .service import PasskeyService
from .storage import InMemoryRecordStore
from .verification import WebAuthnVerificationEngine


class FlaskPasskey:
    """Passkey (WebAuthn) registration and login for Flask."""

    def __init__(self, app=None, storage=None, engine=None, identity=None):
        self.app = app
        self.storage = storage
        self.engine = engine
        self.identity = identity

        self.challenges = None
        self.credentials = None
        self.registration = None
        self.authentication = None
        self.gate = None
        self.service = None

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Initialize the extension with Flask app. Runs once per app."""
        if 'passkey' in app.extensions:
            raise RuntimeError('Flask-Passkey is already initialized on this app.')

        app.config.setdefault('PASSKEY_RP_NAME', 'Flask-Passkey')
        app.config.setdefault('PASSKEY_RP_ID', None)
        app.config.setdefault('PASSKEY_ALLOWED_ORIGINS', ['http://localhost:5000'])
        app.config.setdefault('PASSKEY_ALLOWED_ORIGIN_PREFIXES', ['android:'])
        app.config.setdefault('PASSKEY_CHALLENGE_TTL', 300)
        app.config.setdefault('PASSKEY_TIMEOUT_MS', 60000)
        app.config.setdefault('PASSKEY_USER_VERIFICATION', 'preferred')
        app.config.setdefault('PASSKEY_COUNTER_POLICY', 'reject')
        app.config.setdefault('PASSKEY_ID_TOKEN_MAX_AGE', 3600)
        app.config.setdefault('PASSKEY_SESSION_TOKEN_MAX_AGE', 300)
        app.config.setdefault('PASSKEY_SESSION_DURATION', 24 * 60 * 60)
        app.config.setdefault('PASSKEY_LOGIN_SESSION', False)
        app.config.setdefault('PASSKEY_URL_PREFIX', '/auth')
        app.config.setdefault('PASSKEY_RPC_URL_PREFIX', '/rpc')

        self.app = app
        config = app.config

        self.storage = self.storage or InMemoryRecordStore()
        self.storage.init_app(app)

        self.identity = self.identity or SignedTokenIdentityProvider(
            self.storage,
            config.get('SECRET_KEY'),
            id_token_max_age=config['PASSKEY_ID_TOKEN_MAX_AGE'],
            session_token_max_age=config['PASSKEY_SESSION_TOKEN_MAX_AGE'],
        )
        self.engine = self.engine or WebAuthnVerificationEngine(
            require_user_verification=config['PASSKEY_USER_VERIFICATION'] == 'required'
        )

        self.challenges = ChallengeStore(self.storage, ttl_seconds=config['PASSKEY_CHALLENGE_TTL'])
        self.credentials = CredentialStore(self.storage)
        self.registration = RegistrationFlow(
            self.challenges, self.credentials, self.identity, self.engine,
            rp_name=config['PASSKEY_RP_NAME'],
            user_verification=config['PASSKEY_USER_VERIFICATION'],
            timeout_ms=config['PASSKEY_TIMEOUT_MS'],
        )
        self.authentication = AuthenticationFlow(
            self.challenges, self.credentials, self.identity, self.engine,
            user_verification=config['PASSKEY_USER_VERIFICATION'],
            timeout_ms=config['PASSKEY_TIMEOUT_MS'],
            counter_policy=config['PASSKEY_COUNTER_POLICY'],
        )
        self.gate = AccessGate(
            self.identity,
            OriginPolicy(config['PASSKEY_ALLOWED_ORIGINS'], config['PASSKEY_ALLOWED_ORIGIN_PREFIXES']),
            default_rp_id=config['PASSKEY_RP_ID'],
        )
        self.service = PasskeyService(self.gate, self.registration, self.authentication, self.credentials)

        app.extensions['passkey'] = self

        blueprint = create_blueprint(self)
        rpc_blueprint = create_rpc_blueprint(self)

        # Browser front ends on an allowed origin call these with credentials
        for bp in (blueprint, rpc_blueprint):
            CORS(bp, origins=list(config['PASSKEY_ALLOWED_ORIGINS']), supports_credentials=True)

        app.register_blueprint(blueprint, url_prefix=config['PASSKEY_URL_PREFIX'])
        app.register_blueprint(rpc_blueprint, url_prefix=config['PASSKEY_RPC_URL_PREFIX'])
        app.register_error_handler(HTTPMethodNotAllowed, self._method_not_allowed)

        app.logger.debug(
            f"Flask-Passkey initialized (rp_name={config['PASSKEY_RP_NAME']!r}, "
            f"counter_policy={config['PASSKEY_COUNTER_POLICY']!r})"
        )

    def shutdown(self):
        """Release storage resources and detach from the app."""
        if self.storage is not None:
            self.storage.close()
        if self.app is not None:
            self.app.extensions.pop('passkey', None)
        self.service = None

    def _method_not_allowed(self, error):
        prefixes = (
            current_app.config['PASSKEY_URL_PREFIX'] + '/',
            current_app.config['PASSKEY_RPC_URL_PREFIX'] + '/',
        )
        if not request.path.startswith(prefixes):
            return error
        envelope = MethodNotAllowed()
        return jsonify(envelope.to_dict()), envelope.status

    # ==================== Session ====================

    def login(self, user_id):
        session['user_id'] = str(user_id)
        session['logged_in_at'] = datetime.now(timezone.utc).isoformat()

    def logout(self):
        session.clear()

    def is_authenticated(self):
        """Check if the current Flask session holds a live login."""
        if not session.get('user_id'):
            return False
        logged_in_at = session.get('logged_in_at')
        if not logged_in_at:
            return False
        try:
            logged_in_dt = datetime.fromisoformat(logged_in_at)
        except (ValueError, TypeError):
            session.clear()
            return False
        duration = current_app.config.get('PASSKEY_SESSION_DURATION', 86400)
        if datetime.now(timezone.utc) - logged_in_dt > timedelta(seconds=duration):
            session.clear()
            return False
        return True

    def current_user(self):
        if not self.is_authenticated():
            return None
        return self.storage.get_user_by_id(session.get('user_id'))
