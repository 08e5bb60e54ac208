"""
Authentication Module: Google sign-in for CorePass
"""
from functools import wraps

from blinker import Namespace
from flask import Blueprint, redirect, url_for, session, jsonify, current_app
from authlib.integrations.flask_client import OAuth

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')
oauth = OAuth()

# Fires with sender=uid and signed_in=True/False whenever sign-in state changes
_signals = Namespace()
auth_state_changed = _signals.signal('auth-state-changed')


def init_oauth(app):
    """Initialize OAuth with the Flask app"""
    oauth.init_app(app)

    # Only register Google if credentials are configured
    if app.config.get('GOOGLE_CLIENT_ID') and app.config.get('GOOGLE_CLIENT_SECRET'):
        oauth.register(
            name='google',
            client_id=app.config['GOOGLE_CLIENT_ID'],
            client_secret=app.config['GOOGLE_CLIENT_SECRET'],
            server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
            client_kwargs={
                'scope': 'openid email profile'
            },
        )
        app.logger.info("Google OAuth configured successfully")
    else:
        app.logger.warning("Google OAuth not configured - GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET missing")


def _corepass():
    return current_app.extensions['corepass']


def get_current_user():
    """Identity of the signed-in user, or None"""
    uid = _corepass().session_provider.current_user_id()
    if not uid:
        return None

    User = _corepass().user_model
    user = User.query.filter_by(uid=uid).first()
    if user is None:
        # Fixed/preview identities have no stored profile
        return {'id': uid, 'display_name': None, 'email': None, 'photo_url': None}
    return user.to_identity()


def require_auth_api(f):
    """Decorator to require a signed-in user for API routes (returns JSON error)"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _corepass().session_provider.current_user_id():
            return jsonify(ok=False, message="Not signed in."), 401
        return f(*args, **kwargs)
    return decorated_function


@auth_bp.route('/login')
def login():
    """Redirect to Google OAuth login"""
    if not hasattr(oauth, 'google'):
        return jsonify(ok=False, message="Sign-in is not configured"), 503

    redirect_uri = url_for('auth.callback', _external=True)
    return oauth.google.authorize_redirect(redirect_uri)


@auth_bp.route('/callback')
def callback():
    """Handle Google OAuth callback"""
    db = _corepass().db
    User = _corepass().user_model

    try:
        token = oauth.google.authorize_access_token()
        user_info = token.get('userinfo')

        if not user_info:
            # Try to get user info from the id_token
            user_info = oauth.google.parse_id_token(token, None)

        if not user_info or not user_info.get('sub'):
            return "Failed to get user information from Google", 400

        uid = user_info['sub']
        email = user_info.get('email', '')

        # Find or create user
        user = User.query.filter_by(uid=uid).first()
        if not user:
            user = User(uid=uid)
            db.session.add(user)
            current_app.logger.info(f"Created new user: {email}")

        user.email = email
        user.display_name = user_info.get('name', email.split('@')[0])
        user.photo_url = user_info.get('picture', '')
        user.update_last_login()
        db.session.commit()

        session['uid'] = uid
        session.permanent = True
        auth_state_changed.send(uid, signed_in=True)

        return redirect(url_for('auth.me'))

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"OAuth callback error: {str(e)}")
        return f"Authentication error: {str(e)}", 500


@auth_bp.route('/logout')
def logout():
    """Sign the current user out"""
    uid = session.pop('uid', None)
    if uid:
        auth_state_changed.send(uid, signed_in=False)
    return jsonify(ok=True)


@auth_bp.route('/me')
@require_auth_api
def me():
    """Get current user information (API)"""
    return jsonify(ok=True, user=get_current_user())
