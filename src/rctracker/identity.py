"""Firebase Authentication as the identity provider.

The client signs in with the Firebase JS SDK (email/password) and sends the
resulting ID token; the server only verifies tokens, creates accounts and
revokes sessions through the Admin SDK.
"""
import logging

import firebase_admin
from firebase_admin import auth as fb_auth
from firebase_admin import credentials as fb_credentials

from . import config
from .errors import AuthError

logger = logging.getLogger('RCTracker')


def init_firebase() -> bool:
    """Initialize the Firebase Admin SDK. Returns False when not configured."""
    try:
        firebase_admin.get_app()
        return True
    except ValueError:
        pass
    try:
        if config.FIREBASE_CREDENTIALS:
            # Local Dev path
            cred = fb_credentials.Certificate(config.FIREBASE_CREDENTIALS)
            firebase_admin.initialize_app(cred)
        else:
            # Cloud Run (ADC) path
            firebase_admin.initialize_app()
        return True
    except Exception as e:
        logger.warning("Firebase Admin init failed or not configured: %s", e, exc_info=True)
        return False


class FirebaseIdentity:
    def __init__(self, available=True):
        self.available = available

    def _require(self):
        if not self.available:
            raise AuthError('Server not configured to verify tokens')

    def authenticate(self, id_token):
        """Verify a Firebase ID token and return its decoded claims (``uid``, ``email``...)."""
        self._require()
        if not id_token:
            raise AuthError('Missing ID token')
        try:
            return fb_auth.verify_id_token(id_token)
        except Exception as e:
            logger.warning('Token verify error: %s', e, exc_info=True)
            raise AuthError('Invalid token') from e

    def sign_up(self, email, password) -> str:
        self._require()
        try:
            user = fb_auth.create_user(email=email, password=password)
        except Exception as e:
            logger.warning('Sign up failed for %s: %s', email, e)
            raise AuthError(str(e)) from e
        logger.info('User signed up successfully: uid=%s', user.uid)
        return user.uid

    def sign_out(self, uid):
        self._require()
        try:
            fb_auth.revoke_refresh_tokens(uid)
        except Exception as e:
            logger.warning('Logout error for uid=%s: %s', uid, e)
            raise AuthError(str(e)) from e
