import json
import logging
import queue
import re
import sys
import uuid
from functools import wraps

from flask import Flask, request, jsonify, Response, session, g

from . import config
from .errors import AuthError, PersistenceError
from .geolocation import ReportedPosition, geolocation_options
from .identity import FirebaseIdentity, init_firebase
from .models import Session, Track
from .pipeline import SessionPipeline
from .storage import make_store, sessions_path, tracks_path
from .tracks import (TrackRef, SessionRef, add_run, add_track, delete_run, delete_session, delete_track,
                     filter_tracks, get_session, list_sessions, list_tracks, session_summary)
from .weather import WeatherClient


app = Flask(__name__)
app.secret_key = config.SECRET_KEY

# Session cookie security recommended for production
app.config['SESSION_COOKIE_SECURE'] = config.SESSION_COOKIE_SECURE
app.config['SESSION_COOKIE_SAMESITE'] = config.SESSION_COOKIE_SAMESITE

# Configure JSON logging to stdout so Cloud Run / GCP logging picks it up
LOG_LEVEL = config.LOG_LEVEL
HIDDEN_HEADERS = ('authorization', 'cookie')
HIDDEN_BODY_KEYS = ('password', 'idtoken')
STREAM_KEEPALIVE = 15


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "lineno": record.lineno,
        }
        if hasattr(record, 'request_info'):
            log_record['request_info'] = dict(record.request_info)
        # include request id if present
        if hasattr(record, 'request_id') and record.request_id:
            log_record['request_id'] = record.request_id
        if record.exc_info:
            log_record['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


class RequestIDFilter(logging.Filter):
    def filter(self, record):
        try:
            record.request_id = getattr(g, 'request_id', None)
        except RuntimeError:
            # outside of an app context
            record.request_id = None
        return True


handler = logging.StreamHandler(sys.stdout)
handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
handler.setFormatter(JSONFormatter())
handler.addFilter(RequestIDFilter())

# Root logger configuration
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
root_logger.handlers = []
root_logger.addHandler(handler)

# App logger
logger = logging.getLogger('RCTracker')
logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
logger.propagate = False
logger.handlers = [handler]

# Make werkzeug and the HTTP client use the same handler
logging.getLogger('werkzeug').handlers = [handler]
logging.getLogger('werkzeug').setLevel(logging.INFO)

logging.getLogger('urllib3.connectionpool').handlers = [handler]
logging.getLogger('urllib3.connectionpool').setLevel(logging.INFO)

logger.info("Starting RCTracker app; USE_FIRESTORE=%s LOG_LEVEL=%s", config.USE_FIRESTORE, LOG_LEVEL)

# External collaborators. Tests replace these module attributes.
FIREBASE_ADMIN_AVAILABLE = init_firebase()
identity = FirebaseIdentity(available=FIREBASE_ADMIN_AVAILABLE)
store = make_store()
weather_client = WeatherClient()


def get_pipeline() -> SessionPipeline:
    return SessionPipeline(store, weather_client)


@app.before_request
def ensure_request_id():
    # propagate incoming request id or generate one
    g.request_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex


def _redacted_body():
    body = request.get_json(silent=True) if request.is_json else None
    if isinstance(body, dict):
        body = {k: ('***' if k.lower() in HIDDEN_BODY_KEYS else v) for k, v in body.items()}
    return body


@app.before_request
def log_request_info():
    logger.info(f'Request received for url: {request.url}, method: {request.method}', extra={'request_info': {
        'url': request.url,
        'path': request.path,
        'request_args': dict(request.args),
        'method': request.method,
        'headers': {k: v for k, v in request.headers.items() if k.lower() not in HIDDEN_HEADERS},
        'uid': session.get('fb_uid') or None,
        'json_body': _redacted_body(),
    }})


@app.after_request
def log_response(response: Response):
    status = response.status_code
    if status >= 500:
        logger.error('Response %s %s returned %s', request.method, request.path, status)
    elif status >= 400:
        logger.warning('Response %s %s returned %s', request.method, request.path, status)
    response.headers['X-Request-ID'] = g.get('request_id', '')
    return response


def respond_error(message, status=400):
    """JSON error body with the given HTTP status."""
    return jsonify({'error': message}), status


def request_body():
    return request.get_json(silent=True) or request.form.to_dict() or {}


def require_user(func):
    """Resolve the signed-in user from the Flask session or a Bearer ID token into g.uid."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        uid = session.get('fb_uid')
        if not uid:
            auth_header = request.headers.get('Authorization', '')
            m = re.match(r"Bearer\s+(.+)", auth_header)
            if not m:
                logger.warning('No authenticated user for request %s %s', request.method, request.path)
                return respond_error('Not authenticated', 401)
            try:
                decoded = identity.authenticate(m.group(1))
            except AuthError as e:
                return respond_error(str(e), 401)
            uid = decoded['uid']
            g.email = decoded.get('email')
        g.uid = uid
        return func(*args, **kwargs)
    return wrapper


def _track_json(track: Track):
    out = track.toJSON()
    out['id'] = track.track_id
    return out


# --- Health ---
@app.route('/')
def root():
    return jsonify({'status': 'ok', 'service': 'RCTracker API'})


@app.route('/healthz')
def healthz():
    return jsonify({'ok': True})


# --- Identity ---
@app.route('/signup', methods=['POST'])
def signup():
    data = request_body()
    email = data.get('email')
    password = data.get('password')
    if not email or not password:
        return respond_error('Email and password are required', 400)
    try:
        uid = identity.sign_up(email, password)
    except AuthError as e:
        return respond_error(str(e), 400)
    return jsonify({'ok': True, 'uid': uid}), 201


@app.route('/session_login', methods=['POST'])
def session_login():
    """Accepts JSON { idToken: '<firebase id token>' } from the client, verifies it,
    and establishes a Flask session with the uid."""
    data = request.get_json(silent=True) or {}
    try:
        decoded = identity.authenticate(data.get('idToken'))
    except AuthError as e:
        logger.warning('session_login verify failed: %s', e)
        return jsonify({'status': 'error', 'message': 'Unable to authenticate user'}), 401

    session['fb_uid'] = decoded['uid']
    session['fb_email'] = decoded.get('email')
    logger.info('session_login successful for uid=%s email=%s', session['fb_uid'], session['fb_email'])
    return jsonify({'ok': True, 'uid': session['fb_uid'], 'email': session['fb_email']}), 200


@app.route('/logout', methods=['GET', 'POST'])
def logout():
    uid = session.get('fb_uid')
    logger.info('Logout requested; clearing session for fb_uid=%s', uid)
    if uid:
        try:
            identity.sign_out(uid)
        except AuthError as e:
            logger.warning('Logout error: %s', e)
    session.clear()
    return jsonify({'ok': True})


@app.route('/api/me')
@require_user
def api_me():
    return jsonify({'uid': g.uid, 'email': session.get('fb_email') or g.get('email')})


@app.route('/api/geolocation_options')
def api_geolocation_options():
    return jsonify(geolocation_options())


# --- Tracks ---
@app.route('/api/tracks', methods=['GET'])
@require_user
def api_tracks():
    try:
        tracks = list_tracks(store, g.uid)
    except PersistenceError as e:
        return respond_error(str(e), 500)
    return jsonify([_track_json(t) for t in filter_tracks(tracks, request.args.get('q'))])


@app.route('/api/tracks', methods=['POST'])
@require_user
def api_add_track():
    name = (request_body().get('name') or '')
    try:
        track_id = add_track(store, g.uid, name)
    except PersistenceError as e:
        logger.error('Error adding track: %s', e)
        return respond_error('Failed to add track', 500)
    if track_id is None:
        return jsonify({'id': None})
    return jsonify({'id': track_id, 'name': name}), 201


@app.route('/api/tracks/<track_id>', methods=['DELETE'])
@require_user
def api_delete_track(track_id):
    try:
        delete_track(store, g.uid, track_id)
    except PersistenceError as e:
        logger.error('Error deleting track: %s', e)
        return respond_error('Failed to delete track', 500)
    return jsonify({'ok': True})


# --- Sessions ---
@app.route('/api/tracks/<track_id>/sessions', methods=['GET'])
@require_user
def api_sessions(track_id):
    try:
        sessions = list_sessions(store, TrackRef(g.uid, track_id))
    except PersistenceError as e:
        return respond_error(str(e), 500)
    return jsonify([session_summary(s) for s in sessions])


def _session_result_error(result):
    body = result.toJSON()
    body['error'] = result.status
    return jsonify(body), 500


@app.route('/api/tracks/<track_id>/sessions', methods=['POST'])
@require_user
def api_create_session(track_id):
    data = request_body()
    result = get_pipeline().create_session(TrackRef(g.uid, track_id),
                                           ReportedPosition.from_request(data),
                                           name=data.get('name'))
    if result.session_id is None:
        return _session_result_error(result)
    return jsonify(result.toJSON()), 201


@app.route('/api/tracks/<track_id>/sessions/default', methods=['POST'])
@require_user
def api_create_default_session(track_id):
    data = request_body()
    result = get_pipeline().create_session_with_default_weather(TrackRef(g.uid, track_id), name=data.get('name'))
    if result.session_id is None:
        return _session_result_error(result)
    return jsonify(result.toJSON()), 201


def _load_session(track_id, session_id):
    ref = SessionRef(g.uid, track_id, session_id)
    return ref, get_session(store, ref)


@app.route('/api/tracks/<track_id>/sessions/<session_id>', methods=['GET'])
@require_user
def api_session(track_id, session_id):
    try:
        _, s = _load_session(track_id, session_id)
    except PersistenceError as e:
        return respond_error(str(e), 500)
    if s is None:
        return respond_error('Session not found', 404)
    return jsonify(session_summary(s))


@app.route('/api/tracks/<track_id>/sessions/<session_id>', methods=['DELETE'])
@require_user
def api_delete_session(track_id, session_id):
    try:
        delete_session(store, SessionRef(g.uid, track_id, session_id))
    except PersistenceError as e:
        logger.error('Error deleting session: %s', e)
        return respond_error('Failed to delete session', 500)
    return jsonify({'ok': True})


# --- Runs ---
@app.route('/api/tracks/<track_id>/sessions/<session_id>/runs', methods=['POST'])
@require_user
def api_add_run(track_id, session_id):
    try:
        ref, s = _load_session(track_id, session_id)
        if s is None:
            return respond_error('Session not found', 404)
        runs = add_run(store, ref, s, request_body())
    except PersistenceError as e:
        logger.error('Error adding run: %s', e)
        return respond_error('Failed to add run', 500)
    return jsonify({'runs': [r.toJSON() for r in runs]}), 201


@app.route('/api/tracks/<track_id>/sessions/<session_id>/runs/<int:index>', methods=['DELETE'])
@require_user
def api_delete_run(track_id, session_id, index):
    try:
        ref, s = _load_session(track_id, session_id)
        if s is None:
            return respond_error('Session not found', 404)
        runs = delete_run(store, ref, s, index)
    except PersistenceError as e:
        logger.error('Error deleting run: %s', e)
        return respond_error('Failed to delete run', 500)
    return jsonify({'runs': [r.toJSON() for r in runs]})


# --- Live updates (Server-Sent Events) ---
def _stream_collection(collection_path, convert):
    events = queue.Queue()
    try:
        unsubscribe = store.subscribe(collection_path, events.put)
    except PersistenceError as e:
        return respond_error(str(e), 500)

    def generate():
        try:
            while True:
                try:
                    docs = events.get(timeout=STREAM_KEEPALIVE)
                except queue.Empty:
                    yield ': keep-alive\n\n'
                    continue
                yield f"data: {json.dumps(convert(docs), default=str)}\n\n"
        finally:
            unsubscribe()
            logger.debug('Stream closed for %s', collection_path)

    return Response(generate(), mimetype='text/event-stream', headers={'Cache-Control': 'no-cache'})


@app.route('/api/tracks/stream')
@require_user
def api_tracks_stream():
    return _stream_collection(
        tracks_path(g.uid),
        lambda docs: [_track_json(Track.from_dict(doc_id, data)) for doc_id, data in docs])


@app.route('/api/tracks/<track_id>/sessions/stream')
@require_user
def api_sessions_stream(track_id):
    return _stream_collection(
        sessions_path(g.uid, track_id),
        lambda docs: [session_summary(Session.from_dict(doc_id, data)) for doc_id, data in docs])


@app.errorhandler(404)
def page_not_found(e):
    logger.warning('404 Not Found: %s %s', request.method, request.path)
    return respond_error('Not found', 404)


@app.errorhandler(500)
def handle_500(e):
    logger.exception('Unhandled exception during request %s %s', request.method, request.path)
    return respond_error('Internal server error', 500)


if __name__ == "__main__":
    # In production use Gunicorn: `gunicorn rctracker.app:app` (the block below won't run).
    app.run(host='0.0.0.0', debug=config.DEBUG)
