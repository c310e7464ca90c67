"""Track, session and run operations over the document store.

The current selection (user, track, session) is always passed in explicitly
as a TrackRef/SessionRef. Store errors propagate as PersistenceError to the
caller.
"""
import logging
import re
from typing import Any, Dict, List, NamedTuple, Optional

from .models import Run, Session, Track
from .storage import DocumentStore, sessions_path, tracks_path

logger = logging.getLogger('RCTracker')


class TrackRef(NamedTuple):
    uid: str
    track_id: str

    @property
    def sessions_path(self):
        return sessions_path(self.uid, self.track_id)


class SessionRef(NamedTuple):
    uid: str
    track_id: str
    session_id: str

    @property
    def track(self):
        return TrackRef(self.uid, self.track_id)


# --- Tracks ---
def list_tracks(store: DocumentStore, uid) -> List[Track]:
    return [Track.from_dict(doc_id, data) for doc_id, data in store.list(tracks_path(uid))]


def add_track(store: DocumentStore, uid, name, location=None) -> Optional[str]:
    if not uid or not name:
        logger.debug('add_track ignored: empty name or no user')
        return None
    track = Track(name=name, location=location)
    track_id = store.add(tracks_path(uid), track.toJSON())
    logger.info('Track added: %s (%s)', name, track_id)
    return track_id


def delete_track(store: DocumentStore, uid, track_id):
    # Sessions under the track are left in place
    store.delete(tracks_path(uid), track_id)
    logger.info('Track deleted: %s', track_id)


def filter_tracks(tracks: List[Track], query) -> List[Track]:
    if not query:
        return list(tracks)
    needle = query.lower()
    return [t for t in tracks if needle in (t.name or '').lower()]


# --- Sessions ---
def list_sessions(store: DocumentStore, track: TrackRef) -> List[Session]:
    return [Session.from_dict(doc_id, data) for doc_id, data in store.list(track.sessions_path)]


def get_session(store: DocumentStore, ref: SessionRef) -> Optional[Session]:
    data = store.get(ref.track.sessions_path, ref.session_id)
    if data is None:
        return None
    return Session.from_dict(ref.session_id, data)


def delete_session(store: DocumentStore, ref: SessionRef):
    store.delete(ref.track.sessions_path, ref.session_id)
    logger.info('Session deleted: %s', ref.session_id)


def favorite_count(session: Session) -> int:
    return len([r for r in session.runs if r.setup and r.setup.favorite])


def session_label(session: Session) -> str:
    return session.name or (session.date or '')[:10]


def session_summary(session: Session) -> Dict[str, Any]:
    out = session.toJSON()
    out['id'] = session.session_id
    out['label'] = session_label(session)
    out['favorites'] = favorite_count(session)
    return out


# --- Runs ---
def add_run(store: DocumentStore, ref: SessionRef, session: Session, run_fields: Dict[str, Any]) -> List[Run]:
    """Append a run built from raw form values; the whole runs list is rewritten."""
    if run_fields.get('fiveMinuteStint'):
        run_fields = dict(run_fields, fiveMinuteStint=format_stint(str(run_fields['fiveMinuteStint'])))
    new_run = Run.from_form(run_fields)
    updated_runs = session.runs + [new_run]
    store.update(ref.track.sessions_path, ref.session_id, {'runs': [r.toJSON() for r in updated_runs]})
    session.runs = updated_runs
    logger.info('Run added successfully to session: %s', ref.session_id)
    return updated_runs


def delete_run(store: DocumentStore, ref: SessionRef, session: Session, index: int) -> List[Run]:
    updated_runs = [r for i, r in enumerate(session.runs) if i != index]
    store.update(ref.track.sessions_path, ref.session_id, {'runs': [r.toJSON() for r in updated_runs]})
    session.runs = updated_runs
    logger.info('Run deleted at index: %s', index)
    return updated_runs


def format_stint(raw) -> str:
    """Progressively format a five-minute stint entry: '2350420' -> '23:5:04.2'."""
    value = re.sub(r"\D", '', raw or '')[:7]
    if len(value) >= 6:
        return f"{value[:2]}:{value[2:3]}:{value[3:5]}.{value[5:6]}"
    if len(value) >= 5:
        return f"{value[:2]}:{value[2:3]}:{value[3:5]}"
    if len(value) >= 3:
        return f"{value[:2]}:{value[2:]}"
    return value
