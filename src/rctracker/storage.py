"""Document store used for tracks and sessions.

Documents are addressed by a collection path such as
``users/{uid}/tracks/{trackId}/sessions`` plus a document id. Two backends
exist: Firestore (USE_FIRESTORE=1) and per-collection JSON files under
CONFIG_DIR for local development and tests. Both raise PersistenceError on
failure; callers decide how to report it.
"""
import json
import logging
import os
import os.path
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from google.cloud import firestore as _gcf

from . import config
from .errors import PersistenceError

logger = logging.getLogger('RCTracker')

Document = Tuple[str, Dict[str, Any]]
Listener = Callable[[List[Document]], None]

COLLECTION_FILE_TEMPLATE = "collection_{name}.json"


def tracks_path(uid) -> str:
    return f"users/{uid}/tracks"


def sessions_path(uid, track_id) -> str:
    return f"users/{uid}/tracks/{track_id}/sessions"


class DocumentStore:
    def add(self, collection_path: str, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    def get(self, collection_path: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def update(self, collection_path: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Replace the given top-level fields of an existing document."""
        raise NotImplementedError

    def delete(self, collection_path: str, doc_id: str) -> None:
        raise NotImplementedError

    def list(self, collection_path: str) -> List[Document]:
        raise NotImplementedError

    def subscribe(self, collection_path: str, callback: Listener) -> Callable[[], None]:
        """Call `callback` with the whole collection now and after every change.

        Returns a callable that stops the subscription.
        """
        raise NotImplementedError


class FirestoreStore(DocumentStore):
    def __init__(self, client=None):
        self._client = client

    @property
    def db(self):
        if self._client is None:
            self._client = _gcf.Client()
        return self._client

    def add(self, collection_path, data):
        try:
            _, ref = self.db.collection(collection_path).add(data)
            return ref.id
        except Exception as e:
            logger.exception('Error adding document to %s', collection_path)
            raise PersistenceError(f'Unable to add document to {collection_path}: {e}') from e

    def get(self, collection_path, doc_id):
        try:
            doc = self.db.collection(collection_path).document(str(doc_id)).get()
        except Exception as e:
            logger.exception('Error reading document %s/%s', collection_path, doc_id)
            raise PersistenceError(f'Unable to read {collection_path}/{doc_id}: {e}') from e
        return doc.to_dict() if doc.exists else None

    def update(self, collection_path, doc_id, fields):
        try:
            self.db.collection(collection_path).document(str(doc_id)).update(fields)
        except Exception as e:
            logger.exception('Error updating document %s/%s', collection_path, doc_id)
            raise PersistenceError(f'Unable to update {collection_path}/{doc_id}: {e}') from e

    def delete(self, collection_path, doc_id):
        try:
            self.db.collection(collection_path).document(str(doc_id)).delete()
        except Exception as e:
            logger.exception('Error deleting document %s/%s', collection_path, doc_id)
            raise PersistenceError(f'Unable to delete {collection_path}/{doc_id}: {e}') from e

    def list(self, collection_path):
        try:
            return [(doc.id, doc.to_dict() or {}) for doc in self.db.collection(collection_path).stream()]
        except Exception as e:
            logger.exception('Error listing %s', collection_path)
            raise PersistenceError(f'Unable to list {collection_path}: {e}') from e

    def subscribe(self, collection_path, callback):
        def on_snapshot(docs, changes, read_time):
            try:
                callback([(doc.id, doc.to_dict() or {}) for doc in docs])
            except Exception:
                logger.exception('Snapshot listener failed for %s', collection_path)

        try:
            watch = self.db.collection(collection_path).on_snapshot(on_snapshot)
        except Exception as e:
            logger.exception('Firestore snapshot error for %s', collection_path)
            raise PersistenceError(f'Unable to subscribe to {collection_path}: {e}') from e
        return watch.unsubscribe


class LocalFileStore(DocumentStore):
    """One JSON file per collection, written atomically via a temp file."""

    def __init__(self, base_dir=None):
        self.base_dir = base_dir or config.CONFIG_DIR
        self._lock = threading.RLock()
        self._listeners: Dict[str, List[Listener]] = {}

    def _filename(self, collection_path):
        name = collection_path.strip('/').replace('/', '__')
        return os.path.join(self.base_dir, COLLECTION_FILE_TEMPLATE.format(name=name))

    def _read(self, collection_path) -> Dict[str, Dict[str, Any]]:
        fn = self._filename(collection_path)
        try:
            with open(fn, 'r') as f:
                return json.load(f)
        except FileNotFoundError:
            return {}
        except Exception as e:
            logger.exception('Error loading json file %s', fn)
            raise PersistenceError(f'Unable to read {collection_path}: {e}') from e

    def _write(self, collection_path, docs):
        fn = self._filename(collection_path)
        try:
            os.makedirs(self.base_dir, exist_ok=True)
            with open(fn + ".tmp", 'w') as f:
                json.dump(docs, f, default=str)
            os.replace(fn + ".tmp", fn)  # atomic replace
        except Exception as e:
            logger.exception('Error writing json file %s', fn)
            raise PersistenceError(f'Unable to write {collection_path}: {e}') from e

    def _notify(self, collection_path):
        with self._lock:
            listeners = list(self._listeners.get(collection_path, []))
        if not listeners:
            return
        docs = self.list(collection_path)
        for listener in listeners:
            try:
                listener(docs)
            except Exception:
                logger.exception('Listener failed for %s', collection_path)

    def add(self, collection_path, data):
        doc_id = uuid.uuid4().hex
        with self._lock:
            docs = self._read(collection_path)
            docs[doc_id] = dict(data)
            self._write(collection_path, docs)
        self._notify(collection_path)
        return doc_id

    def get(self, collection_path, doc_id):
        with self._lock:
            return self._read(collection_path).get(str(doc_id))

    def update(self, collection_path, doc_id, fields):
        with self._lock:
            docs = self._read(collection_path)
            if str(doc_id) not in docs:
                raise PersistenceError(f'No document to update: {collection_path}/{doc_id}')
            for k, v in fields.items():
                docs[str(doc_id)][k] = v
            self._write(collection_path, docs)
        self._notify(collection_path)

    def delete(self, collection_path, doc_id):
        with self._lock:
            docs = self._read(collection_path)
            if docs.pop(str(doc_id), None) is None:
                # Firestore deletes of missing documents succeed too
                logger.debug('Delete of missing document %s/%s', collection_path, doc_id)
                return
            self._write(collection_path, docs)
        self._notify(collection_path)

    def list(self, collection_path):
        with self._lock:
            return list(self._read(collection_path).items())

    def subscribe(self, collection_path, callback):
        with self._lock:
            self._listeners.setdefault(collection_path, []).append(callback)
        callback(self.list(collection_path))

        def unsubscribe():
            with self._lock:
                listeners = self._listeners.get(collection_path, [])
                if callback in listeners:
                    listeners.remove(callback)
        return unsubscribe


def make_store() -> DocumentStore:
    if config.USE_FIRESTORE:
        logger.info('Using Firestore document store')
        return FirestoreStore()
    logger.info('Using local JSON document store in %s', config.CONFIG_DIR)
    return LocalFileStore(config.CONFIG_DIR)
