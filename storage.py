"""
Document storage for StudyFlow.

Two backends share one interface: Firestore (production) and an in-memory
store used in development mode and in tests. Every document carries its own
`id` field, as in the Firestore collections.
"""

import base64
import copy
import json
import logging
import operator
import os
import threading
import uuid

from models import NotFoundError

logger = logging.getLogger('studyflow.storage')

COLLECTIONS = ('users', 'tasks', 'events', 'subjects', 'modules', 'class_slots')

_OPERATORS = {
    '==': operator.eq,
    '!=': operator.ne,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
    'in': lambda value, options: value in options,
}


class BaseStore:
    """Operations shared by both backends."""

    def get_owned(self, collection, doc_id, user_id, label=None):
        """Fetch a document that must belong to `user_id`; anything else is not found."""
        doc = self.get(collection, doc_id) if doc_id else None
        if doc is None or doc.get('user_id') != user_id:
            raise NotFoundError(f"{label or 'Document'} not found")
        return doc

    def find_one(self, collection, filters=()):
        docs = self.find(collection, filters, limit=1)
        return docs[0] if docs else None


class MemoryStore(BaseStore):
    """Dict-backed document store. Documents are deep-copied in and out."""

    name = 'memory'

    def __init__(self):
        self._collections = {name: {} for name in COLLECTIONS}
        self._lock = threading.Lock()

    def _collection(self, name):
        return self._collections.setdefault(name, {})

    def create(self, collection, data):
        with self._lock:
            doc = copy.deepcopy(data)
            doc['id'] = doc.get('id') or uuid.uuid4().hex
            self._collection(collection)[doc['id']] = doc
            return copy.deepcopy(doc)

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, collection, filters=(), order_by=None, limit=None):
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._collection(collection).values()
                    if _matches(d, filters)]
        if order_by:
            # Missing values sort last, like an unset due date.
            docs.sort(key=lambda d: (d.get(order_by) is None, d.get(order_by) or 0))
        return docs[:limit] if limit else docs

    def count(self, collection, filters=()):
        with self._lock:
            return sum(1 for d in self._collection(collection).values() if _matches(d, filters))

    def update(self, collection, doc_id, changes):
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            if doc is None:
                return None
            doc.update(copy.deepcopy(changes))
            return copy.deepcopy(doc)

    def delete(self, collection, doc_id):
        with self._lock:
            return self._collection(collection).pop(doc_id, None) is not None

    def delete_where(self, collection, filters):
        with self._lock:
            docs = self._collection(collection)
            doomed = [doc_id for doc_id, d in docs.items() if _matches(d, filters)]
            for doc_id in doomed:
                del docs[doc_id]
            return len(doomed)

    def ping(self):
        return True


def _matches(doc, filters):
    for field, op, value in filters:
        current = doc.get(field)
        if op not in ('==', '!=', 'in') and current is None:
            return False
        try:
            if not _OPERATORS[op](current, value):
                return False
        except TypeError:
            return False
    return True


class FirestoreStore(BaseStore):
    """Firestore-backed document store."""

    name = 'firestore'

    def __init__(self, client):
        self.db = client

    def _query(self, collection, filters=(), order_by=None, limit=None):
        from google.cloud.firestore_v1.base_query import FieldFilter

        query = self.db.collection(collection)
        for field, op, value in filters:
            query = query.where(filter=FieldFilter(field, op, value))
        if order_by:
            query = query.order_by(order_by)
        if limit:
            query = query.limit(limit)
        return query

    def create(self, collection, data):
        doc_ref = self.db.collection(collection).document()
        doc = dict(data)
        doc['id'] = doc_ref.id
        doc_ref.set(doc)
        return doc

    def get(self, collection, doc_id):
        snapshot = self.db.collection(collection).document(doc_id).get()
        if not snapshot.exists:
            return None
        doc = snapshot.to_dict()
        doc['id'] = snapshot.id
        return doc

    def find(self, collection, filters=(), order_by=None, limit=None):
        docs = []
        for snapshot in self._query(collection, filters, order_by, limit).stream():
            doc = snapshot.to_dict()
            doc['id'] = snapshot.id
            docs.append(doc)
        return docs

    def count(self, collection, filters=()):
        results = self._query(collection, filters).count(alias='total').get()
        return int(results[0][0].value)

    def update(self, collection, doc_id, changes):
        doc_ref = self.db.collection(collection).document(doc_id)
        if not doc_ref.get().exists:
            return None
        doc_ref.update(changes)
        return self.get(collection, doc_id)

    def delete(self, collection, doc_id):
        doc_ref = self.db.collection(collection).document(doc_id)
        if not doc_ref.get().exists:
            return False
        doc_ref.delete()
        return True

    def delete_where(self, collection, filters):
        deleted = 0
        batch = self.db.batch()
        for snapshot in self._query(collection, filters).stream():
            batch.delete(snapshot.reference)
            deleted += 1
            # Firestore caps a batch at 500 writes.
            if deleted % 500 == 0:
                batch.commit()
                batch = self.db.batch()
        batch.commit()
        return deleted

    def ping(self):
        list(self.db.collections())
        return True


def load_firebase_credentials(base_dir=None):
    """Service-account credentials from FIREBASE_KEY_B64 or firebase_key.json, or None."""
    from firebase_admin import credentials

    firebase_key_b64 = os.getenv("FIREBASE_KEY_B64")
    if firebase_key_b64:
        # Decode the base64 string back into a JSON string
        firebase_key_json = base64.b64decode(firebase_key_b64).decode('utf-8')
        return credentials.Certificate(json.loads(firebase_key_json))

    base_dir = base_dir or os.path.dirname(os.path.abspath(__file__))
    key_path = os.path.join(base_dir, "firebase_key.json")
    if os.path.exists(key_path):
        return credentials.Certificate(key_path)
    return None


def init_store(backend=None):
    """
    Connect to Firestore, falling back to the in-memory store when Firebase
    is not configured or `backend` is "memory".
    """
    backend = (backend or os.getenv("STUDYFLOW_STORAGE", "firestore")).lower()
    if backend == 'memory':
        logger.info("Using in-memory document store")
        return MemoryStore()

    try:
        import firebase_admin
        from firebase_admin import firestore

        if not firebase_admin._apps:
            cred = load_firebase_credentials()
            if cred is None:
                raise RuntimeError("No Firebase credentials found (FIREBASE_KEY_B64 or firebase_key.json)")
            firebase_admin.initialize_app(cred)
        logger.info("Firebase initialized successfully!")
        return FirestoreStore(firestore.client())
    except Exception as e:
        logger.warning(f"Firebase initialization failed. Error: {e}")
        logger.warning("⚠️  Running in development mode with the in-memory store - data is not persisted")
        return MemoryStore()
