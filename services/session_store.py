"""
Session Store: one document per cooperative session.

Two backends share the same contract:

- ``FirestoreSessionStore`` keeps every session in a Firestore collection and
  relies on Firestore transactions and ``on_snapshot`` listeners.
- ``InMemorySessionStore`` keeps documents in process memory behind a lock.
  It understands Firestore's ``ArrayUnion`` / ``ArrayRemove`` / ``DELETE_FIELD``
  sentinels so the coordinator writes the same updates to both backends.

Update keys are Firestore field paths (``"activeSelections.`p-1`"``); build
them with ``field_path()`` so that ids containing dashes are quoted.
"""

import copy
import threading
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, TypeVar

from firebase_admin import firestore  # ArrayUnion, ArrayRemove, DELETE_FIELD, transactional
from google.api_core.exceptions import AlreadyExists, GoogleAPICallError, NotFound, ServiceUnavailable
from google.cloud.firestore import Client as FirestoreClient, FieldFilter
from google.cloud.firestore_v1.field_path import parse_field_path, render_field_path

from utils.config import COOPERATIVE_COLLECTION, LISTENER_CHECK_SEC, SESSION_STORE_BACKEND
from utils.firebase import get_db
from utils.logger import logger

T = TypeVar("T")

Document = Dict[str, Any]
OnChange = Callable[[Optional[Document]], None]
OnError = Callable[[Exception], None]
Unsubscribe = Callable[[], None]

# Returned by a transaction function instead of an update mapping to remove the document.
DELETE_DOCUMENT = object()

TransactionFn = Callable[[Optional[Document]], Tuple[Any, T]]


def field_path(*names: str) -> str:
    return render_field_path(list(names))


class SessionStore(Protocol):
    supports_nested_arrays: bool

    def create(self, doc_id: str, data: Document) -> None: ...
    def get(self, doc_id: str) -> Optional[Document]: ...
    def update(self, doc_id: str, updates: Document) -> None: ...
    def delete(self, doc_id: str) -> None: ...
    def find_one(self, filters: Dict[str, Any]) -> Optional[Tuple[str, Document]]: ...
    def transact(self, doc_id: str, fn: TransactionFn) -> T: ...
    def subscribe(self, doc_id: str, on_change: OnChange, on_error: OnError) -> Unsubscribe: ...


# ─── Firestore ─────────────────────────────────────────────────────────────────
class _ListenerGuard:
    """
    Polls a Firestore watch and reports a listener that stopped on its own.

    The watch closes itself on a non-recoverable stream error without calling
    any user callback, so ``is_active`` is the only signal.
    """

    def __init__(self, watch, doc_id: str, on_error: OnError, interval: float, timer_factory):
        self._watch = watch
        self._doc_id = doc_id
        self._on_error = on_error
        self._interval = interval
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._stopped = False
        self._timer = None

    def start(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._timer = self._timer_factory(self._interval, self._check)
            self._timer.daemon = True
            self._timer.start()

    def _check(self) -> None:
        with self._lock:
            if self._stopped:
                return
            alive = self._watch.is_active
            if not alive:
                self._stopped = True
                self._timer = None
        if alive:
            self.start()
            return
        logger.warning(f"Listener for session {self._doc_id} stopped")
        self._on_error(ServiceUnavailable(f"Listener for {self._doc_id} stopped"))

    def unsubscribe(self) -> None:
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._watch.unsubscribe()


def _run_transaction(transaction, ref, fn: TransactionFn):
    snap = ref.get(transaction=transaction)
    write, result = fn(snap.to_dict() if snap.exists else None)
    if write is DELETE_DOCUMENT:
        transaction.delete(ref)
    elif write:
        transaction.update(ref, write)
    return result


class FirestoreSessionStore:
    supports_nested_arrays = False

    def __init__(
        self,
        db: FirestoreClient,
        collection: str = COOPERATIVE_COLLECTION,
        listener_check_sec: float = LISTENER_CHECK_SEC,
        timer_factory=threading.Timer,
    ):
        self._db = db
        self._collection = db.collection(collection)
        self._listener_check_sec = listener_check_sec
        self._timer_factory = timer_factory

    def _ref(self, doc_id: str):
        return self._collection.document(doc_id)

    def create(self, doc_id: str, data: Document) -> None:
        self._ref(doc_id).create(data)

    def get(self, doc_id: str) -> Optional[Document]:
        snap = self._ref(doc_id).get()
        return snap.to_dict() if snap.exists else None

    def update(self, doc_id: str, updates: Document) -> None:
        self._ref(doc_id).update(updates)

    def delete(self, doc_id: str) -> None:
        self._ref(doc_id).delete()

    def find_one(self, filters: Dict[str, Any]) -> Optional[Tuple[str, Document]]:
        query = self._collection
        for name, value in filters.items():
            query = query.where(filter=FieldFilter(name, "==", value))
        for snap in query.limit(1).stream():
            return snap.id, snap.to_dict()
        return None

    def transact(self, doc_id: str, fn: TransactionFn) -> T:
        """
        Run ``fn`` against the freshest copy of the document inside a Firestore
        transaction. ``fn`` returns ``(write, result)``; ``write`` is ``None``
        (read only), an update mapping, or ``DELETE_DOCUMENT``.
        """
        run = firestore.transactional(_run_transaction)
        return run(self._db.transaction(), self._ref(doc_id), fn)

    def subscribe(self, doc_id: str, on_change: OnChange, on_error: OnError) -> Unsubscribe:
        def _on_snapshot(snapshots, _changes, _read_time):
            try:
                snap = snapshots[0] if snapshots else None
                on_change(snap.to_dict() if snap is not None and snap.exists else None)
            except Exception as exc:
                # the watch thread only logs callback errors; hand them to the caller instead
                on_error(exc)

        try:
            watch = self._ref(doc_id).on_snapshot(_on_snapshot)
        except GoogleAPICallError as exc:
            on_error(exc)
            return lambda: None

        guard = _ListenerGuard(watch, doc_id, on_error, self._listener_check_sec, self._timer_factory)
        guard.start()
        return guard.unsubscribe


# ─── In-memory ─────────────────────────────────────────────────────────────────
def _apply_updates(doc: Document, updates: Document) -> None:
    for path, value in updates.items():
        keys = parse_field_path(path)
        parent = doc
        for key in keys[:-1]:
            if not isinstance(parent.get(key), dict):
                parent[key] = {}
            parent = parent[key]
        leaf = keys[-1]

        if value is firestore.DELETE_FIELD:
            parent.pop(leaf, None)
        elif isinstance(value, firestore.ArrayUnion):
            current = list(parent.get(leaf) or [])
            for item in value.values:
                if item not in current:
                    current.append(copy.deepcopy(item))
            parent[leaf] = current
        elif isinstance(value, firestore.ArrayRemove):
            parent[leaf] = [item for item in (parent.get(leaf) or []) if item not in value.values]
        else:
            parent[leaf] = copy.deepcopy(value)


class InMemorySessionStore:
    """Process-local store with the same semantics as ``FirestoreSessionStore``."""

    def __init__(self, supports_nested_arrays: bool = True):
        self.supports_nested_arrays = supports_nested_arrays
        self._docs: Dict[str, Document] = {}
        self._subscribers: Dict[str, Dict[int, Tuple[OnChange, OnError]]] = {}
        self._next_token = 0
        self._lock = threading.RLock()

    def create(self, doc_id: str, data: Document) -> None:
        with self._lock:
            if doc_id in self._docs:
                raise AlreadyExists(f"Document {doc_id} already exists")
            self._docs[doc_id] = copy.deepcopy(data)
        self._notify(doc_id)

    def get(self, doc_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._docs.get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def update(self, doc_id: str, updates: Document) -> None:
        with self._lock:
            if doc_id not in self._docs:
                raise NotFound(f"No document to update: {doc_id}")
            _apply_updates(self._docs[doc_id], updates)
        self._notify(doc_id)

    def delete(self, doc_id: str) -> None:
        with self._lock:
            self._docs.pop(doc_id, None)
        self._notify(doc_id)

    def find_one(self, filters: Dict[str, Any]) -> Optional[Tuple[str, Document]]:
        with self._lock:
            for doc_id, doc in self._docs.items():
                if all(doc.get(name) == value for name, value in filters.items()):
                    return doc_id, copy.deepcopy(doc)
        return None

    def transact(self, doc_id: str, fn: TransactionFn) -> T:
        with self._lock:
            current = self._docs.get(doc_id)
            write, result = fn(copy.deepcopy(current) if current is not None else None)
            if write is DELETE_DOCUMENT:
                self._docs.pop(doc_id, None)
            elif write:
                if current is None:
                    raise NotFound(f"No document to update: {doc_id}")
                _apply_updates(self._docs[doc_id], write)
        if write is not None:
            self._notify(doc_id)
        return result

    def subscribe(self, doc_id: str, on_change: OnChange, on_error: OnError) -> Unsubscribe:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers.setdefault(doc_id, {})[token] = (on_change, on_error)
            current = copy.deepcopy(self._docs.get(doc_id))

        def _unsubscribe() -> None:
            with self._lock:
                self._subscribers.get(doc_id, {}).pop(token, None)

        # как и Firestore, сразу отдаём текущее состояние
        try:
            on_change(current)
        except Exception as exc:
            on_error(exc)
        return _unsubscribe

    def _notify(self, doc_id: str) -> None:
        with self._lock:
            listeners = list(self._subscribers.get(doc_id, {}).values())
            doc = self._docs.get(doc_id)
            # снимок делаем под локом: другие писатели меняют документ на месте
            snapshot = copy.deepcopy(doc) if doc is not None else None
        for on_change, on_error in listeners:
            try:
                on_change(copy.deepcopy(snapshot) if snapshot is not None else None)
            except Exception as exc:
                on_error(exc)


# ─── Dependency ────────────────────────────────────────────────────────────────
_store: Optional[SessionStore] = None

def get_store() -> SessionStore:
    """
    Return the process-wide session store selected by SESSION_STORE_BACKEND.
    """
    global _store
    if _store is None:
        if SESSION_STORE_BACKEND == "memory":
            logger.info("Using in-memory session store")
            _store = InMemorySessionStore()
        else:
            _store = FirestoreSessionStore(get_db())
    return _store
