"""
Pass Store: the document store behind passes and rooms
SQLAlchemyPassStore backs production; MemoryPassStore backs previews and tests
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from flask import has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.passes import Pass, as_utc
from .errors import PassNotFound, StoreReadFailure, StoreWriteFailure

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[Pass]], None]
ErrorCallback = Callable[[StoreReadFailure], None]

# Only lifecycle fields may change after creation
UPDATABLE_FIELDS = ('active', 'approved', 'start_time')


def _decode_all(docs: Iterable[Tuple[str, Dict[str, Any]]]) -> List[Pass]:
    """Decode documents, dropping any that don't parse."""
    passes = []
    for doc_id, doc in docs:
        try:
            passes.append(Pass.from_document(doc_id, doc))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Dropping malformed pass %s: %r", doc_id, e)
    return passes


class Subscription:
    """Handle for a live query. cancel() is idempotent and safe from any state;
    once it returns, no further callbacks fire."""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._lock = threading.RLock()
        self._cancelled = threading.Event()
        self._on_cancel = on_cancel

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            on_cancel, self._on_cancel = self._on_cancel, None
        if on_cancel:
            on_cancel()

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout; True if cancelled meanwhile"""
        return self._cancelled.wait(timeout)

    def deliver(self, callback: Callable, *args) -> bool:
        """Invoke callback unless cancelled. Callback errors are logged, never raised."""
        with self._lock:
            if self._cancelled.is_set():
                return False
            try:
                callback(*args)
            except Exception:
                logger.exception("Subscription callback failed")
            return True


class PassStore:
    """Capability set every store variant provides."""

    def passes_for_author(self, uid: str) -> List[Pass]:
        raise NotImplementedError

    def watch_author(self, uid: str, on_snapshot: SnapshotCallback,
                     on_error: Optional[ErrorCallback] = None) -> Subscription:
        raise NotImplementedError

    def create_pass(self, fields: Dict[str, Any]) -> str:
        raise NotImplementedError

    def update_pass(self, pass_id: str, fields: Dict[str, Any], author: Optional[str] = None) -> None:
        raise NotImplementedError

    def room_names(self) -> List[str]:
        raise NotImplementedError

    def add_room(self, name: str) -> None:
        raise NotImplementedError


def _plain(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of fields with enum members replaced by their stored values and times moved to UTC"""
    plain = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            # SQLite drops the offset on write, so only UTC survives a round trip
            value = as_utc(value)
        plain[key] = value
    return plain


def _checked_update(fields: Dict[str, Any]) -> Dict[str, Any]:
    for key in fields:
        if key not in UPDATABLE_FIELDS:
            raise StoreWriteFailure(f"Field '{key}' cannot be updated.")
    return _plain(fields)


class SQLAlchemyPassStore(PassStore):
    def __init__(self, app, db, pass_model, room_model, poll_seconds: float = 0.5):
        """
        Initialize SQLAlchemyPassStore.

        Args:
            app: Flask app (watch threads push their own app context)
            db: SQLAlchemy database instance
            pass_model: PassDocument model class
            room_model: Room model class
            poll_seconds: how often live queries re-read the table
        """
        self.app = app
        self.db = db
        self.PassDocument = pass_model
        self.Room = room_model
        self.poll_seconds = poll_seconds

    @contextmanager
    def _context(self):
        if has_app_context():
            yield
        else:
            with self.app.app_context():
                yield

    def _rollback(self):
        try:
            self.db.session.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed")

    def _query_author(self, uid: str) -> List[Pass]:
        rows = (self.PassDocument.query
                .filter_by(author=uid)
                .order_by(self.PassDocument.created_at.desc())
                .all())
        return _decode_all((row.id, row.to_document()) for row in rows)

    def passes_for_author(self, uid: str) -> List[Pass]:
        with self._context():
            try:
                return self._query_author(uid)
            except SQLAlchemyError as e:
                self._rollback()
                logger.warning("Pass query failed for %s: %s", uid, e)
                raise StoreReadFailure(f"Could not load passes: {e}") from e

    def watch_author(self, uid, on_snapshot, on_error=None):
        sub = Subscription()
        thread = threading.Thread(
            target=self._poll, args=(uid, sub, on_snapshot, on_error),
            name=f"pass-watch-{uid}", daemon=True,
        )
        thread.start()
        return sub

    def _poll(self, uid, sub, on_snapshot, on_error):
        last_snapshot = None
        with self.app.app_context():
            while sub.active:
                # Reset transaction to see updates from other requests
                self._rollback()
                try:
                    snapshot = self._query_author(uid)
                except SQLAlchemyError as e:
                    self._rollback()
                    logger.warning("Live pass query failed for %s: %s", uid, e)
                    if on_error is not None:
                        sub.deliver(on_error, StoreReadFailure(f"Could not load passes: {e}"))
                    sub.cancel()
                    return

                if snapshot != last_snapshot:
                    sub.deliver(on_snapshot, snapshot)
                    last_snapshot = snapshot

                if sub.wait(self.poll_seconds):
                    return

    def create_pass(self, fields):
        fields = _plain(fields)
        pass_id = uuid.uuid4().hex
        with self._context():
            row = self.PassDocument(
                id=pass_id,
                author=fields['author'],
                from_room=fields['fromRoom'],
                to_room=fields['toRoom'],
                approved=fields.get('approved', 'pending'),
                active=bool(fields.get('active', False)),
                start_time=fields.get('start_time'),
                duration=fields.get('duration'),
                school_id=fields.get('schoolId') or None,
            )
            # Seeded history may carry its own timestamp; requests never do
            if fields.get('created_at') is not None:
                row.created_at = fields['created_at']
            try:
                self.db.session.add(row)
                self.db.session.commit()
                return pass_id
            except IntegrityError as e:
                self._rollback()
                raise StoreWriteFailure("Author already has an active pass.") from e
            except SQLAlchemyError as e:
                self._rollback()
                logger.warning("Pass create failed: %s", e)
                raise StoreWriteFailure(f"Could not save pass: {e}") from e

    def update_pass(self, pass_id, fields, author=None):
        fields = _checked_update(fields)
        with self._context():
            try:
                query = self.PassDocument.query.filter_by(id=pass_id)
                if author is not None:
                    query = query.filter_by(author=author)
                row = query.first()
                if row is None:
                    raise PassNotFound(f"No pass with id {pass_id}.")
                for key, value in fields.items():
                    setattr(row, key, value)
                self.db.session.commit()
            except IntegrityError as e:
                self._rollback()
                raise StoreWriteFailure("Author already has an active pass.") from e
            except SQLAlchemyError as e:
                self._rollback()
                logger.warning("Pass update failed for %s: %s", pass_id, e)
                raise StoreWriteFailure(f"Could not update pass: {e}") from e

    def room_names(self):
        with self._context():
            try:
                return [room.name for room in self.Room.query.all()]
            except SQLAlchemyError as e:
                self._rollback()
                logger.warning("Room fetch failed: %s", e)
                raise StoreReadFailure(f"Could not load rooms: {e}") from e

    def add_room(self, name):
        with self._context():
            try:
                self.db.session.add(self.Room(name=name))
                self.db.session.commit()
            except SQLAlchemyError as e:
                self._rollback()
                raise StoreWriteFailure(f"Could not save room: {e}") from e


class MemoryPassStore(PassStore):
    """In-process store. Watchers are notified synchronously on every write."""

    def __init__(self, rooms: Optional[Iterable[str]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self._lock = threading.RLock()
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._rooms: List[str] = list(rooms or [])
        self._watchers: Dict[int, Tuple[str, Subscription, SnapshotCallback, Optional[ErrorCallback]]] = {}
        self._next_watch = 0
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _snapshot(self, uid: str) -> List[Pass]:
        passes = _decode_all(
            (doc_id, doc) for doc_id, doc in self._docs.items() if doc.get('author') == uid
        )
        return sorted(passes, key=lambda p: p.created_at, reverse=True)

    def _check_single_active(self, pass_id: str, doc: Dict[str, Any]) -> None:
        if not doc.get('active'):
            return
        for other_id, other in self._docs.items():
            if other_id != pass_id and other.get('author') == doc.get('author') and other.get('active'):
                raise StoreWriteFailure("Author already has an active pass.")

    def _notify(self, uid: str) -> None:
        with self._lock:
            snapshot = self._snapshot(uid)
            targets = [(sub, cb) for author, sub, cb, _ in self._watchers.values() if author == uid]
        for sub, callback in targets:
            sub.deliver(callback, list(snapshot))

    def passes_for_author(self, uid):
        with self._lock:
            return self._snapshot(uid)

    def watch_author(self, uid, on_snapshot, on_error=None):
        with self._lock:
            key = self._next_watch
            self._next_watch += 1
            sub = Subscription(on_cancel=lambda: self._watchers.pop(key, None))
            self._watchers[key] = (uid, sub, on_snapshot, on_error)
            snapshot = self._snapshot(uid)
        sub.deliver(on_snapshot, snapshot)
        return sub

    def fail_watchers(self, message: str) -> None:
        """Push a read failure to every live query and end them."""
        with self._lock:
            watchers = list(self._watchers.values())
        for _, sub, _, on_error in watchers:
            if on_error is not None:
                sub.deliver(on_error, StoreReadFailure(message))
            sub.cancel()

    def create_pass(self, fields):
        doc = _plain(fields)
        if doc.get('created_at') is None:
            doc['created_at'] = self._clock()
        with self._lock:
            pass_id = uuid.uuid4().hex
            self._check_single_active(pass_id, doc)
            self._docs[pass_id] = doc
        self._notify(doc.get('author'))
        return pass_id

    def update_pass(self, pass_id, fields, author=None):
        fields = _checked_update(fields)
        with self._lock:
            doc = self._docs.get(pass_id)
            if doc is None or (author is not None and doc.get('author') != author):
                raise PassNotFound(f"No pass with id {pass_id}.")
            updated = {**doc, **fields}
            self._check_single_active(pass_id, updated)
            self._docs[pass_id] = updated
        self._notify(updated.get('author'))

    def room_names(self):
        with self._lock:
            return list(self._rooms)

    def add_room(self, name):
        with self._lock:
            self._rooms.append(name)
