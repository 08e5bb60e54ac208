"""
Pass Query Service: live view of the signed-in student's passes
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from models.passes import Pass
from .classifier import PassBuckets, classify
from .errors import CorePassError, NotSignedIn, StoreReadFailure, ValidationFailure
from .progress import format_countdown, progress_for_pass, remaining_seconds
from .store import PassStore, Subscription

logger = logging.getLogger(__name__)


class PassQueryService:
    def __init__(self, store: PassStore, session_provider):
        """
        Initialize PassQueryService.

        Args:
            store: PassStore the live query runs against
            session_provider: SessionProvider resolving the signed-in uid
        """
        self.store = store
        self.session = session_provider
        self._subscription: Optional[Subscription] = None
        self._lock = threading.Lock()

    def _require_uid(self, uid: Optional[str] = None) -> str:
        uid = uid or self.session.current_user_id()
        if not uid:
            raise NotSignedIn()
        return uid

    def subscribe(self, on_change: Callable[[List[Pass]], None],
                  on_error: Optional[Callable[[StoreReadFailure], None]] = None,
                  uid: Optional[str] = None) -> Subscription:
        """Start a live query of the user's passes, newest first.

        on_change always receives the complete current snapshot. Any previous
        subscription held by this service is released first.
        """
        self.unsubscribe()
        uid = self._require_uid(uid)
        subscription = self.store.watch_author(uid, on_change, on_error)
        # Concurrent subscribers each cancel whatever they displaced
        with self._lock:
            previous, self._subscription = self._subscription, subscription
        if previous is not None:
            previous.cancel()
        return subscription

    def unsubscribe(self, handle: Optional[Subscription] = None) -> None:
        with self._lock:
            if handle is None or handle is self._subscription:
                handle, self._subscription = handle or self._subscription, None
        if handle is not None:
            handle.cancel()

    def end_pass(self, pass_id: Optional[str]) -> None:
        """Mark a pass inactive. The live query reflects the change; nothing local is touched."""
        if not pass_id:
            raise ValidationFailure("Missing pass id.")
        uid = self._require_uid()
        self.store.update_pass(pass_id, {'active': False}, author=uid)
        logger.info("Pass %s ended by %s", pass_id, uid)

    def fetch(self, uid: Optional[str] = None) -> PassBuckets:
        """One-shot read and classification"""
        return classify(self.store.passes_for_author(self._require_uid(uid)))


class PassFeed:
    """Holds the latest classified snapshot for one viewer.

    Errors end up in `error` instead of being raised, so nothing escapes the
    store's callback thread.
    """

    def __init__(self, query_service: PassQueryService):
        self.query = query_service
        self.buckets = PassBuckets(None, [], [])
        self.error: Optional[str] = None
        self.loading = True
        self.version = 0
        self._lock = threading.Lock()

    def _bump(self):
        self.version += 1

    def start(self) -> None:
        self.stop()
        with self._lock:
            self.loading = True
        try:
            self.query.subscribe(self._on_snapshot, on_error=self._on_error)
        except NotSignedIn as e:
            with self._lock:
                self.error = e.message
                self.loading = False
                self._bump()

    def stop(self) -> None:
        self.query.unsubscribe()

    def _on_snapshot(self, passes: List[Pass]) -> None:
        buckets = classify(passes)
        with self._lock:
            self.buckets = buckets
            self.error = None
            self.loading = False
            self._bump()

    def _on_error(self, failure: StoreReadFailure) -> None:
        with self._lock:
            self.error = failure.message
            self.loading = False
            self._bump()

    def end(self, pass_record: Pass) -> bool:
        try:
            self.query.end_pass(pass_record.id)
            return True
        except CorePassError as e:
            with self._lock:
                self.error = e.message
                self._bump()
            return False

    def payload(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            buckets, error, loading = self.buckets, self.error, self.loading
        return build_passes_payload(buckets, now, error=error, loading=loading)


def build_passes_payload(buckets: PassBuckets, now: datetime,
                         error: Optional[str] = None, loading: bool = False) -> Dict[str, Any]:
    """
    Single source of truth for the passes JSON body.
    Active pass progress is computed against `now`; clients re-poll or
    listen on the stream to keep the countdown moving.
    """
    payload: Dict[str, Any] = buckets.to_dict()
    payload.update({"error": error, "loading": loading, "progress": None})

    active = buckets.active
    if active is not None:
        p = progress_for_pass(active, now)
        left = remaining_seconds(active.start_time or now, active.duration or 0, now)
        payload["progress"] = {
            "fraction": p.fraction,
            "percent": p.percent,
            "remaining_minutes": p.remaining_minutes,
            "remaining_label": p.remaining_label,
            "countdown": format_countdown(left),
        }
    return payload
