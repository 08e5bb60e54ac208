"""
Pass Submission Service: room list and new pass requests
"""
import logging
import threading
from enum import Enum
from typing import List, Optional

from models.passes import PassStatus
from .errors import NotSignedIn, StoreReadFailure, StoreWriteFailure, ValidationFailure
from .store import PassStore

logger = logging.getLogger(__name__)


class PassSubmissionService:
    def __init__(self, store: PassStore, school_id: Optional[str] = None):
        """
        Initialize PassSubmissionService.

        Args:
            store: PassStore that receives new requests
            school_id: optional school tag written on every request
        """
        self.store = store
        self.school_id = school_id

    def list_rooms(self) -> List[str]:
        """Unique room names, sorted"""
        return sorted(set(self.store.room_names()))

    def submit(self, from_room: str, to_room: str, duration_minutes: Optional[int], uid: str) -> str:
        """Write a new pending request. Callers validate first; returns the new pass id."""
        fields = {
            'author': uid,
            'fromRoom': from_room,
            'toRoom': to_room,
            'approved': PassStatus.PENDING.value,
            'active': False,
            # created_at comes from the store; start_time stays absent
        }
        if duration_minutes is not None:
            fields['duration'] = duration_minutes
        if self.school_id:
            fields['schoolId'] = self.school_id
        return self.store.create_pass(fields)


class SubmitState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"


class SubmitOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    BUSY = "busy"  # another submission was already in flight


_SELECTION_FIELDS = ('start', 'destination', 'duration_minutes')


class SubmissionForm:
    """Caller-side state for requesting a pass: Idle -> Submitting -> Idle."""

    def __init__(self, service: PassSubmissionService, session_provider, default_duration: Optional[int] = 10):
        self.service = service
        self.session = session_provider

        # Inputs
        self.start: Optional[str] = None
        self.destination: Optional[str] = None
        self.duration_minutes = default_duration

        # Rooms
        self.rooms: List[str] = []
        self.rooms_loading = True
        self.load_error: Optional[str] = None

        # Submit state
        self.state = SubmitState.IDLE
        self.message: Optional[str] = None
        self._in_flight = threading.Lock()

    @property
    def is_submitting(self) -> bool:
        return self.state is SubmitState.SUBMITTING

    def load_rooms(self) -> bool:
        self.rooms_loading = True
        self.load_error = None
        try:
            self.rooms = self.service.list_rooms()
            return True
        except StoreReadFailure as e:
            logger.warning("Room list failed: %s", e)
            self.load_error = e.message
            return False
        finally:
            self.rooms_loading = False

    def validate(self) -> str:
        """Raise ValidationFailure unless the form may be sent; returns the uid."""
        if self.rooms_loading:
            raise ValidationFailure("Rooms are still loading.")
        if not self.start or not self.destination:
            raise ValidationFailure("Choose a starting point and a destination.")
        if self.start == self.destination:
            raise ValidationFailure("Starting point and destination must differ.")
        if self.start not in self.rooms or self.destination not in self.rooms:
            raise ValidationFailure("Unknown room.")
        uid = self.session.current_user_id()
        if not uid:
            raise NotSignedIn()
        return uid

    def can_submit(self) -> bool:
        try:
            self.validate()
        except (ValidationFailure, NotSignedIn):
            return False
        return True

    def submit(self, refresh_rooms: bool = False, **selection) -> SubmitOutcome:
        """Send the current selection (optionally replacing start/destination/duration_minutes first).

        With refresh_rooms the room list is re-read before validating, so rooms
        added since the last load are accepted. Validation failures raise and
        never touch the store. A store failure keeps the inputs and leaves the
        reason in `message`.
        """
        unknown = set(selection) - set(_SELECTION_FIELDS)
        if unknown:
            raise TypeError(f"Unexpected selection fields: {', '.join(sorted(unknown))}")

        if not self._in_flight.acquire(blocking=False):
            logger.info("Ignoring pass request while another is in flight")
            return SubmitOutcome.BUSY
        try:
            if refresh_rooms and not self.load_rooms():
                self.message = f"Failed to load rooms: {self.load_error}"
                return SubmitOutcome.FAILED
            for key, value in selection.items():
                setattr(self, key, value)
            uid = self.validate()

            self.state = SubmitState.SUBMITTING
            try:
                self.service.submit(self.start, self.destination, self.duration_minutes, uid)
            except StoreWriteFailure as e:
                self.message = f"Failed to submit: {e.message}"
                return SubmitOutcome.FAILED

            self.message = "Your pass request was sent."
            # Reset picks (keep duration)
            self.start = None
            self.destination = None
            return SubmitOutcome.SENT
        finally:
            self.state = SubmitState.IDLE
            self._in_flight.release()
