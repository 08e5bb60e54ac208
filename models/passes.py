"""
Pass Model: a student's request to move between two rooms for a bounded time
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional


class PassStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stores may hand back naive timestamps; those are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Pass:
    author: str
    from_room: str
    to_room: str
    created_at: datetime
    approved: PassStatus = PassStatus.PENDING
    start_time: Optional[datetime] = None
    duration: Optional[int] = None  # minutes
    active: bool = False
    id: Optional[str] = None  # assigned by the store on first write

    @classmethod
    def from_document(cls, doc_id: Optional[str], doc: Dict[str, Any]) -> "Pass":
        """Decode a stored document (wire field names). Raises KeyError/ValueError on malformed data."""
        duration = doc.get("duration")
        return cls(
            id=doc_id,
            author=doc["author"],
            from_room=doc["fromRoom"],
            to_room=doc["toRoom"],
            created_at=as_utc(doc["created_at"]),
            approved=PassStatus(doc["approved"]),
            start_time=as_utc(doc.get("start_time")),
            duration=int(duration) if duration is not None else None,
            active=bool(doc.get("active", False)),
        )

    @property
    def is_running(self) -> bool:
        return self.approved is PassStatus.APPROVED and self.active

    @property
    def ends_at(self) -> Optional[datetime]:
        if self.start_time is None or self.duration is None:
            return None
        return self.start_time + timedelta(minutes=self.duration)

    def to_dict(self) -> Dict[str, Any]:
        ends_at = self.ends_at
        return {
            "id": self.id,
            "author": self.author,
            "fromRoom": self.from_room,
            "toRoom": self.to_room,
            "created_at": self.created_at.isoformat(),
            "approved": self.approved.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "duration": self.duration,
            "active": self.active,
            "running": self.is_running,
            "ends_at": ends_at.isoformat() if ends_at else None,
        }


def create_pass_model(db):
    """Factory function to create the PassDocument model with the given db instance.

    Column names follow the document field names the client reads
    (created_at, start_time); room columns are snake_case and mapped
    back to fromRoom/toRoom by to_document().
    """

    class PassDocument(db.Model):
        __tablename__ = 'passes'

        id = db.Column(db.String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
        author = db.Column(db.String(255), nullable=False, index=True)
        from_room = db.Column(db.String(255), nullable=False)
        to_room = db.Column(db.String(255), nullable=False)

        # Server-assigned so ordering never depends on a client clock
        created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                               server_default=db.func.now(), index=True)

        approved = db.Column(db.String(16), nullable=False, default=PassStatus.PENDING.value)
        start_time = db.Column(db.DateTime(timezone=True), nullable=True)
        duration = db.Column(db.Integer, nullable=True)
        active = db.Column(db.Boolean, nullable=False, default=False)
        school_id = db.Column(db.String(64), nullable=True)

        # At most one running pass per author
        __table_args__ = (
            db.Index('uq_passes_author_active', 'author', unique=True,
                     sqlite_where=db.text('active = 1'),
                     postgresql_where=db.text('active')),
        )

        def __repr__(self):
            return f'<PassDocument {self.id} {self.from_room}->{self.to_room}>'

        def to_document(self) -> Dict[str, Any]:
            doc = {
                "author": self.author,
                "fromRoom": self.from_room,
                "toRoom": self.to_room,
                "created_at": self.created_at,
                "approved": self.approved,
                "active": self.active,
            }
            # Optional fields are omitted, not nulled
            if self.start_time is not None:
                doc["start_time"] = self.start_time
            if self.duration is not None:
                doc["duration"] = self.duration
            if self.school_id:
                doc["schoolId"] = self.school_id
            return doc

    return PassDocument
