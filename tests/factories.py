from datetime import datetime, timedelta, timezone

from models.passes import Pass, PassStatus

T0 = datetime(2025, 9, 8, 9, 0, tzinfo=timezone.utc)
STUDENT = "student-1"


def make_pass(minutes_after_t0=0, **overrides):
    fields = dict(
        id=f"p{minutes_after_t0}",
        author=STUDENT,
        from_room="Room 204",
        to_room="Library",
        created_at=T0 + timedelta(minutes=minutes_after_t0),
        approved=PassStatus.PENDING,
        active=False,
    )
    fields.update(overrides)
    return Pass(**fields)


def pass_fields(minutes_after_t0=0, **overrides):
    """Raw document fields, as written to a store"""
    fields = {
        "author": STUDENT,
        "fromRoom": "Room 204",
        "toRoom": "Library",
        "created_at": T0 + timedelta(minutes=minutes_after_t0),
        "approved": "pending",
        "active": False,
    }
    fields.update(overrides)
    return fields
