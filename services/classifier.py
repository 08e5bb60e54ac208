"""
Classifier: partitions a user's passes into active / requested / past
"""
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from models.passes import Pass, PassStatus

_FINISHED = (PassStatus.APPROVED, PassStatus.REJECTED)


class PassBuckets(NamedTuple):
    active: Optional[Pass]
    requested: List[Pass]
    past: List[Pass]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active.to_dict() if self.active else None,
            "requested": [p.to_dict() for p in self.requested],
            "past": [p.to_dict() for p in self.past],
        }


def _newest_first(passes: Iterable[Pass]) -> List[Pass]:
    # sorted() is stable, so equal created_at keeps input order
    return sorted(passes, key=lambda p: p.created_at, reverse=True)


def classify(passes: Iterable[Pass]) -> PassBuckets:
    """Bucket a complete snapshot of passes.

    If more than one pass is active, the most recently created one wins.
    """
    passes = list(passes)

    running = _newest_first(p for p in passes if p.active)
    requested = _newest_first(
        p for p in passes if p.approved is PassStatus.PENDING and not p.active
    )
    past = _newest_first(
        p for p in passes if not p.active and p.approved in _FINISHED
    )

    return PassBuckets(running[0] if running else None, requested, past)
