# Service layer initialization
from .identity import AuthSession, FixedSession, SessionProvider, session_provider_from_config
from .store import MemoryPassStore, PassStore, SQLAlchemyPassStore, Subscription
from .passes import PassFeed, PassQueryService
from .submission import PassSubmissionService, SubmissionForm, SubmitOutcome

__all__ = [
    'AuthSession', 'FixedSession', 'SessionProvider', 'session_provider_from_config',
    'MemoryPassStore', 'PassStore', 'SQLAlchemyPassStore', 'Subscription',
    'PassFeed', 'PassQueryService',
    'PassSubmissionService', 'SubmissionForm', 'SubmitOutcome',
]
