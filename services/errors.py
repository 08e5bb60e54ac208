"""
Error taxonomy shared by the pass services.

Every error carries a human-readable message and the HTTP status the API
layer answers with.
"""


class CorePassError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotSignedIn(CorePassError):
    """No user identifier available where one is required."""
    status_code = 401

    def __init__(self, message: str = "Not signed in."):
        super().__init__(message)


class StoreReadFailure(CorePassError):
    """A live query or one-shot fetch against the store failed."""
    status_code = 502


class StoreWriteFailure(CorePassError):
    """Ending or submitting a pass failed in the store."""
    status_code = 502


class PassNotFound(StoreWriteFailure):
    """The pass does not exist or belongs to another author."""
    status_code = 404


class ValidationFailure(CorePassError):
    """Caller-side check failed; the store was never contacted."""
    status_code = 400
