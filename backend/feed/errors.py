"""
Error taxonomy of the feed aggregation layer.

Every error carries the operation that was attempted and the id it
targeted, so callers can show a precise message and retry the same
operation. ``status_code`` is the HTTP status the API answers with.
"""


class FeedError(Exception):
    status_code = 500
    default_message = 'Feed operation failed'

    def __init__(self, message=None, *, operation=None, target=None):
        self.message = message or self.default_message
        self.operation = operation
        self.target = target
        super().__init__(self.message)

    @property
    def context(self):
        return {'operation': self.operation, 'target': self.target}

    def __str__(self):
        return self.message


class FetchFailed(FeedError):
    """A read against the store failed (transport, timeout or bad row)."""
    status_code = 503
    default_message = 'Failed to load posts'


class WriteFailed(FeedError):
    """The store rejected a mutation."""
    status_code = 502
    default_message = 'Failed to save changes'


class ConstraintViolation(WriteFailed):
    """A store uniqueness rule rejected the write (duplicate like, tag name)."""
    status_code = 409
    default_message = 'Already exists'


class NotAuthenticated(FeedError):
    status_code = 401
    default_message = 'You must be logged in'


class NotFound(FeedError):
    status_code = 404
    default_message = 'Not found'


class InvalidInput(FeedError):
    """Rejected before anything was written."""
    status_code = 400
    default_message = 'Invalid input'


class Forbidden(FeedError):
    status_code = 403
    default_message = 'You are not allowed to do that'
