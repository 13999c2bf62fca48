"""
Error kinds raised by the document store and the layers above it.

Store-level errors propagate unchanged through the resource hooks to the
page, which renders a generic failure banner.
"""


class StoreError(Exception):
    """Base class for every error surfaced by the league data layer."""

    kind = 'store_error'

    def __init__(self, message: str = '', collection: str = None, doc_id: str = None):
        super().__init__(message or self.kind)
        self.collection = collection
        self.doc_id = doc_id

    def __str__(self):
        message = self.args[0] if self.args else self.kind
        if self.collection and self.doc_id:
            return f'{message} ({self.collection}/{self.doc_id})'
        if self.collection:
            return f'{message} ({self.collection})'
        return message


class NotFound(StoreError):
    kind = 'not_found'


class PermissionDenied(StoreError):
    kind = 'permission_denied'


class Unavailable(StoreError):
    """The backing store could not be reached."""
    kind = 'unavailable'


class ValidationError(StoreError):
    """A document or a submitted value failed validation."""
    kind = 'validation_error'
