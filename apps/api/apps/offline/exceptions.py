"""
Client-side errors.

TransportError joins the server's SyncError taxonomy so a failed sync
is reported the same way whichever side failed.
"""
from apps.sync.exceptions import SyncError


class TransportError(SyncError):
    """Network failure, timeout, or a non-2xx response without a sync body."""
    code = 'TransportError'
    http_status = None

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class LocalRecordNotFound(LookupError):
    """Local edit targeting a record that is not in the local store."""

    def __init__(self, entity_type, record_id):
        super().__init__(f'{entity_type} {record_id} not found in local store')
        self.entity_type = entity_type
        self.record_id = record_id
