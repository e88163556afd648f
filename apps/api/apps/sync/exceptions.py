"""
Sync error taxonomy.

Every error raised while applying a batch aborts the whole batch; the
``code`` travels back to the client in the failure response.
"""


class SyncError(Exception):
    """Base class for batch-level sync failures."""
    code = 'SyncError'
    http_status = 400

    def __init__(self, message, mutation_index=None):
        super().__init__(message)
        self.message = message
        self.mutation_index = mutation_index


class BatchValidationError(SyncError):
    """Malformed or missing required mutation fields."""
    code = 'ValidationError'


class UnknownTemporaryReference(SyncError):
    """A temporary identifier not produced earlier in the same batch."""
    code = 'UnknownTemporaryReference'

    def __init__(self, temp_id, mutation_index=None):
        super().__init__(f'Unknown temporary reference: {temp_id}', mutation_index)
        self.temp_id = temp_id


class UpdateConflict(SyncError):
    """Target not found, owned by another user, or newer on the server."""
    code = 'UpdateConflict'
    http_status = 409

    def __init__(self, model, record_id, mutation_index=None):
        super().__init__(f'{model} update conflict (id={record_id})', mutation_index)
        self.model = model
        self.record_id = record_id


class UnknownModel(SyncError):
    code = 'UnknownModel'

    def __init__(self, model, mutation_index=None):
        super().__init__(f'Unknown model: {model}', mutation_index)
        self.model = model


class UnknownMutationKind(SyncError):
    code = 'UnknownMutationKind'

    def __init__(self, kind, mutation_index=None):
        super().__init__(f'Unknown change type: {kind}', mutation_index)
        self.kind = kind
