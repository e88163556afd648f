"""
Offline client for the CHW sync protocol.

Django-free: runs on the health worker's device, keeps a durable
mutation log and a local copy of the records, and reconciles both with
the server through ``POST /api/v1/sync/``.

Usage:
    config = OfflineConfig.from_env()
    session = OfflineSession.from_config(config, token=access_token)
    patient = session.create_patient({'name': 'Amina', 'village': 'Kisumu'})
    session.create_consultation(patient['id'], {'symptoms': 'fever'})
    session.set_online(True)   # debounced auto-sync
"""
from .config import OfflineConfig
from .exceptions import LocalRecordNotFound, TransportError
from .local_store import LocalEntityStore
from .mutation_log import EntityType, Mutation, MutationKind, MutationLog
from .session import OfflineSession, SyncReport
from .transport import SyncResponse, SyncTransport

__all__ = [
    'OfflineConfig',
    'LocalRecordNotFound',
    'TransportError',
    'LocalEntityStore',
    'EntityType',
    'Mutation',
    'MutationKind',
    'MutationLog',
    'OfflineSession',
    'SyncReport',
    'SyncResponse',
    'SyncTransport',
]
