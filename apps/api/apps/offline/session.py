"""
Offline session.

Single owner of one client's mutation log, local store and transport.
Local edits always succeed immediately; ``sync_now`` reconciles them
with the server, at most one batch at a time.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from apps.sync.identity import DEFAULT_TEMP_ID_PREFIXES, looks_like_temporary_reference

from .config import OfflineConfig
from .exceptions import LocalRecordNotFound, TransportError
from .local_store import LocalEntityStore
from .mutation_log import EntityType, Mutation, MutationKind, MutationLog
from .remapper import apply_results, build_mapping, remap_mutation, server_timestamps
from .transport import SyncTransport

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SyncReport:
    """What the user is told after a sync attempt."""
    success: bool
    synced: int = 0
    error: Optional[str] = None
    code: Optional[str] = None

    @property
    def message(self) -> str:
        if self.success:
            return f'{self.synced} items synced'
        return f'Sync failed: {self.error}'


class OfflineSession:
    """
    Local editing API plus sync orchestration.

    - Every edit updates the store and appends to the log under one lock
    - ``sync_now`` is single-flight: a trigger while a batch is in flight is a no-op
    - Going online schedules a debounced auto-sync when work is queued
    """

    def __init__(self, transport: SyncTransport, log: Optional[MutationLog] = None,
                 store: Optional[LocalEntityStore] = None, debounce_seconds: float = 5.0,
                 listener: Optional[Callable[[SyncReport], None]] = None,
                 prefixes=DEFAULT_TEMP_ID_PREFIXES):
        self.transport = transport
        self.log = log if log is not None else MutationLog()
        self.store = store if store is not None else LocalEntityStore()
        self.debounce_seconds = debounce_seconds
        self.listener = listener
        self.prefixes = tuple(prefixes)

        self._edit_lock = threading.RLock()
        self._sync_lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._online = False

    @classmethod
    def from_config(cls, config: OfflineConfig, token: Optional[str] = None, **kwargs) -> 'OfflineSession':
        transport = SyncTransport(
            config.server_url,
            token=token,
            device_id=config.device_id,
            timeout=config.timeout_seconds,
        )
        return cls(
            transport,
            log=MutationLog(config.log_path),
            store=LocalEntityStore(config.store_path),
            debounce_seconds=config.debounce_seconds,
            **kwargs
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    @property
    def queued_items(self) -> int:
        return len(self.log)

    @property
    def last_synced(self) -> Optional[str]:
        return self.store.last_sync

    # ------------------------------------------------------------------
    # Local editing
    # ------------------------------------------------------------------

    def create(self, entity_type, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record under a fresh temporary id and queue its create."""
        entity_type = EntityType(entity_type)
        with self._edit_lock:
            temp_id = self.store.next_temp_id()
            record = {**data, 'id': temp_id, 'tempId': temp_id, 'lastUpdated': None}
            self.log.append(Mutation(
                kind=MutationKind.CREATE,
                entity_type=entity_type,
                payload={**data, 'id': temp_id},
                temp_id=temp_id,
            ))
            self.store.insert(entity_type, record)
            self.store.save()
        return record

    def update(self, entity_type, record_id, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply changes locally and queue an update.

        The queued update carries the record's last server timestamp, so the
        server rejects it if someone else wrote the record since.
        """
        entity_type = EntityType(entity_type)
        with self._edit_lock:
            record = self.store.get(entity_type, record_id)
            if record is None:
                raise LocalRecordNotFound(entity_type.value, record_id)
            current_id = record['id']
            last_known = record.get('lastUpdated') or utc_now_iso()
            self.log.append(Mutation(
                kind=MutationKind.UPDATE,
                entity_type=entity_type,
                payload={**changes, 'id': current_id},
                last_updated_at=last_known,
            ))
            self.store.update(entity_type, current_id, changes)
            self.store.save()
        return record

    def delete(self, entity_type, record_id) -> None:
        """Remove a record locally and queue its delete. Unknown ids are ignored."""
        entity_type = EntityType(entity_type)
        with self._edit_lock:
            record = self.store.get(entity_type, record_id)
            if record is None:
                logger.debug(f'Local delete of unknown {entity_type.value} {record_id}')
                return
            self.log.append(Mutation(
                kind=MutationKind.DELETE,
                entity_type=entity_type,
                payload={'id': record['id']},
            ))
            self.store.remove(entity_type, record['id'])
            if entity_type == EntityType.PATIENT:
                self._detach_patient(record['id'])
            self.store.save()

    def create_patient(self, data):
        return self.create(EntityType.PATIENT, data)

    def update_patient(self, patient_id, changes):
        return self.update(EntityType.PATIENT, patient_id, changes)

    def delete_patient(self, patient_id):
        self.delete(EntityType.PATIENT, patient_id)

    def create_consultation(self, patient_id, data):
        return self.create(EntityType.CONSULTATION, {**data, 'patientId': patient_id})

    def update_consultation(self, consultation_id, changes):
        return self.update(EntityType.CONSULTATION, consultation_id, changes)

    def delete_consultation(self, consultation_id):
        self.delete(EntityType.CONSULTATION, consultation_id)

    def create_activity(self, message, activity_type='info', patient_id=None, **extra):
        data = {**extra, 'message': message, 'type': activity_type, 'read': False}
        if patient_id is not None:
            data['patientId'] = patient_id
        return self.create(EntityType.ACTIVITY, data)

    def mark_activity_read(self, activity_id):
        return self.update(EntityType.ACTIVITY, activity_id, {'read': True})

    def _detach_patient(self, patient_id):
        """Mirror the server's cascade for a deleted patient."""
        for consultation in list(self.store.consultations):
            if consultation.get('patientId') == patient_id:
                self.store.consultations.remove(consultation)
        for activity in self.store.activities:
            if activity.get('patientId') == patient_id:
                activity['patientId'] = None

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync_now(self) -> Optional[SyncReport]:
        """
        Send the whole queue as one batch.

        Returns None without doing anything when a batch is already in
        flight or the queue is empty.
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.debug('Sync already in flight, trigger ignored')
            return None
        try:
            batch = self.log.current_batch()
            if not batch:
                return None
            report = self._submit(batch)
        finally:
            self._sync_lock.release()

        self._notify(report)
        return report

    def _submit(self, batch) -> SyncReport:
        logger.info(
            f'Submitting {len(batch)} queued mutations',
            extra={'event': 'offline_sync_started', 'changes_count': len(batch)}
        )
        try:
            response = self.transport.submit([mutation.to_wire() for mutation in batch])
        except TransportError as e:
            logger.warning(
                f'Sync failed at transport level: {e.message}',
                extra={'event': 'offline_sync_failed', 'code': e.code, 'status_code': e.status_code}
            )
            return SyncReport(success=False, error=e.message, code=e.code)

        if not response.success:
            logger.warning(
                f'Server rejected batch: {response.error}',
                extra={'event': 'offline_sync_rejected', 'code': response.code,
                       'status_code': response.status_code}
            )
            return SyncReport(success=False, error=response.error, code=response.code)

        with self._edit_lock:
            acknowledged = self.log.acknowledge(response.results)
            apply_results(self.store, response.results)
            mapping = build_mapping(response.results, self.prefixes)
            timestamps = server_timestamps(response.results)
            self.log.rewrite(lambda mutation: remap_mutation(mutation, mapping, timestamps))
            self.store.mark_synced(utc_now_iso())

        logger.info(
            f'Sync complete: {acknowledged} items synced',
            extra={'event': 'offline_sync_completed', 'synced_count': acknowledged,
                   'queued_count': len(self.log)}
        )
        return SyncReport(success=True, synced=acknowledged)

    def pull_snapshot(self) -> None:
        """Refresh the store from the server, keeping unsynced local records."""
        snapshot = self.transport.fetch_snapshot()
        with self._edit_lock:
            self.store.seed(snapshot, self.prefixes)

    def has_unsynced_records(self) -> bool:
        return any(
            looks_like_temporary_reference(record.get('id'), self.prefixes)
            for entity_type in EntityType
            for record in self.store.collection(entity_type)
        )

    def _notify(self, report: SyncReport) -> None:
        if self.listener is None:
            return
        try:
            self.listener(report)
        except Exception:
            logger.error('Sync listener raised', exc_info=True)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    def set_online(self, online: bool) -> None:
        """Connectivity signal. Regaining connectivity schedules an auto-sync."""
        was_online = self._online
        self._online = online
        if online and not was_online:
            self.schedule_auto_sync()
        elif not online:
            self.cancel_auto_sync()

    def schedule_auto_sync(self) -> None:
        """(Re)start the debounce timer; the last signal wins."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self._auto_sync)
            self._timer.daemon = True
            self._timer.start()

    def cancel_auto_sync(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def wait_for_auto_sync(self, timeout: Optional[float] = None) -> None:
        """Block until a scheduled auto-sync has run."""
        with self._timer_lock:
            timer = self._timer
        if timer is not None:
            timer.join(timeout)

    def _auto_sync(self) -> None:
        if not self._online or not self.queued_items or self.is_syncing:
            return
        self.sync_now()

    def close(self) -> None:
        self.cancel_auto_sync()
        self.transport.session.close()
