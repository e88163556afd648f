"""
Local Entity Store.

The client's materialized copy of its patients, consultations and
activities. Local edits land here immediately under temporary ids;
the remapper swaps in permanent ids after a successful sync.
"""
import logging
import threading
from typing import Any, Dict, List, Optional

from apps.sync.identity import DEFAULT_TEMP_ID_PREFIXES, looks_like_temporary_reference

from .mutation_log import EntityType
from .storage import load_json, save_json

logger = logging.getLogger(__name__)

COLLECTIONS = {
    EntityType.PATIENT: 'patients',
    EntityType.CONSULTATION: 'consultations',
    EntityType.ACTIVITY: 'activities',
}

TEMP_ID_PREFIX = 'temp_'
FIRST_TEMP_ID = 1001


def _empty_state():
    return {
        'patients': [],
        'consultations': [],
        'activities': [],
        'nextTempId': FIRST_TEMP_ID,
        'lastSync': None,
    }


class LocalEntityStore:
    """
    Record collections persisted as one JSON document.

    Records are plain dicts in wire vocabulary (``id``, ``tempId``,
    ``lastUpdated``, ``patientId``, ...). A record is found by its
    current id or by the temporary id it was created under.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.RLock()
        self._state = _empty_state()
        self._state.update(load_json(path, {}))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def collection(self, entity_type) -> List[Dict[str, Any]]:
        """Live list of records for entity_type."""
        return self._state[COLLECTIONS[EntityType(entity_type)]]

    def get(self, entity_type, record_id) -> Optional[Dict[str, Any]]:
        for record in self.collection(entity_type):
            if record.get('id') == record_id or (
                record.get('tempId') is not None and record.get('tempId') == record_id
            ):
                return record
        return None

    @property
    def patients(self):
        return self.collection(EntityType.PATIENT)

    @property
    def consultations(self):
        return self.collection(EntityType.CONSULTATION)

    @property
    def activities(self):
        return self.collection(EntityType.ACTIVITY)

    @property
    def last_sync(self) -> Optional[str]:
        return self._state.get('lastSync')

    # ------------------------------------------------------------------
    # Writes (callers persist with save())
    # ------------------------------------------------------------------

    def next_temp_id(self) -> str:
        """Allocate the next ``temp_<n>`` id; the counter survives restarts."""
        with self._lock:
            number = self._state['nextTempId']
            self._state['nextTempId'] = number + 1
            self.save()
            return f'{TEMP_ID_PREFIX}{number}'

    def insert(self, entity_type, record: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self.collection(entity_type).append(record)
            return record

    def update(self, entity_type, record_id, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self.get(entity_type, record_id)
            if record is not None:
                record.update(changes)
            return record

    def remove(self, entity_type, record_id) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self.get(entity_type, record_id)
            if record is not None:
                self.collection(entity_type).remove(record)
            return record

    def mark_synced(self, when: str) -> None:
        with self._lock:
            self._state['lastSync'] = when
            self.save()

    def seed(self, snapshot: Dict[str, Any], prefixes=DEFAULT_TEMP_ID_PREFIXES) -> None:
        """
        Replace synced records with a server snapshot.

        Records still identified by a temporary id have not reached the
        server yet and are kept.
        """
        with self._lock:
            for entity_type, key in COLLECTIONS.items():
                pending = [
                    record for record in self.collection(entity_type)
                    if looks_like_temporary_reference(record.get('id'), prefixes)
                ]
                self._state[key] = list(snapshot.get(key, [])) + pending
            self.save()
            logger.info(
                'Local store seeded from snapshot',
                extra={
                    'event': 'offline_store_seeded',
                    'patients_count': len(self.patients),
                    'consultations_count': len(self.consultations),
                    'activities_count': len(self.activities),
                }
            )

    def save(self) -> None:
        with self._lock:
            save_json(self.path, self._state)
