"""
Local Mutation Log.

An ordered, durable queue of changes made while offline. Entries are
immutable; they leave the log only when the server acknowledges them.
"""
import copy
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .storage import load_json, save_json

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    PATIENT = 'Patient'
    CONSULTATION = 'Consultation'
    ACTIVITY = 'Activity'


class MutationKind(str, Enum):
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'


@dataclass(frozen=True)
class Mutation:
    """One pending create/update/delete, stored in wire vocabulary."""
    kind: MutationKind
    entity_type: EntityType
    payload: Dict[str, Any] = field(default_factory=dict)
    temp_id: Optional[str] = None
    last_updated_at: Optional[str] = None

    def __post_init__(self):
        # Callers keep their dict; the log keeps its own copy
        object.__setattr__(self, 'kind', MutationKind(self.kind))
        object.__setattr__(self, 'entity_type', EntityType(self.entity_type))
        object.__setattr__(self, 'payload', copy.deepcopy(dict(self.payload)))

    @property
    def target_id(self):
        return self.payload.get('id')

    def to_wire(self) -> Dict[str, Any]:
        change = {
            'model': self.entity_type.value,
            'type': self.kind.value,
            'data': copy.deepcopy(self.payload),
        }
        if self.temp_id is not None:
            change['tempId'] = self.temp_id
        if self.last_updated_at is not None:
            change['lastUpdatedAt'] = self.last_updated_at
        return change

    @classmethod
    def from_wire(cls, change: Dict[str, Any]) -> 'Mutation':
        return cls(
            kind=change['type'],
            entity_type=change['model'],
            payload=change.get('data') or {},
            temp_id=change.get('tempId'),
            last_updated_at=change.get('lastUpdatedAt'),
        )

    def acknowledged_by(self, result: Dict[str, Any]) -> bool:
        """True when result is this mutation's server result."""
        if result.get('model') != self.entity_type.value or result.get('type') != self.kind.value:
            return False
        if self.kind == MutationKind.CREATE:
            return result.get('tempId') == self.temp_id
        return True


class MutationLog:
    """
    Append-only queue persisted as a JSON list of wire-format changes.

    ``path=None`` keeps the log in memory only.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.Lock()
        self._entries: List[Mutation] = [
            Mutation.from_wire(change) for change in load_json(path, [])
        ]
        if self._entries:
            logger.info(f'Loaded {len(self._entries)} pending mutations from {path}')

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def append(self, mutation: Mutation) -> None:
        """
        Queue mutation at the tail and persist immediately. Never validates.

        The entry joins the in-memory queue only once it is on disk.
        """
        with self._lock:
            entries = self._entries + [mutation]
            self._save(entries)
            self._entries = entries

    def current_batch(self) -> Tuple[Mutation, ...]:
        """The whole queue, oldest first. Does not modify the log."""
        with self._lock:
            return tuple(self._entries)

    def acknowledge(self, results: Iterable[Dict[str, Any]]) -> int:
        """
        Drop the mutations the server confirmed.

        Results are matched positionally against the head of the log, which
        is the batch that was sent; matching stops at the first result that
        does not correspond. Returns the number of mutations removed.
        """
        with self._lock:
            acknowledged = 0
            for mutation, result in zip(self._entries, results):
                if not mutation.acknowledged_by(result):
                    logger.warning(
                        'Sync result does not match queued mutation',
                        extra={'event': 'offline_ack_mismatch', 'position': acknowledged}
                    )
                    break
                acknowledged += 1
            if acknowledged:
                del self._entries[:acknowledged]
                self._save()
            return acknowledged

    def rewrite(self, rewrite: Callable[[Mutation], Mutation]) -> int:
        """
        Replace queued mutations with rewritten copies.

        Used after a sync to swap temporary identifiers the server has
        assigned. Returns the number of entries replaced.
        """
        with self._lock:
            replaced = 0
            for position, mutation in enumerate(self._entries):
                rewritten = rewrite(mutation)
                if rewritten is not mutation:
                    self._entries[position] = rewritten
                    replaced += 1
            if replaced:
                self._save()
            return replaced

    def _save(self, entries: Optional[List[Mutation]] = None):
        entries = self._entries if entries is None else entries
        save_json(self.path, [mutation.to_wire() for mutation in entries])
