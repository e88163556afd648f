"""
Mutation, result and outcome types for offline batch reconciliation.

Wire shape of one mutation::

    {"model": "Patient", "type": "create", "data": {...}, "tempId": "temp_1001"}
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, List, Optional

from django.db import models
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .exceptions import (
    BatchValidationError,
    SyncError,
    UnknownModel,
    UnknownMutationKind,
)


class EntityType(models.TextChoices):
    """Closed set of entity types a batch may touch."""
    PATIENT = 'Patient', 'Patient'
    CONSULTATION = 'Consultation', 'Consultation'
    ACTIVITY = 'Activity', 'Activity'


class MutationKind(models.TextChoices):
    CREATE = 'create', 'Create'
    UPDATE = 'update', 'Update'
    DELETE = 'delete', 'Delete'


# Keys that carry protocol metadata rather than entity fields
PROTOCOL_KEYS = frozenset({'id', 'tempId', 'lastUpdated', 'last_updated', 'lastUpdatedAt'})


def parse_client_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 client timestamp; naive values are taken as UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is None:
            raise ValueError(f'Invalid timestamp: {value!r}')
    else:
        raise ValueError(f'Invalid timestamp: {value!r}')
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


@dataclass(frozen=True)
class Mutation:
    """One intended create/update/delete against one entity."""
    index: int
    model: str
    kind: str
    data: Dict[str, Any]
    temp_id: Optional[str] = None
    target_id: Any = None
    last_updated_at: Optional[datetime] = None

    @classmethod
    def from_wire(cls, raw, index: int) -> 'Mutation':
        """
        Build a Mutation from its wire dict.

        Raises:
            UnknownModel / UnknownMutationKind: for values outside the closed sets
            BatchValidationError: for missing or malformed fields
        """
        if not isinstance(raw, dict):
            raise BatchValidationError(f'Change #{index} must be an object', index)

        model = raw.get('model')
        if model not in EntityType.values:
            raise UnknownModel(model, mutation_index=index)

        kind = raw.get('type')
        if kind not in MutationKind.values:
            raise UnknownMutationKind(kind, mutation_index=index)

        data = raw.get('data')
        if not isinstance(data, dict):
            raise BatchValidationError(f'Change #{index} data must be an object', index)

        temp_id = None
        target_id = None
        last_updated_at = None

        if kind == MutationKind.CREATE:
            temp_id = raw.get('tempId') or data.get('id')
            if temp_id in (None, ''):
                raise BatchValidationError(f'Change #{index} create requires tempId', index)
            temp_id = str(temp_id)
        else:
            target_id = data.get('id')
            if target_id in (None, ''):
                raise BatchValidationError(f'Change #{index} {kind} requires data.id', index)

        if kind == MutationKind.UPDATE:
            raw_ts = raw.get('lastUpdatedAt') or data.get('lastUpdated') or data.get('last_updated')
            try:
                last_updated_at = parse_client_timestamp(raw_ts)
            except ValueError as e:
                raise BatchValidationError(f'Change #{index}: {e}', index)
            if last_updated_at is None:
                raise BatchValidationError(f'Change #{index} update requires lastUpdatedAt', index)

        return cls(
            index=index,
            model=model,
            kind=kind,
            data=dict(data),
            temp_id=temp_id,
            target_id=target_id,
            last_updated_at=last_updated_at,
        )


@dataclass
class MutationResult:
    """Outcome of one successfully applied mutation."""
    model: str
    kind: str
    id: int
    temp_id: Optional[str] = None
    last_updated: Optional[datetime] = None

    def to_wire(self) -> Dict[str, Any]:
        payload = {'model': self.model, 'type': self.kind, 'id': self.id}
        if self.temp_id is not None:
            payload['tempId'] = self.temp_id
        if self.last_updated is not None:
            payload['lastUpdated'] = self.last_updated.isoformat()
        return payload


@dataclass
class BatchOutcome:
    """
    Result of applying one batch.

    A failed batch carries the triggering error and no results.
    """
    success: bool
    results: List[MutationResult] = field(default_factory=list)
    error: Optional[SyncError] = None

    def to_wire(self) -> Dict[str, Any]:
        if self.success:
            return {'success': True, 'results': [r.to_wire() for r in self.results]}
        return {
            'success': False,
            'error': self.error.message if self.error else 'Sync failed',
            'code': self.error.code if self.error else SyncError.code,
        }
