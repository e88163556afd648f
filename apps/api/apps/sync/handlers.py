"""
Entity handlers for offline batch reconciliation.

One handler per entity type, all implementing create/update/delete
against the owner-scoped clinical tables. Handlers are resolved once,
through the closed ``HANDLERS`` registry.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from apps.clinical.models import (
    Activity,
    ActivityTypeChoices,
    Consultation,
    ConsultationStatusChoices,
    GenderChoices,
    Patient,
    age_from_date_of_birth,
)
from apps.core.observability.events import log_domain_event

from .exceptions import BatchValidationError, UnknownModel, UpdateConflict
from .mutations import PROTOCOL_KEYS, EntityType

logger = logging.getLogger(__name__)


def coerce_record_id(value) -> int:
    """Permanent ids are integers; digit-only strings are accepted."""
    if isinstance(value, bool):
        raise BatchValidationError(f'Invalid record id: {value!r}')
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    raise BatchValidationError(f'Invalid record id: {value!r}')


class EntityHandler:
    """
    Common create/update/delete contract.

    Subclasses declare:
    - model: the Django model
    - entity_type: EntityType value
    - recognised_keys: client keys mapped onto columns (everything else,
      minus protocol keys and ``ignored_keys``, lands in ``details``)
    - reference_fields: client keys holding a Patient reference
    """
    model = None
    entity_type = None
    recognised_keys = frozenset()
    ignored_keys = frozenset()
    reference_fields = ()

    # ------------------------------------------------------------------
    # Field mapping
    # ------------------------------------------------------------------

    def map_fields(self, payload: Dict[str, Any], owner, creating: bool) -> Dict[str, Any]:
        """Translate recognised client keys present in payload into column values."""
        raise NotImplementedError

    def text_field(self, payload: Dict[str, Any], key: str, column: str, null: bool = True):
        """
        Validate a client string against the column it maps to.

        Empty values become None (or '' for non-null columns); numbers are
        accepted as their string form; anything else, or a value longer than
        the column allows, is a BatchValidationError.
        """
        value = payload[key]
        if value in (None, ''):
            return None if null else ''
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise BatchValidationError(f'{self.entity_type} {key} must be a string')
        value = str(value)
        max_length = self.model._meta.get_field(column).max_length
        if max_length is not None and len(value) > max_length:
            raise BatchValidationError(
                f'{self.entity_type} {key} is longer than {max_length} characters'
            )
        return value

    def extra_fields(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Client fields outside the recognised schema, unmodified."""
        skip = self.recognised_keys | self.ignored_keys | PROTOCOL_KEYS
        return {k: v for k, v in payload.items() if k not in skip}

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, payload: Dict[str, Any], owner, now: Optional[datetime] = None):
        """Persist a new record owned by owner and return it."""
        fields = self.map_fields(payload, owner, creating=True)
        record = self.model(
            owner=owner,
            details=self.extra_fields(payload),
            last_updated=now or timezone.now(),
            **fields
        )
        record.save()
        return record

    def update(self, record_id, payload: Dict[str, Any], owner,
               expected_not_newer_than: Optional[datetime], now: Optional[datetime] = None):
        """
        Apply payload to the owner's record if the server copy is not newer.

        ``expected_not_newer_than`` of None skips the timestamp predicate
        (used for records created earlier in the same batch).

        Raises:
            UpdateConflict: zero rows matched id, owner and timestamp
        """
        record_id = coerce_record_id(record_id)
        queryset = self.model.objects.select_for_update().filter(id=record_id, owner=owner)
        if expected_not_newer_than is not None:
            queryset = queryset.filter(last_updated__lte=expected_not_newer_than)
        record = queryset.first()
        if record is None:
            raise UpdateConflict(self.entity_type, record_id)

        for name, value in self.map_fields(payload, owner, creating=False).items():
            setattr(record, name, value)
        extras = self.extra_fields(payload)
        if extras:
            record.details = {**(record.details or {}), **extras}
        record.last_updated = now or timezone.now()
        record.save()
        return record

    def delete(self, record_id, owner) -> int:
        """Delete the owner's record; zero rows is a no-op, not an error."""
        record_id = coerce_record_id(record_id)
        deleted, _ = self.model.objects.filter(id=record_id, owner=owner).delete()
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _owned_patient(self, value, owner):
        """Look up a referenced patient; another user's patient is invisible."""
        patient = Patient.objects.filter(id=coerce_record_id(value), owner=owner).first()
        if patient is None:
            raise BatchValidationError(f'{self.entity_type} references unknown patient {value}')
        return patient


class PatientHandler(EntityHandler):
    model = Patient
    entity_type = EntityType.PATIENT
    recognised_keys = frozenset({'name', 'gender', 'village', 'phoneNumber', 'dateOfBirth'})
    # Age is always derived from date of birth
    ignored_keys = frozenset({'age'})

    def map_fields(self, payload, owner, creating):
        fields = {}
        if 'name' in payload:
            fields['name'] = self.text_field(payload, 'name', 'name', null=False)
        if 'gender' in payload:
            gender = self.text_field(payload, 'gender', 'gender', null=False).lower()
            if gender and gender not in GenderChoices.values:
                raise BatchValidationError(f'Invalid gender: {payload["gender"]!r}')
            fields['gender'] = gender
        if 'village' in payload:
            fields['location'] = self.text_field(payload, 'village', 'location')
        if 'phoneNumber' in payload:
            fields['contact'] = self.text_field(payload, 'phoneNumber', 'contact')
        if 'dateOfBirth' in payload:
            dob = self._parse_date_of_birth(payload['dateOfBirth'])
            fields['date_of_birth'] = dob
            fields['age'] = age_from_date_of_birth(dob)
        return fields

    @staticmethod
    def _parse_date_of_birth(value):
        if value in (None, ''):
            return None
        if not isinstance(value, str):
            raise BatchValidationError(f'Invalid dateOfBirth: {value!r}')
        try:
            parsed = parse_date(value)
            if parsed is None:
                moment = parse_datetime(value)
                parsed = moment.date() if moment else None
        except ValueError:
            parsed = None
        if parsed is None:
            raise BatchValidationError(f'Invalid dateOfBirth: {value!r}')
        if parsed > date.today():
            raise BatchValidationError(f'dateOfBirth is in the future: {value}')
        return parsed


class ConsultationHandler(EntityHandler):
    model = Consultation
    entity_type = EntityType.CONSULTATION
    recognised_keys = frozenset({'patientId', 'symptoms', 'status'})
    reference_fields = ('patientId',)

    def map_fields(self, payload, owner, creating):
        fields = {}
        if creating and payload.get('patientId') in (None, ''):
            raise BatchValidationError('Consultation requires patientId')
        if payload.get('patientId') not in (None, ''):
            fields['patient'] = self._owned_patient(payload['patientId'], owner)
        if 'symptoms' in payload:
            fields['notes'] = payload['symptoms'] or None
        if 'status' in payload:
            status = payload['status']
            if status in ConsultationStatusChoices.values:
                fields['status'] = status
            elif getattr(settings, 'SYNC_STRICT_STATUS', False):
                raise BatchValidationError(f'Invalid consultation status: {status!r}')
            else:
                log_domain_event(
                    'sync_status_dropped',
                    entity_type='Consultation',
                    result='warning',
                    rejected_status=str(status),
                )
        return fields


class ActivityHandler(EntityHandler):
    model = Activity
    entity_type = EntityType.ACTIVITY
    recognised_keys = frozenset({'message', 'type', 'read', 'patientId'})
    reference_fields = ('patientId',)

    def map_fields(self, payload, owner, creating):
        fields = {}
        if 'message' in payload:
            fields['message'] = self.text_field(payload, 'message', 'message')
        if 'type' in payload:
            if payload['type'] in ActivityTypeChoices.values:
                fields['activity_type'] = payload['type']
            else:
                logger.warning(
                    'Dropping unknown activity type',
                    extra={'event': 'sync_activity_type_dropped', 'activity_type': str(payload['type'])}
                )
        if 'read' in payload:
            fields['read'] = payload['read'] is True
        if 'patientId' in payload:
            value = payload['patientId']
            fields['patient'] = None if value in (None, '') else self._owned_patient(value, owner)
        return fields


HANDLERS = {
    EntityType.PATIENT: PatientHandler(),
    EntityType.CONSULTATION: ConsultationHandler(),
    EntityType.ACTIVITY: ActivityHandler(),
}


def get_handler(model: str) -> EntityHandler:
    try:
        return HANDLERS[EntityType(model)]
    except ValueError:
        raise UnknownModel(model)
