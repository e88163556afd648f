"""
Identity Remapper (client side).

Applies successful sync results to the local store and to mutations
still waiting in the log, replacing temporary ids with the ids the
server assigned.
"""
import logging
from typing import Any, Dict, Iterable, Tuple

from apps.sync.identity import DEFAULT_TEMP_ID_PREFIXES, IdentityMapping, looks_like_temporary_reference

from .local_store import LocalEntityStore
from .mutation_log import EntityType, Mutation, MutationKind

logger = logging.getLogger(__name__)

# Fields holding a Patient id, per dependent entity type
PATIENT_REFERENCES = {
    EntityType.CONSULTATION: 'patientId',
    EntityType.ACTIVITY: 'patientId',
}


def apply_result(store: LocalEntityStore, result: Dict[str, Any]) -> None:
    """
    Reflect one successful result into the store. Idempotent.

    For a create, the record found by its temporary id gets the permanent
    id and keeps ``tempId`` for correlation; Patient references in
    dependent collections are rewritten too. Create and update results
    refresh ``lastUpdated``.
    """
    model = EntityType(result['model'])
    real_id = result['id']
    temp_id = result.get('tempId')
    last_updated = result.get('lastUpdated')

    if result.get('type') == MutationKind.CREATE.value and temp_id is not None:
        for record in store.collection(model):
            if record.get('id') == temp_id or record.get('tempId') == temp_id:
                record['id'] = real_id
                record['tempId'] = temp_id
                if last_updated is not None:
                    record['lastUpdated'] = last_updated
        if model == EntityType.PATIENT:
            for dependent, field in PATIENT_REFERENCES.items():
                for record in store.collection(dependent):
                    if record.get(field) == temp_id:
                        record[field] = real_id
        return

    if result.get('type') == MutationKind.UPDATE.value and last_updated is not None:
        record = store.get(model, real_id)
        if record is not None:
            record['lastUpdated'] = last_updated


def apply_results(store: LocalEntityStore, results: Iterable[Dict[str, Any]]) -> None:
    for result in results:
        apply_result(store, result)
    store.save()


def build_mapping(results: Iterable[Dict[str, Any]], prefixes=DEFAULT_TEMP_ID_PREFIXES) -> IdentityMapping:
    """Collect ``tempId -> id`` from create results."""
    mapping = IdentityMapping(prefixes)
    for result in results:
        if result.get('type') == MutationKind.CREATE.value and result.get('tempId') is not None:
            mapping.register(result['tempId'], result['model'], result['id'])
    return mapping


def server_timestamps(results: Iterable[Dict[str, Any]]) -> Dict[Tuple[str, str], str]:
    """
    Collect the server ``lastUpdated`` of every record a batch wrote,
    keyed by ``(model, str(id))``. A later result for the same record wins;
    a delete drops it.
    """
    timestamps = {}
    for result in results:
        key = (result['model'], str(result['id']))
        if result.get('type') == MutationKind.DELETE.value:
            timestamps.pop(key, None)
        elif result.get('lastUpdated') is not None:
            timestamps[key] = result['lastUpdated']
    return timestamps


def remap_mutation(mutation: Mutation, mapping: IdentityMapping,
                   timestamps: Dict[Tuple[str, str], str]) -> Mutation:
    """
    Rewrite a still-queued mutation against the batch the server just committed.

    Temporary ids the server resolved become permanent ids. An update of a
    record the batch wrote takes that record's server ``lastUpdated`` as its
    last-known timestamp.
    Returns the same object when nothing changes.
    """
    payload = dict(mutation.payload)
    last_updated_at = mutation.last_updated_at
    changed = False

    target = payload.get('id')
    if mutation.kind != MutationKind.CREATE and _is_mapped(target, mapping) and \
            mapping.model_for(target) == mutation.entity_type.value:
        payload['id'] = mapping.get(target)
        changed = True

    if mutation.kind == MutationKind.UPDATE:
        written_at = timestamps.get((mutation.entity_type.value, str(payload.get('id'))))
        if written_at is not None and written_at != last_updated_at:
            last_updated_at = written_at
            changed = True

    field = PATIENT_REFERENCES.get(mutation.entity_type)
    if field and _is_mapped(payload.get(field), mapping) and \
            mapping.model_for(payload[field]) == EntityType.PATIENT.value:
        payload[field] = mapping.get(payload[field])
        changed = True

    if not changed:
        return mutation
    return Mutation(
        kind=mutation.kind,
        entity_type=mutation.entity_type,
        payload=payload,
        temp_id=mutation.temp_id,
        last_updated_at=last_updated_at,
    )


def _is_mapped(value, mapping: IdentityMapping) -> bool:
    return looks_like_temporary_reference(value, mapping.prefixes) and value in mapping
