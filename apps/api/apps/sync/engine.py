"""
Offline batch reconciliation engine.

Applies a client batch as one all-or-nothing unit of work:

1. Validate every mutation (nothing is persisted if one is malformed)
2. Open one transaction for the whole batch
3. Walk mutations in order, rewriting temporary references through the
   batch's IdentityMapping and dispatching to the entity handler
4. Commit and return one result per mutation, or roll back and return
   the triggering error with no results
"""
import logging
import time
from typing import List, Sequence

from django.conf import settings
from django.db import DatabaseError, models, transaction
from django.utils import timezone

from apps.core.observability import log_domain_event, metrics

from .exceptions import BatchValidationError, SyncError, UpdateConflict
from .handlers import coerce_record_id, get_handler
from .identity import IdentityMapping, looks_like_temporary_reference, resolve
from .mutations import BatchOutcome, EntityType, Mutation, MutationKind, MutationResult

logger = logging.getLogger(__name__)


class BatchState(models.TextChoices):
    """
    Batch lifecycle: received -> applying(i) -> committed | rolled_back.
    """
    RECEIVED = 'received', 'Received'
    APPLYING = 'applying', 'Applying'
    COMMITTED = 'committed', 'Committed'
    ROLLED_BACK = 'rolled_back', 'Rolled Back'


class BatchReconciler:
    """
    Applies one batch on behalf of one authenticated owner.

    A reconciler is single-use: its IdentityMapping is scoped to the batch.
    """

    def __init__(self, owner, prefixes=None, max_batch_size=None):
        self.owner = owner
        self.mapping = IdentityMapping(
            prefixes if prefixes is not None else settings.SYNC_TEMP_ID_PREFIXES
        )
        self.max_batch_size = max_batch_size or settings.SYNC_MAX_BATCH_SIZE
        self.state = BatchState.RECEIVED
        self.current_index = None
        self._written_in_batch = set()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def apply(self, changes: Sequence[dict]) -> BatchOutcome:
        start_time = time.time()
        try:
            mutations = self.parse(changes)
            with transaction.atomic():
                results = self._apply_all(mutations)
        except SyncError as e:
            return self._rolled_back(e, start_time)
        except DatabaseError as e:
            logger.error(
                'Database error while applying sync batch',
                exc_info=True,
                extra={'event': 'sync_batch_database_error', 'mutation_index': self.current_index}
            )
            error = SyncError(f'Database error: {e.__class__.__name__}', self.current_index)
            error.http_status = 500
            return self._rolled_back(error, start_time)

        self.state = BatchState.COMMITTED
        duration = time.time() - start_time
        metrics.sync_batches_total.labels(result='committed').inc()
        metrics.sync_batch_duration_seconds.observe(duration)
        for result in results:
            metrics.sync_mutations_total.labels(model=result.model, type=result.kind).inc()

        log_domain_event(
            'sync_batch_committed',
            entity_type='SyncBatch',
            result='success',
            mutations_count=len(results),
            created_count=len(self.mapping),
            duration_ms=round(duration * 1000, 2),
        )
        return BatchOutcome(success=True, results=results)

    def parse(self, changes) -> List[Mutation]:
        """Validate the whole batch before anything touches the database."""
        if not isinstance(changes, (list, tuple)) or not changes:
            raise BatchValidationError('changes must be a non-empty list')
        if len(changes) > self.max_batch_size:
            raise BatchValidationError(
                f'Batch too large: {len(changes)} changes (max {self.max_batch_size})'
            )
        return [Mutation.from_wire(raw, index) for index, raw in enumerate(changes)]

    # ------------------------------------------------------------------
    # Apply loop
    # ------------------------------------------------------------------

    def _apply_all(self, mutations: List[Mutation]) -> List[MutationResult]:
        self.state = BatchState.APPLYING
        now = timezone.now()
        results = []
        for mutation in mutations:
            self.current_index = mutation.index
            try:
                results.append(self._apply_one(mutation, now))
            except SyncError as e:
                if e.mutation_index is None:
                    e.mutation_index = mutation.index
                raise
        return results

    def _apply_one(self, mutation: Mutation, now) -> MutationResult:
        handler = get_handler(mutation.model)
        payload = dict(mutation.data)
        for key in handler.reference_fields:
            if key in payload:
                payload[key] = self._resolve_reference(payload[key], EntityType.PATIENT, mutation.index)

        if mutation.kind == MutationKind.CREATE:
            record = handler.create(payload, self.owner, now=now)
            self.mapping.register(mutation.temp_id, mutation.model, record.id)
            self._written_in_batch.add((mutation.model, record.id))
            return MutationResult(
                model=mutation.model,
                kind=mutation.kind,
                id=record.id,
                temp_id=mutation.temp_id,
                last_updated=record.last_updated,
            )

        record_id = coerce_record_id(
            self._resolve_reference(mutation.target_id, mutation.model, mutation.index)
        )

        if mutation.kind == MutationKind.UPDATE:
            # Only the first write to a row in this batch is checked against the client timestamp
            expected = None if (mutation.model, record_id) in self._written_in_batch else mutation.last_updated_at
            try:
                record = handler.update(record_id, payload, self.owner, expected, now=now)
            except UpdateConflict:
                metrics.sync_conflicts_total.labels(model=mutation.model).inc()
                raise
            self._written_in_batch.add((mutation.model, record.id))
            return MutationResult(
                model=mutation.model,
                kind=mutation.kind,
                id=record.id,
                last_updated=record.last_updated,
            )

        deleted = handler.delete(record_id, self.owner)
        if not deleted:
            logger.debug(
                'Delete matched no rows',
                extra={'event': 'sync_delete_noop', 'model': mutation.model, 'record_id': record_id}
            )
        self._written_in_batch.discard((mutation.model, record_id))
        return MutationResult(model=mutation.model, kind=mutation.kind, id=record_id)

    def _resolve_reference(self, value, expected_model, index):
        """Resolve a temp id, checking it was produced by a create of the expected model."""
        if not looks_like_temporary_reference(value, self.mapping.prefixes):
            return value
        real_id = resolve(value, self.mapping, mutation_index=index)
        produced_by = self.mapping.model_for(value)
        if produced_by != expected_model:
            raise BatchValidationError(
                f'Temporary reference {value} points to a {produced_by}, expected {expected_model}',
                index
            )
        return real_id

    def _rolled_back(self, error: SyncError, start_time) -> BatchOutcome:
        self.state = BatchState.ROLLED_BACK
        metrics.sync_batches_total.labels(result='rolled_back').inc()
        log_domain_event(
            'sync_batch_rolled_back',
            entity_type='SyncBatch',
            result='failure' if error.http_status >= 500 else 'blocked',
            error_code=error.code,
            error_message=error.message,
            mutation_index=error.mutation_index,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return BatchOutcome(success=False, error=error)


def apply_batch(changes: Sequence[dict], owner) -> BatchOutcome:
    """Apply a batch of wire-format changes for owner."""
    return BatchReconciler(owner).apply(changes)
