"""
Domain events logging helpers.

Provides structured event logging for sync operations.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'sync_batch_committed')
        entity_type: Type of entity (e.g., 'SyncBatch', 'Consultation')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, blocked, warning)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'sync_batch_rolled_back',
            entity_type='SyncBatch',
            result='blocked',
            error_code='UpdateConflict',
            mutation_index=3
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    # Sanitize extra fields
    event_data.update(sanitize_dict(extra_fields))

    # Log at appropriate level based on result
    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_sync_received(owner_id, changes_count, device_id=None):
    """Log receipt of a sync batch before it is applied."""
    log_domain_event(
        'sync_batch_received',
        entity_type='SyncBatch',
        entity_ids={'owner_id': str(owner_id)},
        result='success',
        changes_count=changes_count,
        device_id=device_id or '-',
    )
