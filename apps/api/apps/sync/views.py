"""
Offline sync endpoint.

POST /api/v1/sync/ with ``{"changes": [...]}`` applies the batch for
the user identified by the bearer token.
"""
import logging
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.observability import metrics
from apps.core.observability.correlation import bind_user
from apps.core.observability.events import log_sync_received

from .engine import apply_batch
from .exceptions import BatchValidationError
from .serializers import (
    SyncFailureSerializer,
    SyncRequestSerializer,
    SyncSuccessSerializer,
)

logger = logging.getLogger(__name__)


class SyncView(APIView):
    """
    Apply an offline mutation batch atomically.

    Responses:
    - 200 ``{success: true, results: [...]}`` one result per change, same order
    - 400 ``{success: false, error, code}`` malformed batch or unknown reference
    - 409 ``{success: false, error, code: "UpdateConflict"}``
    Nothing in the batch is persisted on failure.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(
        request=SyncRequestSerializer,
        responses={200: SyncSuccessSerializer, 400: SyncFailureSerializer, 409: SyncFailureSerializer},
    )
    def post(self, request):
        # Owner comes from the credential, never from the payload
        owner = request.user
        bind_user(owner)

        serializer = SyncRequestSerializer(data=request.data)
        if not serializer.is_valid():
            error = BatchValidationError(_first_error(serializer.errors))
            logger.warning(
                'Rejected malformed sync request',
                extra={'event': 'sync_request_invalid', 'errors': serializer.errors}
            )
            return Response(
                {'success': False, 'error': error.message, 'code': error.code},
                status=status.HTTP_400_BAD_REQUEST
            )

        changes = serializer.validated_data['changes']
        log_sync_received(owner.pk, len(changes), getattr(request, 'device_id', None))
        metrics.sync_batch_size.observe(len(changes))

        outcome = apply_batch(changes, owner)
        if outcome.success:
            return Response(outcome.to_wire(), status=status.HTTP_200_OK)
        return Response(outcome.to_wire(), status=outcome.error.http_status)


def _first_error(errors):
    """Flatten DRF's nested error dict into one readable message."""
    for field, detail in errors.items():
        while isinstance(detail, dict):
            field, detail = next(iter(detail.items()))
        if isinstance(detail, list):
            detail = detail[0]
        return f'{field}: {detail}'
    return 'Invalid sync request'
