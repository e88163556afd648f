"""
Clinical read-only API.

All writes go through the offline sync endpoint; these views only let a
client read back the records it owns.

Endpoints:
- GET /api/v1/clinical/patients/
- GET /api/v1/clinical/consultations/
- GET /api/v1/clinical/activities/
- GET /api/v1/clinical/activities/recent/
- GET /api/v1/clinical/snapshot/
"""
from django.utils import timezone
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.clinical.models import Activity, Consultation, Patient
from apps.clinical.serializers import (
    ActivitySerializer,
    ConsultationSerializer,
    PatientSerializer,
)

RECENT_ACTIVITY_LIMIT = 10


class OwnedRecordViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Read-only viewset scoped to the requesting user's records.

    Records owned by other users are invisible (404 on retrieve).
    """
    permission_classes = [IsAuthenticated]
    model = None
    ordering_fields = ['last_updated', 'created_at']

    def get_queryset(self):
        return self.model.objects.filter(owner=self.request.user)


class PatientViewSet(OwnedRecordViewSet):
    model = Patient
    serializer_class = PatientSerializer
    search_fields = ['name', 'location']


class ConsultationViewSet(OwnedRecordViewSet):
    model = Consultation
    serializer_class = ConsultationSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        patient_id = self.request.query_params.get('patient_id', '').strip()
        if patient_id:
            if not patient_id.isdigit():
                raise ValidationError({'patient_id': 'Must be an integer'})
            queryset = queryset.filter(patient_id=int(patient_id))
        return queryset


class ActivityViewSet(OwnedRecordViewSet):
    model = Activity
    serializer_class = ActivitySerializer

    @action(detail=False, methods=['get'])
    def recent(self, request):
        """Newest activities first, limited to RECENT_ACTIVITY_LIMIT."""
        queryset = self.get_queryset().order_by('-last_updated')[:RECENT_ACTIVITY_LIMIT]
        return Response(self.get_serializer(queryset, many=True).data)


class SnapshotView(APIView):
    """
    Full copy of the caller's records, used to seed the offline store.

    Returns ``{patients, consultations, activities, serverTime}``.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        owner = request.user
        return Response({
            'patients': PatientSerializer(
                Patient.objects.filter(owner=owner), many=True
            ).data,
            'consultations': ConsultationSerializer(
                Consultation.objects.filter(owner=owner), many=True
            ).data,
            'activities': ActivitySerializer(
                Activity.objects.filter(owner=owner), many=True
            ).data,
            'serverTime': timezone.now().isoformat(),
        })
