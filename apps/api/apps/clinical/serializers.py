"""
Clinical serializers.

Records are rendered in the offline client's vocabulary (village,
phoneNumber, symptoms, ...) with the ``details`` side-channel flattened
back in, so a snapshot can seed the client's local store directly.
"""
from rest_framework import serializers
from apps.clinical.models import Activity, Consultation, Patient


class OwnedRecordSerializer(serializers.ModelSerializer):
    """Base serializer: adds lastUpdated and re-attaches extra client fields."""
    lastUpdated = serializers.DateTimeField(source='last_updated', read_only=True)

    def to_representation(self, instance):
        data = super().to_representation(instance)
        extras = {k: v for k, v in (instance.details or {}).items() if k not in data}
        data.update(extras)
        return data


class PatientSerializer(OwnedRecordSerializer):
    """Serializer for Patient (read-only)"""
    village = serializers.CharField(source='location', read_only=True, allow_null=True)
    phoneNumber = serializers.CharField(source='contact', read_only=True, allow_null=True)
    dateOfBirth = serializers.DateField(source='date_of_birth', read_only=True, allow_null=True)

    class Meta:
        model = Patient
        fields = [
            'id',
            'name',
            'gender',
            'village',
            'phoneNumber',
            'dateOfBirth',
            'age',
            'lastUpdated',
        ]
        read_only_fields = fields


class ConsultationSerializer(OwnedRecordSerializer):
    """Serializer for Consultation (read-only)"""
    patientId = serializers.IntegerField(source='patient_id', read_only=True)
    symptoms = serializers.CharField(source='notes', read_only=True, allow_null=True)

    class Meta:
        model = Consultation
        fields = [
            'id',
            'patientId',
            'symptoms',
            'status',
            'lastUpdated',
        ]
        read_only_fields = fields


class ActivitySerializer(OwnedRecordSerializer):
    """Serializer for Activity (read-only)"""
    type = serializers.CharField(source='activity_type', read_only=True)
    patientId = serializers.IntegerField(source='patient_id', read_only=True, allow_null=True)

    class Meta:
        model = Activity
        fields = [
            'id',
            'message',
            'type',
            'read',
            'patientId',
            'lastUpdated',
        ]
        read_only_fields = fields
