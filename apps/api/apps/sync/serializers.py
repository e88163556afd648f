"""
Sync request/response serializers.
"""
from rest_framework import serializers
from .mutations import EntityType, MutationKind


class ChangeSerializer(serializers.Serializer):
    """
    One mutation on the wire.

    Only the envelope is checked here; model/type values and the
    per-kind required fields are validated by the reconciliation engine
    so they map onto the sync error taxonomy.
    """
    model = serializers.CharField()
    type = serializers.CharField()
    data = serializers.DictField()
    tempId = serializers.CharField(required=False, allow_null=True)
    lastUpdatedAt = serializers.CharField(required=False, allow_null=True)


class SyncRequestSerializer(serializers.Serializer):
    """Body of POST /api/v1/sync/."""
    changes = serializers.ListField(child=serializers.DictField(), allow_empty=False)

    def validate_changes(self, value):
        errors = {}
        for index, change in enumerate(value):
            serializer = ChangeSerializer(data=change)
            if not serializer.is_valid():
                errors[index] = serializer.errors
        if errors:
            raise serializers.ValidationError(errors)
        return value


class MutationResultSerializer(serializers.Serializer):
    model = serializers.ChoiceField(choices=EntityType.choices)
    type = serializers.ChoiceField(choices=MutationKind.choices)
    id = serializers.IntegerField()
    tempId = serializers.CharField(required=False)
    lastUpdated = serializers.DateTimeField(required=False)


class SyncSuccessSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    results = MutationResultSerializer(many=True)


class SyncFailureSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    error = serializers.CharField()
    code = serializers.CharField()
