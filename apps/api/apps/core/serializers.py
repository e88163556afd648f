"""
Core serializers.
"""
from rest_framework import serializers
from apps.authz.models import User


class UserProfileSerializer(serializers.ModelSerializer):
    """Profile of the authenticated user, cached by the offline client."""

    class Meta:
        model = User
        fields = ['id', 'email', 'name', 'phone', 'role']
        read_only_fields = fields
