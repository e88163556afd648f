"""
Core views - current user profile.
"""
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from .serializers import UserProfileSerializer


class MeView(APIView):
    """
    GET /api/auth/me/

    Returns the profile of the user identified by the bearer token.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(UserProfileSerializer(request.user).data)
