"""
Clinical URLs - read-only patients, consultations, activities.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import ActivityViewSet, ConsultationViewSet, PatientViewSet, SnapshotView

router = DefaultRouter()
router.register(r'patients', PatientViewSet, basename='patient')
router.register(r'consultations', ConsultationViewSet, basename='consultation')
router.register(r'activities', ActivityViewSet, basename='activity')

urlpatterns = [
    path('snapshot/', SnapshotView.as_view(), name='clinical-snapshot'),

    # Standard read endpoints via router
    path('', include(router.urls)),
]
