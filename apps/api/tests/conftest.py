"""
Global test fixtures for pytest.

Provides reusable fixtures for API and sync testing:
- Authenticated API clients (two independent owners)
- Model instances (Patient, Consultation, Activity)
- A helper to build wire-format changes
"""
from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from apps.authz.models import User, UserRoleChoices
from apps.clinical.models import Activity, Consultation, Patient
from apps.core.observability.correlation import clear_request_context


@pytest.fixture(autouse=True)
def request_context():
    """Start and end every test with an empty correlation context."""
    clear_request_context()
    yield
    clear_request_context()


# ============================================================================
# Users & API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def chw_user(db):
    """Community health worker who owns the records under test."""
    return User.objects.create_user(
        email='chw@test.com',
        password='testpass123',
        name='Test CHW',
        role=UserRoleChoices.CHW,
    )


@pytest.fixture
def other_user(db):
    """A second worker; their records must stay invisible to chw_user."""
    return User.objects.create_user(
        email='other@test.com',
        password='testpass123',
        role=UserRoleChoices.CHW,
    )


@pytest.fixture
def chw_client(chw_user):
    """Authenticated API client for chw_user."""
    client = APIClient()
    client.force_authenticate(user=chw_user)
    return client


@pytest.fixture
def other_client(other_user):
    client = APIClient()
    client.force_authenticate(user=other_user)
    return client


# ============================================================================
# Records
# ============================================================================

@pytest.fixture
def server_time():
    """A fixed server timestamp an hour in the past."""
    return timezone.now() - timedelta(hours=1)


@pytest.fixture
def patient(chw_user, server_time):
    """Patient owned by chw_user, last written at server_time."""
    return Patient.objects.create(
        owner=chw_user,
        name='Amina Njeri',
        gender='female',
        location='Kisumu',
        contact='+254700000001',
        last_updated=server_time,
    )


@pytest.fixture
def other_patient(other_user, server_time):
    """Patient owned by other_user."""
    return Patient.objects.create(
        owner=other_user,
        name='Other Patient',
        location='Nakuru',
        last_updated=server_time,
    )


@pytest.fixture
def consultation(chw_user, patient, server_time):
    return Consultation.objects.create(
        owner=chw_user,
        patient=patient,
        notes='cough',
        last_updated=server_time,
    )


@pytest.fixture
def activity(chw_user, patient, server_time):
    return Activity.objects.create(
        owner=chw_user,
        patient=patient,
        message='Follow-up due',
        activity_type='urgent',
        last_updated=server_time,
    )


def change(model, kind, data, **extra):
    """Build one wire-format change."""
    payload = {'model': model, 'type': kind, 'data': data}
    payload.update(extra)
    return payload


@pytest.fixture
def make_change():
    return change
