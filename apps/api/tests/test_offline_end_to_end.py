"""
End-to-end: an OfflineSession reconciling with the real sync endpoint.

The transport posts through DRF's APIClient instead of the network, so
the whole path (log, store, remapper, engine, handlers) is exercised
against the test database.
"""
from datetime import timedelta
from unittest.mock import Mock

import pytest

from apps.clinical.models import Activity, Consultation, Patient
from apps.offline.session import OfflineSession
from apps.offline.transport import SyncResponse


class APIClientTransport:
    """SyncTransport stand-in that talks to the in-process server."""

    def __init__(self, client):
        self.client = client
        self.session = Mock()

    def submit(self, changes):
        response = self.client.post('/api/v1/sync/', {'changes': changes}, format='json')
        body = response.json()
        return SyncResponse(
            success=body['success'],
            results=body.get('results', []),
            error=body.get('error'),
            code=body.get('code'),
            status_code=response.status_code,
        )

    def fetch_snapshot(self):
        return self.client.get('/api/v1/clinical/snapshot/').json()


@pytest.fixture
def offline(chw_client):
    return OfflineSession(APIClientTransport(chw_client))


@pytest.mark.django_db
class TestOfflineRoundTrip:

    def test_patient_and_consultation_created_offline(self, offline, chw_user):
        patient = offline.create_patient({'name': 'Amina', 'village': 'Kisumu', 'dateOfBirth': '1990-07-15'})
        offline.create_consultation(patient['id'], {'symptoms': 'fever'})
        assert offline.queued_items == 2

        report = offline.sync_now()

        assert report.success is True
        assert report.synced == 2
        server_patient = Patient.objects.get(owner=chw_user)
        server_consultation = Consultation.objects.get(owner=chw_user)
        assert server_consultation.patient_id == server_patient.id
        assert server_consultation.notes == 'fever'
        assert offline.store.patients[0]['id'] == server_patient.id
        assert offline.store.patients[0]['tempId'] == 'temp_1001'
        assert offline.store.consultations[0]['patientId'] == server_patient.id
        assert offline.queued_items == 0

    def test_follow_up_update_does_not_conflict(self, offline, chw_user):
        patient = offline.create_patient({'name': 'Amina'})
        offline.sync_now()

        offline.update_patient(patient['tempId'], {'phoneNumber': '+254700000002'})
        report = offline.sync_now()

        assert report.success is True
        assert Patient.objects.get(owner=chw_user).contact == '+254700000002'

    def test_edits_made_during_a_sync_reach_the_server(self, offline, chw_user):
        transport = offline.transport
        original_submit = transport.submit
        calls = []

        def submit_and_keep_editing(changes):
            calls.append(changes)
            if len(calls) == 1:
                offline.update_patient('temp_1001', {'name': 'Amina N.'})
                offline.create_activity('Referred', 'urgent', patient_id='temp_1001')
            return original_submit(changes)

        transport.submit = submit_and_keep_editing
        offline.create_patient({'name': 'Amina'})
        offline.sync_now()

        report = offline.sync_now()

        assert report.success is True
        server_patient = Patient.objects.get(owner=chw_user)
        assert server_patient.name == 'Amina N.'
        assert Activity.objects.get(owner=chw_user).patient == server_patient

    def test_repeat_edit_made_during_a_sync_does_not_conflict(self, offline, chw_user):
        transport = offline.transport
        original_submit = transport.submit
        calls = []

        def submit_and_keep_editing(changes):
            calls.append(changes)
            if len(calls) == 2:
                offline.update_patient('temp_1001', {'name': 'Amina Njeri'})
            return original_submit(changes)

        transport.submit = submit_and_keep_editing
        offline.create_patient({'name': 'Amina'})
        offline.sync_now()
        offline.update_patient('temp_1001', {'name': 'Amina N.'})
        offline.sync_now()

        report = offline.sync_now()

        assert report.success is True
        assert offline.queued_items == 0
        assert Patient.objects.get(owner=chw_user).name == 'Amina Njeri'

    def test_server_side_change_causes_conflict(self, offline, chw_user):
        patient = offline.create_patient({'name': 'Amina'})
        offline.sync_now()
        Patient.objects.filter(id=patient['id']).update(
            last_updated=Patient.objects.get(id=patient['id']).last_updated + timedelta(minutes=5)
        )

        offline.update_patient(patient['id'], {'name': 'Stale edit'})
        report = offline.sync_now()

        assert report.success is False
        assert report.code == 'UpdateConflict'
        assert offline.queued_items == 1
        assert Patient.objects.get(id=patient['id']).name == 'Amina'

    def test_delete_offline(self, offline, chw_user, patient, consultation):
        offline.pull_snapshot()
        assert offline.store.consultations[0]['patientId'] == patient.id

        offline.delete_patient(patient.id)
        report = offline.sync_now()

        assert report.success is True
        assert not Patient.objects.filter(id=patient.id).exists()
        assert not Consultation.objects.filter(id=consultation.id).exists()

    def test_extra_fields_round_trip(self, offline, chw_user):
        offline.create_patient({'name': 'Amina', 'bloodGroup': 'O+'})
        offline.sync_now()
        offline.store.seed({'patients': [], 'consultations': [], 'activities': []})

        offline.pull_snapshot()

        assert offline.store.patients[0]['bloodGroup'] == 'O+'
        assert Patient.objects.get(owner=chw_user).details == {'bloodGroup': 'O+'}
