"""
Tests for the offline session: local edits, single-flight sync,
acknowledgment, and debounced auto-sync.

The transport is stubbed; see test_offline_end_to_end.py for runs
against the real sync endpoint.
"""
import threading
from unittest.mock import Mock

import pytest

from apps.offline.config import OfflineConfig
from apps.offline.exceptions import LocalRecordNotFound, TransportError
from apps.offline.mutation_log import MutationLog
from apps.offline.session import OfflineSession, SyncReport
from apps.offline.transport import SyncResponse

SERVER_TIME = '2026-03-01T10:00:00+00:00'


class StubTransport:
    """Answers each batch with ``handler(changes)``; assigns ids from 100."""

    def __init__(self, handler=None):
        self.handler = handler or self.accept_all
        self.batches = []
        self.session = Mock()
        self._next_id = 100

    def submit(self, changes):
        self.batches.append(changes)
        return self.handler(changes)

    def accept_all(self, changes):
        results = []
        for c in changes:
            result = {'model': c['model'], 'type': c['type']}
            if c['type'] == 'create':
                result.update(id=self._next_id, tempId=c['tempId'], lastUpdated=SERVER_TIME)
                self._next_id += 1
            else:
                result['id'] = c['data']['id']
                if c['type'] == 'update':
                    result['lastUpdated'] = SERVER_TIME
            results.append(result)
        return SyncResponse(success=True, results=results, status_code=200)


@pytest.fixture
def transport():
    return StubTransport()


@pytest.fixture
def reports():
    return []


@pytest.fixture
def session(transport, reports):
    return OfflineSession(transport, debounce_seconds=0.01, listener=reports.append)


class TestLocalEditing:

    def test_create_applies_locally_and_queues(self, session):
        patient = session.create_patient({'name': 'Amina', 'village': 'Kisumu'})

        assert patient['id'] == 'temp_1001'
        assert patient['tempId'] == 'temp_1001'
        assert session.store.patients == [patient]
        assert session.queued_items == 1
        assert session.log.current_batch()[0].to_wire() == {
            'model': 'Patient',
            'type': 'create',
            'data': {'name': 'Amina', 'village': 'Kisumu', 'id': 'temp_1001'},
            'tempId': 'temp_1001',
        }

    def test_update_carries_last_server_timestamp(self, session):
        session.store.insert('Patient', {'id': 41, 'name': 'Amina', 'lastUpdated': SERVER_TIME})

        session.update_patient(41, {'name': 'Amina N.'})

        assert session.store.patients[0]['name'] == 'Amina N.'
        wire = session.log.current_batch()[0].to_wire()
        assert wire['data'] == {'name': 'Amina N.', 'id': 41}
        assert wire['lastUpdatedAt'] == SERVER_TIME

    def test_update_unknown_record_raises(self, session):
        with pytest.raises(LocalRecordNotFound):
            session.update_consultation(999, {'status': 'completed'})
        assert session.queued_items == 0

    def test_delete_patient_mirrors_server_cascade(self, session):
        patient = session.create_patient({'name': 'A'})
        session.create_consultation(patient['id'], {'symptoms': 'fever'})
        activity = session.create_activity('Follow up', 'urgent', patient_id=patient['id'])

        session.delete_patient(patient['id'])

        assert session.store.patients == []
        assert session.store.consultations == []
        assert session.store.get('Activity', activity['id'])['patientId'] is None
        assert session.log.current_batch()[-1].to_wire() == {
            'model': 'Patient', 'type': 'delete', 'data': {'id': 'temp_1001'},
        }

    def test_delete_unknown_record_is_ignored(self, session):
        session.delete_consultation(12345)

        assert session.queued_items == 0

    def test_mark_activity_read(self, session):
        activity = session.create_activity('New patient registered', 'new_patient')

        session.mark_activity_read(activity['id'])

        assert activity['read'] is True
        assert session.log.current_batch()[-1].payload == {'read': True, 'id': activity['id']}


class TestSyncNow:

    def test_end_to_end_scenario(self, session, transport, reports):
        patient = session.create_patient({'name': 'Amina'})
        assert patient['id'] == 'temp_1001'
        session.create_consultation('temp_1001', {'symptoms': 'fever'})
        assert session.queued_items == 2

        report = session.sync_now()

        assert report == SyncReport(success=True, synced=2)
        assert report.message == '2 items synced'
        assert len(transport.batches) == 1
        assert transport.batches[0][1]['data']['patientId'] == 'temp_1001'
        assert session.store.patients[0]['id'] == 100
        assert session.store.patients[0]['tempId'] == 'temp_1001'
        assert session.store.consultations[0]['patientId'] == 100
        assert session.queued_items == 0
        assert session.last_synced is not None
        assert reports == [report]

    def test_empty_queue_is_noop(self, session, transport, reports):
        assert session.sync_now() is None
        assert transport.batches == []
        assert reports == []

    def test_transport_failure_keeps_log(self, reports):
        def fail(changes):
            raise TransportError('Network error: ConnectionError')

        session = OfflineSession(StubTransport(fail), listener=reports.append)
        session.create_patient({'name': 'A'})

        report = session.sync_now()

        assert report.success is False
        assert report.code == 'TransportError'
        assert report.message == 'Sync failed: Network error: ConnectionError'
        assert session.queued_items == 1
        assert session.store.patients[0]['id'] == 'temp_1001'
        assert session.last_synced is None

    def test_server_rejection_keeps_log(self):
        transport = StubTransport(lambda changes: SyncResponse(
            success=False, error='Patient update conflict (id=4)', code='UpdateConflict', status_code=409
        ))
        session = OfflineSession(transport)
        session.store.insert('Patient', {'id': 4, 'lastUpdated': SERVER_TIME})
        session.update_patient(4, {'name': 'B'})

        report = session.sync_now()

        assert report.code == 'UpdateConflict'
        assert session.queued_items == 1

    def test_failed_batch_is_resent_with_later_edits(self):
        outcomes = iter([TransportError('timed out'), None])
        stub = StubTransport()

        def flaky(changes):
            outcome = next(outcomes)
            if outcome is not None:
                raise outcome
            return stub.accept_all(changes)

        transport = StubTransport(flaky)
        session = OfflineSession(transport)
        session.create_patient({'name': 'A'})
        session.sync_now()
        session.create_patient({'name': 'B'})

        report = session.sync_now()

        assert report.synced == 2
        assert [c['tempId'] for c in transport.batches[1]] == ['temp_1001', 'temp_1002']

    def test_second_trigger_while_in_flight_is_noop(self):
        entered = threading.Event()
        release = threading.Event()
        stub = StubTransport()

        def slow(changes):
            entered.set()
            release.wait(5)
            return stub.accept_all(changes)

        transport = StubTransport(slow)
        session = OfflineSession(transport)
        session.create_patient({'name': 'A'})

        worker = threading.Thread(target=session.sync_now)
        worker.start()
        assert entered.wait(5)
        assert session.is_syncing is True

        assert session.sync_now() is None

        release.set()
        worker.join(5)
        assert len(transport.batches) == 1
        assert session.is_syncing is False
        assert session.queued_items == 0

    def test_edits_during_flight_stay_queued_and_are_remapped(self):
        stub = StubTransport()

        def edit_while_sending(changes):
            if len(transport.batches) == 1:
                session.update_patient('temp_1001', {'name': 'Amina N.'})
                session.create_consultation('temp_1001', {'symptoms': 'cough'})
            return stub.accept_all(changes)

        transport = StubTransport(edit_while_sending)
        session = OfflineSession(transport)
        session.create_patient({'name': 'Amina'})

        report = session.sync_now()

        assert report.synced == 1
        update, consultation = [m.to_wire() for m in session.log.current_batch()]
        assert update['data'] == {'name': 'Amina N.', 'id': 100}
        assert update['lastUpdatedAt'] == SERVER_TIME
        assert consultation['data']['patientId'] == 100
        assert consultation['tempId'] == 'temp_1002'
        assert session.store.consultations[0]['patientId'] == 100

    def test_repeat_edit_during_flight_takes_timestamp_of_batch_write(self):
        stub = StubTransport()
        later = '2026-03-01T10:05:00+00:00'

        def edit_while_sending(changes):
            results = stub.accept_all(changes).results
            if len(transport.batches) == 2:
                session.update_patient(100, {'name': 'Amina Njeri'})
                for result in results:
                    if result['type'] == 'update':
                        result['lastUpdated'] = later
            return SyncResponse(success=True, results=results, status_code=200)

        transport = StubTransport(edit_while_sending)
        session = OfflineSession(transport)
        session.create_patient({'name': 'Amina'})
        session.sync_now()
        session.update_patient(100, {'name': 'Amina N.'})

        report = session.sync_now()

        assert report.synced == 1
        [queued] = [m.to_wire() for m in session.log.current_batch()]
        assert queued['data'] == {'name': 'Amina Njeri', 'id': 100}
        assert queued['lastUpdatedAt'] == later
        assert session.store.patients[0]['lastUpdated'] == later

    def test_listener_errors_do_not_break_sync(self, transport):
        session = OfflineSession(transport, listener=Mock(side_effect=RuntimeError('ui gone')))
        session.create_patient({'name': 'A'})

        report = session.sync_now()

        assert report.success is True
        assert session.queued_items == 0

    def test_pull_snapshot_seeds_store(self, session, transport):
        transport.fetch_snapshot = Mock(return_value={
            'patients': [{'id': 5, 'name': 'Server'}], 'consultations': [], 'activities': [],
        })
        session.create_patient({'name': 'Local'})

        session.pull_snapshot()

        assert [p['name'] for p in session.store.patients] == ['Server', 'Local']
        assert session.has_unsynced_records() is True


class TestAutoSync:

    def test_regaining_connectivity_syncs_after_debounce(self, session, transport, reports):
        session.create_patient({'name': 'A'})

        session.set_online(True)
        session.wait_for_auto_sync(timeout=5)

        assert session.is_online is True
        assert len(transport.batches) == 1
        assert reports[0].success is True

    def test_no_auto_sync_with_empty_queue(self, session, transport):
        session.set_online(True)
        session.wait_for_auto_sync(timeout=5)

        assert transport.batches == []

    def test_flapping_connectivity_cancels_pending_sync(self, transport):
        session = OfflineSession(transport, debounce_seconds=30)
        session.create_patient({'name': 'A'})

        session.set_online(True)
        session.set_online(False)
        session.wait_for_auto_sync(timeout=1)

        assert transport.batches == []
        assert session.queued_items == 1

    def test_repeated_online_signal_does_not_reschedule(self, session, transport):
        session.create_patient({'name': 'A'})
        session.set_online(True)
        session.wait_for_auto_sync(timeout=5)

        session.create_patient({'name': 'B'})
        session.set_online(True)
        session.wait_for_auto_sync(timeout=5)

        assert len(transport.batches) == 1
        assert session.queued_items == 1


class TestSessionPersistence:

    def test_from_config_restores_state(self, tmp_path):
        config = OfflineConfig(server_url='http://sync.local', data_dir=str(tmp_path), device_id='tablet-7')
        first = OfflineSession.from_config(config, token='abc')
        first.create_patient({'name': 'Amina'})
        first.close()

        second = OfflineSession.from_config(config, token='abc')

        assert second.queued_items == 1
        assert second.store.patients[0]['id'] == 'temp_1001'
        assert second.create_patient({'name': 'B'})['id'] == 'temp_1002'
        assert second.transport.session.headers['X-Device-ID'] == 'tablet-7'
        assert isinstance(second.log, MutationLog)

    def test_edit_that_cannot_be_persisted_changes_nothing(self, tmp_path):
        config = OfflineConfig(server_url='http://sync.local', data_dir=str(tmp_path))
        session = OfflineSession.from_config(config)
        patient = session.create_patient({'name': 'Amina'})

        with pytest.raises(TypeError):
            session.update_patient(patient['id'], {'photo': object()})
        with pytest.raises(TypeError):
            session.create_patient({'name': 'B', 'photo': object()})

        assert session.queued_items == 1
        assert len(session.store.patients) == 1
        assert 'photo' not in session.store.patients[0]

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv('SYNC_SERVER_URL', 'https://chw.example.org')
        monkeypatch.setenv('SYNC_TIMEOUT_SECONDS', '15')
        monkeypatch.setenv('SYNC_DEBOUNCE_SECONDS', '2.5')
        monkeypatch.setenv('SYNC_DATA_DIR', '/data/chw')

        config = OfflineConfig.from_env()

        assert config.server_url == 'https://chw.example.org'
        assert config.timeout_seconds == 15.0
        assert config.debounce_seconds == 2.5
        assert config.log_path == '/data/chw/mutation_log.json'
