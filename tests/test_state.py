"""Tests for assembler.state module."""

import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from assembler.state import ExecutionState, ResourceRecord


class TestResourceRecord:
    """Tests for ResourceRecord dataclass."""

    def test_initial_state(self):
        record = ResourceRecord(name='Db', kind='database')
        assert record.status == 'pending'
        assert record.attributes == {}
        assert record.duration is None

    def test_lifecycle(self):
        record = ResourceRecord(name='Db')
        record.start()
        assert record.status == 'provisioning'
        record.complete({'endpoint': 'db.local'}, digest='abc')
        assert record.status == 'ready'
        assert record.attributes == {'endpoint': 'db.local'}
        assert record.digest == 'abc'
        assert record.duration is not None

    def test_fail(self):
        record = ResourceRecord(name='Db')
        record.start()
        record.fail('HTTP 500')
        assert record.status == 'failed'
        assert record.error == 'HTTP 500'

    def test_mark_destroyed_clears_attributes(self):
        record = ResourceRecord(name='Db', status='ready', digest='abc', attributes={'arn': 'x'})
        record.mark_destroyed()
        assert record.status == 'destroyed'
        assert record.attributes == {}
        assert record.digest is None

    def test_dict_round_trip(self):
        record = ResourceRecord(name='Vpc', kind='network', status='ready', imported=True,
                                attributes={'id': 'vpc-1'})
        data = record.to_dict()
        assert data == {
            'name': 'Vpc', 'kind': 'network', 'status': 'ready',
            'imported': True, 'attributes': {'id': 'vpc-1'},
        }
        assert ResourceRecord.from_dict(data) == record


class TestExecutionState:
    """Tests for ExecutionState."""

    def test_add_and_get(self):
        state = ExecutionState('data', 'beta')
        state.add_resource('Db', 'database')
        assert state.get_resource('Db').kind == 'database'
        with pytest.raises(KeyError):
            state.get_resource('missing')

    def test_ensure_resource_keeps_existing_record(self):
        state = ExecutionState('data', 'beta')
        record = state.add_resource('Db', 'database')
        record.complete({'endpoint': 'x'})
        again = state.ensure_resource('Db', 'database')
        assert again is record
        assert again.status == 'ready'

    def test_live_resources(self):
        state = ExecutionState('data', 'beta')
        state.add_resource('Vpc', 'network', imported=True).complete({'id': 'vpc-1'})
        state.add_resource('Db', 'database').complete()
        state.add_resource('Broken', 'workload').fail('boom')
        state.add_resource('Later', 'workload')
        assert [r.name for r in state.live_resources()] == ['Db', 'Broken']

    def test_save_and_load(self, tmp_path):
        state = ExecutionState('data', 'beta')
        state.start()
        state.add_resource('Db', 'database').complete({'endpoint': 'db.local'}, digest='d1')
        state.outputs = {'DbHost': 'db.local'}
        state.finish()

        path = state.save(tmp_path / 'beta' / 'data.json')
        data = json.loads(path.read_text())
        assert data['stack_name'] == 'data'
        assert data['resources']['Db']['digest'] == 'd1'

        loaded = ExecutionState.load('data', 'beta', path)
        assert loaded.outputs == {'DbHost': 'db.local'}
        assert loaded.get_resource('Db').attributes == {'endpoint': 'db.local'}
        assert loaded.started_at == state.started_at

    def test_default_path(self, tmp_path):
        with patch('assembler.state.get_base_dir', return_value=tmp_path):
            path = ExecutionState('data', 'staging').save()
        assert path == tmp_path / '.states' / 'staging' / 'data.json'
        assert path.exists()

    def test_load_missing_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ExecutionState.load('data', 'beta', tmp_path / 'nope.json')

    def test_load_or_create(self, tmp_path):
        state = ExecutionState.load_or_create('data', 'beta', tmp_path / 'nope.json')
        assert state.resources == {}
        assert state.outputs == {}
