"""Tests for assembler.outputs module."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import DuplicateName, UnresolvedReference
from config import ConfigurationIncomplete
from assembler.outputs import ExportRegistry, OutputDeclaration
from assembler.resource import Ref


class TestOutputDeclaration:
    """Tests for declared (unresolved) outputs."""

    def test_render_literal(self):
        assert OutputDeclaration('Port', '8088').render() == '8088'

    def test_render_ref_with_template(self):
        declaration = OutputDeclaration('Url', Ref('Alb', 'dns_name'), template='http://{}')
        assert declaration.render() == 'http://${Alb.dns_name}'
        assert declaration.source == 'Alb'

    def test_to_dict_includes_description(self):
        declaration = OutputDeclaration('Port', '8088', exported=True, description='Web port')
        assert declaration.to_dict() == {
            'key': 'Port', 'value': '8088', 'exported': True, 'description': 'Web port',
        }


class TestOutputExporter:
    """Tests for per-stack outputs."""

    def test_literal_resolves_immediately(self, app):
        stack = app.stack('data')
        stack.export('Namespace', 'superset')
        output = stack.output('Namespace')
        assert output.value == 'superset'
        assert output.exported is False

    def test_ref_waits_for_ready(self, app):
        stack = app.stack('edge')
        alb = stack.resolve('Alb', 'load_balancer')
        stack.export('Url', Ref('Alb', 'dns_name'), template='http://{}')

        with pytest.raises(UnresolvedReference, match='not ready'):
            stack.output('Url')

        alb.start()
        alb.complete({'dns_name': 'alb-1.elb.amazonaws.com'})
        assert stack.output('Url').value == 'http://alb-1.elb.amazonaws.com'

    def test_emitted_value_is_immutable(self, app):
        stack = app.stack('edge')
        alb = stack.resolve('Alb', 'load_balancer')
        stack.export('Dns', Ref('Alb', 'dns_name'))
        alb.start()
        alb.complete({'dns_name': 'first'})
        first = stack.output('Dns')

        alb.attributes['dns_name'] = 'second'
        assert stack.output('Dns') is first
        assert stack.output('Dns').value == 'first'

    def test_missing_attribute(self, app):
        stack = app.stack('edge')
        alb = stack.resolve('Alb', 'load_balancer')
        stack.export('Dns', Ref('Alb', 'dns_name'))
        alb.start()
        alb.complete({})
        with pytest.raises(UnresolvedReference, match="no attribute 'dns_name'"):
            stack.output('Dns')

    def test_unknown_key(self, app):
        with pytest.raises(UnresolvedReference, match="no output 'Nope'"):
            app.stack('data').output('Nope')

    def test_duplicate_key(self, app):
        stack = app.stack('data')
        stack.export('Port', '8088')
        with pytest.raises(DuplicateName):
            stack.export('Port', '8089')

    def test_ref_to_undeclared_resource(self, app):
        with pytest.raises(UnresolvedReference, match="undeclared resource 'Db'"):
            app.stack('data').export('Host', Ref('Db', 'endpoint'))

    def test_blank_global_value_rejected(self, app):
        stack = app.stack('data')
        with pytest.raises(ConfigurationIncomplete, match='empty value'):
            stack.export('Host', '   ', make_global=True)
        assert stack.exporter.declarations == []

    def test_emit_all(self, app):
        stack = app.stack('data')
        stack.resolve('Vpc', 'network', existing_id='vpc-1')
        stack.export('VpcId', Ref('Vpc', 'id'), make_global=True)
        stack.export('Port', '5432')
        assert [o.to_dict() for o in stack.exporter.emit()] == [
            {'key': 'VpcId', 'value': 'vpc-1', 'exported': True},
            {'key': 'Port', 'value': '5432', 'exported': False},
        ]


class TestExportRegistry:
    """Tests for the app-wide export table."""

    def test_producer_and_keys(self, app):
        app.stack('infra').export('B', 'x', make_global=True)
        app.stack('net').export('A', 'y', make_global=True)
        assert app.exports.producer('B') == 'infra'
        assert app.exports.keys() == ['A', 'B']

    def test_same_key_from_two_stacks(self, app):
        app.stack('infra').export('ClusterName', 'a', make_global=True)
        with pytest.raises(DuplicateName, match="already published by stack 'infra'"):
            app.stack('other').export('ClusterName', 'b', make_global=True)

    def test_unknown_key(self):
        registry = ExportRegistry()
        with pytest.raises(UnresolvedReference):
            registry.resolve('Nothing')

    def test_resolve_global(self, app):
        app.stack('infra').export('Region', 'sa-east-1', make_global=True)
        output = app.exports.resolve('Region')
        assert output.value == 'sa-east-1'
        assert output.exported is True
