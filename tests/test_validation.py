#!/usr/bin/env python3
"""Tests for validation.py - preflight checks before apply/destroy."""

import sys
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import CycleDetected
from config import EnvironmentConfig
from blueprints import build_app
from assembler.stack import App
from validation import (
    format_preflight_results,
    run_preflight_checks,
    validate_environment,
    validate_orchestrator,
    validate_stacks,
    validate_state_dir,
)


class TestValidateEnvironment:
    """Test environment completeness checks."""

    def test_complete(self, beta_env):
        assert validate_environment(beta_env) == []

    def test_incomplete_non_default(self, staging_env):
        errors = validate_environment(staging_env)
        assert len(errors) == 1
        assert "missing: account, vpc_id" in errors[0]
        assert 'environments.staging' in errors[0]

    def test_incomplete_default_hints_cdk_variables(self):
        errors = validate_environment(EnvironmentConfig(name='beta', is_default=True))
        assert 'CDK_DEFAULT_ACCOUNT' in errors[0]


class TestValidateOrchestrator:
    """Test control plane reachability checks."""

    def test_missing_endpoint(self):
        errors = validate_orchestrator('', 'beta')
        assert 'not configured' in errors[0]
        assert '--simulate' in errors[0]

    def test_healthy(self):
        with patch('validation.HttpOrchestrator.health', return_value=[]) as health:
            assert validate_orchestrator('https://orch:8443', 'qa', token='t') == []
        health.assert_called_once()

    def test_unhealthy(self):
        with patch('validation.HttpOrchestrator.health', return_value=['Cannot connect']):
            assert validate_orchestrator('https://orch:8443', 'qa', token='t') == ['Cannot connect']


class TestValidateStateDir:
    """Test state directory checks."""

    def test_writable_nonexistent_child(self, tmp_path):
        assert validate_state_dir(tmp_path / 'a' / 'b') == []

    def test_not_writable(self, tmp_path):
        with patch('validation.os.access', return_value=False):
            errors = validate_state_dir(tmp_path)
        assert 'not writable' in errors[0]


class TestValidateStacks:
    """Test synthesis checks."""

    def test_passed(self, beta_env):
        passed, failed = validate_stacks(build_app(beta_env, ['superset-minimal']))
        assert failed == []
        assert passed[0].startswith('superset-minimal: ')
        assert '(1 imported)' in passed[0]

    def test_failed_finalize(self, beta_env):
        app = App(beta_env)
        stack = app.stack('broken')
        with patch.object(stack, 'finalize', side_effect=CycleDetected('loop')):
            passed, failed = validate_stacks(app)
        assert passed == []
        assert failed == ['broken: loop']


class TestRunPreflightChecks:
    """Test the combined preflight run."""

    def test_simulated_success(self, beta_env, tmp_path):
        app = build_app(beta_env, ['superset-minimal'])
        ok, results = run_preflight_checks(beta_env, app, simulate=True, state_dir=tmp_path)
        assert ok is True
        assert results['orchestrator']['passed'] == ['Simulated orchestrator (no control plane calls)']
        assert results['stacks']['passed']

    def test_missing_endpoint_fails(self, beta_env, tmp_path):
        ok, results = run_preflight_checks(beta_env, state_dir=tmp_path)
        assert ok is False
        assert results['orchestrator']['failed']
        assert results['stacks'] == {'passed': [], 'failed': []}

    def test_incomplete_environment_fails(self, staging_env, tmp_path):
        ok, results = run_preflight_checks(staging_env, simulate=True, state_dir=tmp_path)
        assert ok is False
        assert results['environment']['failed']


class TestFormatPreflightResults:
    """Test preflight output formatting."""

    def test_all_passed(self):
        results = {
            'environment': {'passed': ['beta: ok'], 'failed': []},
            'stacks': {'passed': [], 'failed': []},
        }
        text = format_preflight_results('beta', results)
        assert "Preflight checks for environment 'beta'" in text
        assert '✓ beta: ok' in text
        assert 'Stacks:' not in text
        assert text.endswith('All checks passed. Ready to apply.')

    def test_multiline_failure(self):
        results = {'orchestrator': {'passed': [], 'failed': ['Cannot connect\n  Check: endpoint']}}
        text = format_preflight_results('qa', results)
        assert '✗ Cannot connect' in text
        assert '    Check: endpoint' in text
        assert text.endswith('Some checks failed. Fix issues before applying.')
