"""Tests for CLI module."""

import json
import sys
from pathlib import Path
from unittest.mock import patch

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from cli import main


class TestMain:
    """Tests for top-level dispatch."""

    def test_no_args_prints_usage(self, capsys):
        assert main([]) == 0
        out = capsys.readouterr().out
        assert 'Usage: stackgraph <noun> <action> [options]' in out
        assert 'stack ' in out
        assert 'env ' in out

    @patch('cli.get_version', return_value='v0.3.1')
    def test_version(self, mock_version, capsys):
        assert main(['--version']) == 0
        assert capsys.readouterr().out.strip() == 'stackgraph v0.3.1'

    def test_help(self, capsys):
        assert main(['-h']) == 0
        assert 'Examples:' in capsys.readouterr().out

    def test_unknown_command(self, capsys):
        assert main(['deploy']) == 1
        assert "Unknown command 'deploy'" in capsys.readouterr().out


class TestStackDispatch:
    """Tests for the stack noun."""

    def test_no_action(self, capsys):
        assert main(['stack']) == 1
        assert 'Actions:' in capsys.readouterr().out

    def test_help_flag(self, capsys):
        assert main(['stack', '--help']) == 0

    def test_unknown_action(self, capsys):
        assert main(['stack', 'rollback']) == 1
        assert "Unknown stack action 'rollback'" in capsys.readouterr().out


class TestEnvCommand:
    """Tests for env list/show."""

    def test_list_by_default(self, config_dir, capsys):
        assert main(['env']) == 0
        out = capsys.readouterr().out
        assert ' * beta ' in out
        assert 'missing account, vpc_id' in out
        assert 'qa' in out

    def test_show_json(self, config_dir, capsys):
        assert main(['env', 'show', 'qa', '--json-output']) == 0
        data = json.loads(capsys.readouterr().out)
        assert data['account'] == '111122223333'
        assert data['orchestrator_endpoint'] == 'https://orchestrator.test:8443'

    def test_show_incomplete(self, config_dir, capsys):
        assert main(['env', 'show', 'staging']) == 0
        out = capsys.readouterr().out
        assert 'account:      (unset)' in out
        assert 'incomplete: account, vpc_id' in out

    def test_show_unknown(self, config_dir, capsys):
        assert main(['env', 'show', 'nope']) == 1
        assert "Unknown environment 'nope'" in capsys.readouterr().err


class TestSynth:
    """Tests for stack synth."""

    def test_synth_to_stdout(self, config_dir, capsys):
        assert main(['stack', 'synth', '-S', 'superset-app']) == 0
        document = json.loads(capsys.readouterr().out)
        assert document['environment']['name'] == 'beta'
        assert [s['stack'] for s in document['stacks']] == ['superset-infra', 'superset-app']
        assert 'SupersetClusterName' in document['exports']
        assert document['stacks'][1]['depends_on_stacks'] == ['superset-infra']

    def test_synth_to_file(self, config_dir, tmp_path, capsys):
        output = tmp_path / 'out' / 'synth.json'
        assert main(['stack', 'synth', '-S', 'superset-minimal', '-o', str(output)]) == 0
        document = json.loads(output.read_text())
        assert document['stacks'][0]['order'][0] == 'SupersetVpc'
        assert capsys.readouterr().out == ''

    def test_existing_cluster_option(self, config_dir, capsys):
        assert main(['stack', 'synth', '-S', 'superset-minimal', '--existing-cluster', 'prod-eks']) == 0
        document = json.loads(capsys.readouterr().out)
        cluster = document['stacks'][0]['resources'][1]
        assert cluster['name'] == 'SupersetCluster'
        assert cluster['imported'] is True
        assert cluster['existing_id'] == 'prod-eks'

    def test_requires_stack(self, config_dir, capsys):
        assert main(['stack', 'synth']) == 1
        assert 'specify a stack' in capsys.readouterr().err

    def test_incomplete_environment(self, config_dir, capsys):
        assert main(['stack', 'synth', '-S', 'superset-minimal', '-E', 'staging']) == 1
        assert "Environment 'staging' is missing" in capsys.readouterr().err

    def test_unknown_stack(self, config_dir, capsys):
        assert main(['stack', 'synth', '-S', 'nope']) == 1
        assert 'Unknown stack: nope' in capsys.readouterr().err

    def test_stack_file(self, config_dir, tmp_path, capsys):
        path = tmp_path / 'extra.yaml'
        path.write_text("name: extra\nresources:\n  - {name: Token, kind: secret}\n")
        assert main(['stack', 'synth', '--stack-file', str(path)]) == 0
        document = json.loads(capsys.readouterr().out)
        assert document['stacks'][0]['order'] == ['Token']


class TestPlan:
    """Tests for stack plan."""

    def test_fresh_plan(self, config_dir, tmp_path, capsys):
        assert main(['stack', 'plan', '-S', 'superset-minimal', '--state-dir', str(tmp_path)]) == 0
        out = capsys.readouterr().out
        assert 'Stack superset-minimal (beta):' in out
        assert 'import   SupersetVpc [network]  (vpc-0072a792fee9ee196)' in out
        assert 'create   SupersetALB [load_balancer]' in out

    def test_plan_json_after_apply(self, config_dir, tmp_path, capsys):
        main(['stack', 'apply', '-S', 'superset-minimal', '--simulate', '--state-dir', str(tmp_path)])
        capsys.readouterr()

        assert main(['stack', 'plan', '-S', 'superset-minimal', '--state-dir', str(tmp_path),
                     '--json-output']) == 0
        data = json.loads(capsys.readouterr().out)
        actions = {c['action'] for c in data['stacks'][0]['changes']}
        assert actions == {'import', 'no-op'}


class TestApply:
    """Tests for stack apply."""

    def test_simulated_apply(self, config_dir, tmp_path, capsys):
        rc = main(['stack', 'apply', '-S', 'superset-minimal', '--simulate', '--state-dir', str(tmp_path)])
        assert rc == 0
        out = capsys.readouterr().out
        assert 'superset-minimal.NamespaceName = superset' in out
        assert 'superset-minimal.SupersetURL = http://' in out
        assert (tmp_path / 'beta' / 'superset-minimal.json').exists()

    def test_simulated_apply_json(self, config_dir, tmp_path, capsys):
        rc = main(['stack', 'apply', '-S', 'superset-app', '--simulate', '--json-output',
                   '--state-dir', str(tmp_path)])
        assert rc == 0
        data = json.loads(capsys.readouterr().out)
        assert data['verb'] == 'apply'
        assert data['success'] is True
        assert [s['name'] for s in data['stacks']] == ['superset-infra', 'superset-app']
        vpc = data['stacks'][0]['resources'][0]
        assert vpc == {'name': 'ExistingVPC', 'kind': 'network', 'status': 'ready', 'imported': True}

    def test_dry_run(self, config_dir, tmp_path, capsys):
        rc = main(['stack', 'apply', '-S', 'superset-minimal', '--dry-run', '--state-dir', str(tmp_path)])
        assert rc == 0
        assert 'DRY-RUN APPLY: superset-minimal' in capsys.readouterr().out
        assert not (tmp_path / 'beta').exists()

    def test_preflight_fails_without_endpoint(self, config_dir, tmp_path, capsys):
        rc = main(['stack', 'apply', '-S', 'superset-minimal', '--state-dir', str(tmp_path)])
        assert rc == 1
        out = capsys.readouterr().out
        assert 'Pre-flight validation failed' in out
        assert 'Orchestrator endpoint not configured' in out

    def test_skip_preflight_still_needs_endpoint(self, config_dir, tmp_path, capsys):
        rc = main(['stack', 'apply', '-S', 'superset-minimal', '--skip-preflight',
                   '--state-dir', str(tmp_path)])
        assert rc == 1
        assert 'no orchestrator_endpoint' in capsys.readouterr().err


class TestDestroy:
    """Tests for stack destroy."""

    def test_destroy_after_apply(self, config_dir, tmp_path, capsys):
        main(['stack', 'apply', '-S', 'superset-minimal', '--simulate', '--state-dir', str(tmp_path)])
        rc = main(['stack', 'destroy', '-S', 'superset-minimal', '--simulate', '--yes',
                   '--state-dir', str(tmp_path)])
        assert rc == 0
        state = json.loads((tmp_path / 'beta' / 'superset-minimal.json').read_text())
        assert state['resources']['SupersetALB']['status'] == 'destroyed'
        assert state['resources']['SupersetVpc']['status'] == 'ready'

    def test_destroy_leaves_required_stacks(self, config_dir, tmp_path, capsys):
        main(['stack', 'apply', '-S', 'superset-app', '--simulate', '--state-dir', str(tmp_path)])
        capsys.readouterr()

        rc = main(['stack', 'destroy', '-S', 'superset-app', '--simulate', '--yes', '--json-output',
                   '--state-dir', str(tmp_path)])
        assert rc == 0
        data = json.loads(capsys.readouterr().out)
        assert [s['name'] for s in data['stacks']] == ['superset-app']

        workloads = json.loads((tmp_path / 'beta' / 'superset-app.json').read_text())
        assert workloads['resources']['SupersetDeployment']['status'] == 'destroyed'
        infra = json.loads((tmp_path / 'beta' / 'superset-infra.json').read_text())
        for name in ('SupersetCluster', 'SupersetDatabase', 'SupersetDBSecret'):
            assert infra['resources'][name]['status'] == 'ready'

    def test_confirmation_declined(self, config_dir, tmp_path, capsys):
        with patch('builtins.input', return_value='n'):
            rc = main(['stack', 'destroy', '-S', 'superset-minimal', '--simulate',
                       '--state-dir', str(tmp_path)])
        assert rc == 1
        assert 'Aborted.' in capsys.readouterr().out

    def test_dry_run_skips_confirmation(self, config_dir, tmp_path, capsys):
        rc = main(['stack', 'destroy', '-S', 'superset-minimal', '--dry-run', '--state-dir', str(tmp_path)])
        assert rc == 0
        assert 'SupersetVpc: keep (imported)' in capsys.readouterr().out


class TestValidate:
    """Tests for stack validate."""

    def test_simulated_validate(self, config_dir, tmp_path, capsys):
        rc = main(['stack', 'validate', '-S', 'superset-minimal', '--simulate',
                   '--state-dir', str(tmp_path)])
        assert rc == 0
        out = capsys.readouterr().out
        assert 'Stacks:' in out
        assert 'All checks passed. Ready to apply.' in out

    def test_environment_only(self, config_dir, tmp_path, capsys):
        rc = main(['stack', 'validate', '-E', 'staging', '--simulate', '--state-dir', str(tmp_path)])
        assert rc == 1
        assert "Environment 'staging' is missing: account, vpc_id" in capsys.readouterr().out

    def test_unassembled_stack_fails(self, config_dir, tmp_path, capsys):
        rc = main(['stack', 'validate', '-S', 'nope', '--simulate', '--json-output',
                   '--state-dir', str(tmp_path)])
        assert rc == 1
        data = json.loads(capsys.readouterr().out)
        assert data['success'] is False
        assert data['checks']['stacks']['failed']

    def test_orchestrator_checked(self, config_dir, tmp_path, capsys):
        with patch('validation.HttpOrchestrator.health', return_value=[]):
            rc = main(['stack', 'validate', '-E', 'qa', '--state-dir', str(tmp_path)])
        assert rc == 0
        assert 'Reachable at https://orchestrator.test:8443' in capsys.readouterr().out
