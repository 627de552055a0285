"""Shared pytest fixtures for stackgraph tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import EnvironmentConfig
from assembler.stack import App


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    """Create a temporary config directory and point STACKGRAPH_CONFIG at it.

    Creates:
    - environments.yaml (beta complete, staging incomplete, qa complete with endpoint)
    - stacks/ (empty; tests drop definitions in)
    """
    (tmp_path / 'stacks').mkdir()
    (tmp_path / 'environments.yaml').write_text("""
environments:
  beta:
    account: "730335418300"
    region: sa-east-1
    vpc_id: vpc-0072a792fee9ee196
  staging:
    account: ""
    region: sa-east-1
    vpc_id: ""
  qa:
    account: "111122223333"
    region: us-east-1
    vpc_id: vpc-0aa11bb22cc33dd44
    orchestrator_endpoint: https://orchestrator.test:8443
    tags:
      Team: data
""")
    monkeypatch.setenv('STACKGRAPH_CONFIG', str(tmp_path))
    monkeypatch.delenv('CDK_DEFAULT_ACCOUNT', raising=False)
    monkeypatch.delenv('CDK_DEFAULT_REGION', raising=False)
    return tmp_path


@pytest.fixture
def beta_env():
    """Complete default environment."""
    return EnvironmentConfig(
        name='beta',
        account='730335418300',
        region='sa-east-1',
        vpc_id='vpc-0072a792fee9ee196',
        is_default=True,
    )


@pytest.fixture
def staging_env():
    """Non-default environment with blank account and VPC."""
    return EnvironmentConfig(name='staging', region='sa-east-1')


@pytest.fixture
def prod_env():
    """Complete non-default environment."""
    return EnvironmentConfig(
        name='prod',
        account='444455556666',
        region='sa-east-1',
        vpc_id='vpc-0fedcba9876543210',
    )


@pytest.fixture
def app(beta_env):
    """Empty app for the beta environment."""
    return App(beta_env)
