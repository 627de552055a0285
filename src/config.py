"""Environment configuration management.

Environments (account, region, VPC) come from a built-in table that can be
extended or overridden by an environments.yaml file in the config directory:

    environments:
      beta:
        account: "730335418300"
        region: sa-east-1
        vpc_id: vpc-0072a792fee9ee196
        orchestrator_endpoint: https://orchestrator.internal:8443
        tags:
          Team: data

Configuration is loaded and validated once, then injected into stacks as an
EnvironmentConfig. Only the default environment may fall back to the
CDK_DEFAULT_ACCOUNT / CDK_DEFAULT_REGION variables; any other environment
with a blank field fails fast with ConfigurationIncomplete.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from common import StackError

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = 'beta'

REGION_SA_EAST_1 = 'sa-east-1'

# Fields that must be non-blank before anything is deployed
REQUIRED_FIELDS = ('account', 'region', 'vpc_id')

BUILTIN_ENVIRONMENTS: dict[str, dict] = {
    'beta': {
        'account': '730335418300',
        'region': REGION_SA_EAST_1,
        'vpc_id': 'vpc-0072a792fee9ee196',
    },
    'staging': {
        'account': '',
        'region': REGION_SA_EAST_1,
        'vpc_id': '',
    },
    'prod': {
        'account': '',
        'region': REGION_SA_EAST_1,
        'vpc_id': '',
    },
}


class ConfigError(StackError):
    """Configuration error."""


class ConfigurationIncomplete(ConfigError):
    """A required environment value is unset or blank."""


@dataclass(frozen=True)
class EnvironmentConfig:
    """Validated settings for one deployment environment.

    Attributes:
        name: Environment key (beta, staging, prod, ...)
        account: AWS account id
        region: AWS region
        vpc_id: Existing VPC the stacks attach to
        is_default: True for the default environment
        orchestrator_endpoint: Base URL of the provisioning control plane
        tags: Extra tags applied to every stack in this environment
    """
    name: str
    account: str = ''
    region: str = ''
    vpc_id: str = ''
    is_default: bool = False
    orchestrator_endpoint: str = ''
    tags: dict = field(default_factory=dict)

    @property
    def missing_fields(self) -> list[str]:
        return [f for f in REQUIRED_FIELDS if not str(getattr(self, f) or '').strip()]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields

    def require_complete(self) -> None:
        """Raise ConfigurationIncomplete if any required field is blank.

        The default environment is allowed to be environment-agnostic.
        """
        if self.is_default:
            return
        missing = self.missing_fields
        if missing:
            raise ConfigurationIncomplete(
                f"Environment '{self.name}' is missing: {', '.join(missing)}\n"
                f"  Set them in environments.yaml under environments.{self.name}"
            )

    def stack_tags(self) -> dict[str, str]:
        tags = {'Environment': self.name}
        tags.update({str(k): str(v) for k, v in self.tags.items()})
        return tags

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'account': self.account,
            'region': self.region,
            'vpc_id': self.vpc_id,
            'is_default': self.is_default,
            'orchestrator_endpoint': self.orchestrator_endpoint,
            'tags': dict(self.tags),
        }


def get_base_dir() -> Path:
    """Get the repository root directory."""
    return Path(__file__).parent.parent  # src/ -> repo/


def get_config_dir() -> Optional[Path]:
    """Discover the configuration directory.

    Resolution order:
    1. $STACKGRAPH_CONFIG environment variable
    2. <repo>/config/ (dev workspace)
    3. /etc/stackgraph/

    Returns None when no directory exists; the built-in table is used then.
    """
    if env_path := os.environ.get('STACKGRAPH_CONFIG'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"STACKGRAPH_CONFIG={env_path} does not exist")

    local = get_base_dir() / 'config'
    if local.exists():
        return local

    etc_path = Path('/etc/stackgraph')
    if etc_path.exists():
        return etc_path

    return None


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must be a YAML object (dict)")
    return data


def load_environment_table(config_dir: Optional[Path] = None) -> dict[str, dict]:
    """Merge environments.yaml over the built-in table.

    Args:
        config_dir: Directory holding environments.yaml. If None, uses discovery.

    Returns:
        Mapping of environment name to raw settings
    """
    table = {name: dict(values) for name, values in BUILTIN_ENVIRONMENTS.items()}

    if config_dir is None:
        config_dir = get_config_dir()
    if config_dir is None:
        return table

    env_file = Path(config_dir) / 'environments.yaml'
    if not env_file.exists():
        return table

    overrides = _parse_yaml(env_file).get('environments') or {}
    if not isinstance(overrides, dict):
        raise ConfigError(f"{env_file}: 'environments' must be a mapping")

    for name, values in overrides.items():
        if not isinstance(values, dict):
            raise ConfigError(f"{env_file}: environment '{name}' must be a mapping")
        table.setdefault(str(name), {}).update(values)
    logger.debug(f"Loaded {len(overrides)} environment override(s) from {env_file}")
    return table


def list_environments(config_dir: Optional[Path] = None) -> list[str]:
    """List known environment names."""
    return sorted(load_environment_table(config_dir))


def load_environment(
    name: Optional[str] = None,
    config_dir: Optional[Path] = None,
    validate: bool = True,
) -> EnvironmentConfig:
    """Load configuration for a named environment.

    Args:
        name: Environment name (default: DEFAULT_ENVIRONMENT)
        config_dir: Config directory override
        validate: Fail fast on blank required fields

    Raises:
        ConfigError: If the environment is unknown
        ConfigurationIncomplete: If a non-default environment has blank fields
    """
    name = name or DEFAULT_ENVIRONMENT
    table = load_environment_table(config_dir)
    if name not in table:
        raise ConfigError(
            f"Unknown environment '{name}'. Available: {', '.join(sorted(table))}"
        )

    values = table[name]
    is_default = name == DEFAULT_ENVIRONMENT
    account = str(values.get('account') or '')
    region = str(values.get('region') or '')

    # Environment-agnostic default: same fallbacks the CDK toolkit uses
    if is_default:
        account = account or os.environ.get('CDK_DEFAULT_ACCOUNT', '')
        region = region or os.environ.get('CDK_DEFAULT_REGION', '')

    env = EnvironmentConfig(
        name=name,
        account=account,
        region=region,
        vpc_id=str(values.get('vpc_id') or ''),
        is_default=is_default,
        orchestrator_endpoint=str(values.get('orchestrator_endpoint') or ''),
        tags=dict(values.get('tags') or {}),
    )

    if validate:
        env.require_complete()
    return env
