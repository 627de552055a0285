"""Stack definition loading.

Stack definitions describe a stack declaratively in YAML, as an
alternative to the Python blueprints:

    name: superset-data
    description: Superset metadata database
    depends_on: [superset-network]
    settings:
      on_error: stop
    resources:
      - name: Vpc
        kind: network
        existing_id: ${env.vpc_id}
      - name: Database
        kind: database
        config:
          database_name: superset
        depends_on: [Vpc]
      - name: DbUriSecret
        cluster: Cluster
        manifest:
          apiVersion: v1
          kind: Secret
          metadata: {name: superset-db-uri, namespace: superset}
          stringData:
            DB_HOST: ${Database.endpoint}
    outputs:
      - key: SupersetDBHost
        value: ${Database.endpoint}
        export: true

Token syntax inside string values:
- ${env.<field>}        environment value (name, account, region, vpc_id), inline
- ${<Resource>.<attr>}  attribute of an earlier-declared resource (whole value)
- ${import.<Key>}       another stack's global export (whole value)

Output values may embed one resource token inside text (http://${Alb.dns_name}).
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from config import ConfigError, EnvironmentConfig, get_config_dir
from assembler.resource import ImportValue, Ref, ResourceKind
from assembler.stack import ON_ERROR_MODES, App, Stack

logger = logging.getLogger(__name__)

ENV_FIELDS = ('name', 'account', 'region', 'vpc_id')

_ENV_TOKEN = re.compile(r'\$\{env\.([A-Za-z0-9_]+)\}')
_REF_TOKEN = re.compile(r'\$\{([A-Za-z0-9_-]+)\.([A-Za-z0-9_-]+)\}')


@dataclass
class ResourceDefinition:
    """A single resource entry in a stack definition.

    Attributes:
        name: Logical name
        kind: Resource kind (ignored for manifest entries, derived from the object)
        config: Configuration merged over the kind's defaults
        depends_on: Names of resources that must be Ready first
        existing_id: Import an existing object instead of creating one
        metadata: Imported attributes (security group id, endpoint, role ARN)
        cluster: Cluster the Kubernetes manifest is applied to
        manifest: Kubernetes object (requires cluster)
    """
    name: str
    kind: Optional[str] = None
    config: dict = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    existing_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    cluster: Optional[str] = None
    manifest: Optional[dict] = None

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> 'ResourceDefinition':
        """Create ResourceDefinition from dictionary."""
        if 'name' not in data:
            raise ConfigError(f"Resource {index} missing required field: name")
        name = data['name']
        if data.get('manifest') is not None:
            if not data.get('cluster'):
                raise ConfigError(f"Resource '{name}' has a manifest but no cluster")
            if not isinstance(data['manifest'], dict) or 'kind' not in data['manifest']:
                raise ConfigError(f"Resource '{name}' manifest must be a mapping with a kind")
        elif 'kind' not in data:
            raise ConfigError(f"Resource {index} ({name}) missing required field: kind")
        else:
            try:
                ResourceKind.parse(data['kind'])
            except ValueError as e:
                raise ConfigError(f"Resource '{name}': {e}")

        depends_on = data.get('depends_on', [])
        if isinstance(depends_on, str):
            depends_on = [depends_on]

        return cls(
            name=name,
            kind=data.get('kind'),
            config=dict(data.get('config') or {}),
            depends_on=list(depends_on),
            existing_id=data.get('existing_id'),
            metadata=dict(data.get('metadata') or {}),
            cluster=data.get('cluster'),
            manifest=data.get('manifest'),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'name': self.name}
        if self.kind is not None:
            d['kind'] = self.kind
        if self.config:
            d['config'] = self.config
        if self.depends_on:
            d['depends_on'] = list(self.depends_on)
        if self.existing_id is not None:
            d['existing_id'] = self.existing_id
        if self.metadata:
            d['metadata'] = self.metadata
        if self.cluster is not None:
            d['cluster'] = self.cluster
        if self.manifest is not None:
            d['manifest'] = self.manifest
        return d


@dataclass
class OutputDefinition:
    """A named output of a stack definition."""
    key: str
    value: str
    export: bool = False
    description: str = ''

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> 'OutputDefinition':
        if 'key' not in data:
            raise ConfigError(f"Output {index} missing required field: key")
        if 'value' not in data:
            raise ConfigError(f"Output {index} ({data['key']}) missing required field: value")
        return cls(
            key=data['key'],
            value=str(data['value']) if data['value'] is not None else '',
            export=bool(data.get('export', False)),
            description=data.get('description', ''),
        )


@dataclass
class StackDefinition:
    """Declarative stack loaded from YAML or JSON.

    Attributes:
        name: Stack name
        resources: Resource entries, in declaration order
        outputs: Output entries
        description: Optional description
        depends_on: Names of stacks deployed before this one
        on_error: Failure policy ('stop' or 'continue')
        source_path: Path the definition was loaded from
    """
    name: str
    resources: list[ResourceDefinition]
    outputs: list[OutputDefinition] = field(default_factory=list)
    description: str = ''
    depends_on: list[str] = field(default_factory=list)
    on_error: str = 'stop'
    source_path: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[Path] = None) -> 'StackDefinition':
        """Create StackDefinition from dictionary.

        Raises:
            ConfigError: If the definition is structurally invalid
        """
        if 'name' not in data:
            raise ConfigError("Stack definition missing required field: name")
        if not data.get('resources'):
            raise ConfigError(f"Stack definition '{data['name']}' must have at least one resource")

        resources = [ResourceDefinition.from_dict(r, i) for i, r in enumerate(data['resources'])]
        outputs = [OutputDefinition.from_dict(o, i) for i, o in enumerate(data.get('outputs') or [])]

        settings = data.get('settings') or {}
        on_error = settings.get('on_error', 'stop')
        if on_error not in ON_ERROR_MODES:
            raise ConfigError(f"settings.on_error must be one of {ON_ERROR_MODES}, got '{on_error}'")

        depends_on = data.get('depends_on', [])
        if isinstance(depends_on, str):
            depends_on = [depends_on]

        return cls(
            name=data['name'],
            resources=resources,
            outputs=outputs,
            description=data.get('description', ''),
            depends_on=list(depends_on),
            on_error=on_error,
            source_path=source_path,
        )

    @classmethod
    def from_json(cls, json_str: str) -> 'StackDefinition':
        """Create StackDefinition from JSON string."""
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid stack definition JSON: {e}")
        if not isinstance(data, dict):
            raise ConfigError("Stack definition JSON must be an object")
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'description': self.description,
            'resources': [r.to_dict() for r in self.resources],
            'outputs': [
                {'key': o.key, 'value': o.value, 'export': o.export, 'description': o.description}
                for o in self.outputs
            ],
            'settings': {'on_error': self.on_error},
        }
        if self.depends_on:
            d['depends_on'] = list(self.depends_on)
        return d

    def build(self, app: App) -> Stack:
        """Declare this definition's resources and outputs in a new stack.

        Stacks named in depends_on must already be part of app.

        Raises:
            ConfigError: Bad token or unknown stack dependency
            DuplicateName, CycleDetected, UnresolvedReference,
            CapabilityUnsupported: From the assembler
        """
        env = app.environment
        stack = app.stack(self.name, description=self.description, on_error=self.on_error)

        for dep in self.depends_on:
            if not app.has_stack(dep):
                raise ConfigError(f"Stack '{self.name}' depends on unknown stack '{dep}'")
            stack.add_dependency(app.get_stack(dep))

        for rd in self.resources:
            if rd.manifest is not None:
                cluster = stack.cluster_handle(rd.cluster)
                cluster.add_manifest(rd.name, _parse_value(rd.manifest, env))
            else:
                existing_id = _substitute_env(rd.existing_id, env) if rd.existing_id else None
                stack.resolve(
                    rd.name,
                    rd.kind,
                    existing_id=existing_id,
                    metadata=_parse_value(rd.metadata, env),
                    config=_parse_value(rd.config, env),
                )

        # Explicit edges after all declarations, so forward names are fine
        for rd in self.resources:
            for dep in rd.depends_on:
                stack.link(dep, rd.name)

        for od in self.outputs:
            value, template = _parse_output_value(od.value, env)
            stack.export(od.key, value, make_global=od.export,
                         description=od.description, template=template)

        logger.debug(f"Built stack '{self.name}' from definition ({len(self.resources)} resources)")
        return stack


def _substitute_env(text: str, env: EnvironmentConfig) -> str:
    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in ENV_FIELDS:
            raise ConfigError(f"Unknown environment field '${{env.{name}}}'. Valid: {', '.join(ENV_FIELDS)}")
        return str(getattr(env, name))
    return _ENV_TOKEN.sub(_replace, text)


def _parse_value(value: Any, env: EnvironmentConfig) -> Any:
    """Turn token strings into Refs/ImportValues, recursively."""
    if isinstance(value, dict):
        return {k: _parse_value(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [_parse_value(v, env) for v in value]
    if not isinstance(value, str):
        return value

    text = _substitute_env(value, env)
    match = _REF_TOKEN.fullmatch(text)
    if match:
        return _token(match)
    if _REF_TOKEN.search(text):
        raise ConfigError(
            f"Resource reference must be the whole value, got '{value}'"
        )
    return text


def _parse_output_value(value: str, env: EnvironmentConfig) -> tuple[Union[str, Ref], Optional[str]]:
    """Parse an output value into (value, template)."""
    text = _substitute_env(value, env)
    matches = list(_REF_TOKEN.finditer(text))
    if not matches:
        return text, None
    if len(matches) > 1:
        raise ConfigError(f"Output value may reference one resource attribute, got '{value}'")
    match = matches[0]
    ref = _token(match)
    if isinstance(ref, ImportValue):
        raise ConfigError(f"Outputs cannot re-export imports: '{value}'")
    if match.start() == 0 and match.end() == len(text):
        return ref, None
    # Escape literal braces, then leave a single placeholder for the value
    before = text[:match.start()].replace('{', '{{').replace('}', '}}')
    after = text[match.end():].replace('{', '{{').replace('}', '}}')
    return ref, f'{before}{{}}{after}'


def _token(match: re.Match) -> Union[Ref, ImportValue]:
    source, attribute = match.group(1), match.group(2)
    if source == 'import':
        return ImportValue(attribute)
    return Ref(source, attribute)


class DefinitionLoader:
    """Loads stack definitions from <config>/stacks/."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize loader.

        Args:
            config_dir: Config directory. If None, uses discovery.
        """
        if config_dir is None:
            config_dir = get_config_dir()
        self.config_dir = Path(config_dir) if config_dir else None
        self.stacks_dir = self.config_dir / 'stacks' if self.config_dir else None

    def list_definitions(self) -> list[str]:
        """List available definition names."""
        if self.stacks_dir is None or not self.stacks_dir.exists():
            return []
        return sorted(f.stem for f in self.stacks_dir.glob('*.yaml') if f.is_file())

    def load(self, name: str) -> StackDefinition:
        """Load a definition by name (without .yaml extension).

        Raises:
            ConfigError: If not found or invalid
        """
        if self.stacks_dir is None:
            raise ConfigError(
                f"Stack definition '{name}' not found: no config directory. "
                f"Set STACKGRAPH_CONFIG."
            )
        path = self.stacks_dir / f'{name}.yaml'
        if not path.exists():
            available = self.list_definitions()
            raise ConfigError(
                f"Stack definition '{name}' not found at {path}. "
                f"Available: {', '.join(available) if available else 'none'}"
            )
        return self.load_file(path)

    def load_file(self, path: Path) -> StackDefinition:
        """Load a definition from a specific YAML file.

        Raises:
            ConfigError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigError(f"Stack definition file not found: {path}")

        try:
            with open(path, encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in stack definition {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Stack definition {path} must be a YAML object (dict)")

        return StackDefinition.from_dict(data, source_path=path)


def load_definition(
    name: Optional[str] = None,
    file_path: Optional[str] = None,
    json_str: Optional[str] = None,
    config_dir: Optional[Path] = None,
) -> StackDefinition:
    """Load a stack definition from one of several sources.

    Priority:
    1. json_str - Inline JSON
    2. file_path - Specific file path
    3. name - Named definition from <config>/stacks/

    Raises:
        ConfigError: If no source given, not found, or invalid
    """
    if json_str:
        return StackDefinition.from_json(json_str)
    if file_path:
        return DefinitionLoader(config_dir).load_file(Path(file_path))
    if name:
        return DefinitionLoader(config_dir).load(name)
    raise ConfigError("No stack definition source given")
