"""Stack (resource registry) and App (stack container).

A Stack owns its resources, the dependency graph between them and its
outputs. Synthesis is a single sequential pass of declare/link/export calls
followed by finalize(), which validates the graph and linearizes it.
Nothing here provisions; the result is handed to an orchestrator.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from common import DuplicateName, UnresolvedReference
from config import EnvironmentConfig
from assembler.graph import DependencyEdge, DependencyGraph
from assembler.outputs import ExportRegistry, Output, OutputDeclaration, OutputExporter
from assembler.provisioner import ClusterHandle, resolve as resolve_resource
from assembler.resource import (
    Capability,
    ImportValue,
    ManagedResource,
    Ref,
    Resource,
    ResourceKind,
    collect_refs,
    render_config,
)

logger = logging.getLogger(__name__)

ON_ERROR_MODES = ('stop', 'continue')


@dataclass
class SynthesisResult:
    """Finalized stack: provisioning order, edges and declared outputs."""
    stack: 'Stack'
    order: list[Resource]
    edges: list[DependencyEdge]
    outputs: list[OutputDeclaration]

    @property
    def name(self) -> str:
        return self.stack.name

    def to_dict(self) -> dict:
        resources = []
        for resource in self.order:
            entry: dict[str, Any] = {
                'name': resource.name,
                'kind': resource.kind.value,
                'imported': resource.imported,
                'depends_on': [p.name for p in self.stack.graph.predecessors(resource.name)],
            }
            if resource.imported:
                entry['existing_id'] = resource.existing_id
                if resource.metadata:
                    entry['metadata'] = dict(resource.metadata)
            else:
                entry['config'] = render_config(resource.config)
            resources.append(entry)

        return {
            'stack': self.stack.name,
            'environment': self.stack.environment.name,
            'tags': dict(self.stack.tags),
            'depends_on_stacks': [s.name for s in self.stack.stack_dependencies],
            'order': [r.name for r in self.order],
            'resources': resources,
            'outputs': [o.to_dict() for o in self.outputs],
        }


class Stack:
    """A named unit of declared resources applied and destroyed together.

    Args:
        name: Stack name
        environment: Validated environment settings injected at construction
        app: Owning App (enables cross-stack exports and stack ordering)
        description: Human-readable description
        on_error: Orchestration policy on failure ('stop' or 'continue')
    """

    def __init__(
        self,
        name: str,
        environment: EnvironmentConfig,
        app: Optional['App'] = None,
        description: str = '',
        on_error: str = 'stop',
    ):
        if on_error not in ON_ERROR_MODES:
            raise ValueError(f"on_error must be one of {ON_ERROR_MODES}, got '{on_error}'")
        self.name = name
        self.environment = environment
        self.app = app
        self.description = description
        self.on_error = on_error
        self.tags = environment.stack_tags()
        self.graph: DependencyGraph[Resource] = DependencyGraph()
        self.exporter = OutputExporter(
            name, environment, self.get, app.exports if app is not None else None,
        )
        if app is not None:
            app.register(self)

    def __repr__(self) -> str:
        return f"Stack({self.name}, env={self.environment.name}, resources={len(self.graph)})"

    # -- registry ---------------------------------------------------------

    @property
    def resources(self) -> list[Resource]:
        return self.graph.nodes

    def get(self, name: str) -> Resource:
        """Get a declared resource by name.

        Raises:
            KeyError: If name was never declared
        """
        return self.graph.get_node(name)

    def declare(self, name: str, kind: Union[ResourceKind, str], config: Optional[dict] = None) -> ManagedResource:
        """Declare a managed resource with the given config (no defaults).

        Raises:
            DuplicateName: If name is already declared in this stack
            UnresolvedReference: If config refers to an undeclared resource
        """
        resource = ManagedResource(name=name, kind=ResourceKind.parse(kind), config=dict(config or {}))
        self._register(resource)
        return resource

    def resolve(
        self,
        name: str,
        kind: Union[ResourceKind, str],
        existing_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        config: Optional[dict] = None,
    ) -> Resource:
        """Import an existing resource or declare a new one with defaults."""
        resource = resolve_resource(
            ResourceKind.parse(kind), name,
            existing_id=existing_id, metadata=metadata, config=config,
        )
        self._register(resource)
        return resource

    def cluster(
        self,
        name: str,
        existing_cluster_name: Optional[str] = None,
        metadata: Optional[dict] = None,
        config: Optional[dict] = None,
    ) -> ClusterHandle:
        """Attach to an existing cluster by name, or declare a new one."""
        resource = self.resolve(
            name, ResourceKind.CLUSTER,
            existing_id=existing_cluster_name, metadata=metadata, config=config,
        )
        return ClusterHandle(self, resource)

    def cluster_handle(self, name: str) -> ClusterHandle:
        """Handle for a cluster already declared in this stack.

        Raises:
            UnresolvedReference: If name is not declared
            ValueError: If name is not a cluster
        """
        try:
            resource = self.get(name)
        except KeyError:
            raise UnresolvedReference(f"Cluster '{name}' is not declared in stack '{self.name}'")
        return ClusterHandle(self, resource)

    def _register(self, resource: Resource) -> None:
        if resource.name in self.graph:
            raise DuplicateName(f"'{resource.name}' is already declared in stack '{self.name}'")
        refs = collect_refs(resource.config)
        for ref in refs:
            if ref.resource not in self.graph:
                raise UnresolvedReference(
                    f"'{resource.name}' references undeclared resource '{ref.resource}'"
                )
        for imported in _collect_imports(resource.config):
            self._depend_on_export(imported.key)

        self.graph.add_node(resource)
        # New node has no successors yet, so these links cannot cycle
        for ref in refs:
            self.graph.link(ref.resource, resource.name)
        logger.debug(f"[{self.name}] Declared {resource!r}")

    # -- ordering ---------------------------------------------------------

    def link(self, source: Union[Resource, str], target: Union[Resource, str]) -> Optional[DependencyEdge]:
        """Record that source must be Ready before target provisions.

        Raises:
            UnresolvedReference: If either endpoint is not declared here
            CycleDetected: If the edge would close a cycle
        """
        try:
            return self.graph.link(source, target)
        except KeyError as e:
            raise UnresolvedReference(f"Cannot link in stack '{self.name}': {e.args[0]}")

    def depends_on(self, target: Union[Resource, str], *sources: Union[Resource, str]) -> None:
        """Link every source to target."""
        for source in sources:
            self.link(source, target)

    def add_ingress_rule(
        self,
        resource: Resource,
        port: int,
        peer: Union[Resource, str],
        description: str = '',
    ) -> dict:
        """Allow traffic on port into resource's security group.

        peer is a CIDR string or another resource; a resource peer is linked
        before the rule's owner.
        """
        resource.require(Capability.INGRESS_RULE)
        rule: dict[str, Any] = {'port': port, 'description': description}
        if isinstance(peer, str):
            rule['cidr'] = peer
        else:
            rule['source_security_group'] = Ref(peer.name, 'security_group_id')
            self.link(peer, resource)
        resource.config.setdefault('ingress_rules', []).append(rule)
        return rule

    # -- outputs ----------------------------------------------------------

    def export(
        self,
        key: str,
        value: Union[str, Ref],
        make_global: bool = False,
        description: str = '',
        template: Optional[str] = None,
    ) -> OutputDeclaration:
        """Declare an output; global ones are resolvable from other stacks."""
        return self.exporter.export(key, value, make_global, description, template)

    def output(self, key: str) -> Output:
        """Resolve one of this stack's outputs."""
        return self.exporter.resolve(key)

    def import_value(self, key: str) -> ImportValue:
        """Reference another stack's global export and order after it."""
        self._depend_on_export(key)
        return ImportValue(key)

    def _depend_on_export(self, key: str) -> None:
        if self.app is None:
            raise UnresolvedReference(
                f"Stack '{self.name}' is not part of an app; cannot import '{key}'"
            )
        producer = self.app.exports.producer(key)
        if producer != self.name:
            self.app.add_dependency(self, self.app.get_stack(producer))

    # -- stack ordering ---------------------------------------------------

    def add_dependency(self, other: 'Stack') -> None:
        """Deploy other before this stack."""
        if self.app is None:
            raise ValueError(f"Stack '{self.name}' is not part of an app")
        self.app.add_dependency(self, other)

    @property
    def stack_dependencies(self) -> list['Stack']:
        if self.app is None:
            return []
        return self.app.stack_graph.predecessors(self.name)

    # -- synthesis --------------------------------------------------------

    def finalize(self) -> SynthesisResult:
        """Validate and linearize the graph.

        Raises:
            CycleDetected: If no topological order exists
        """
        order = self.graph.create_order()
        logger.debug(f"[{self.name}] Finalized {len(order)} resource(s)")
        return SynthesisResult(
            stack=self,
            order=order,
            edges=self.graph.edges,
            outputs=self.exporter.declarations,
        )

    def resolve_value(self, value: Any) -> Any:
        """Replace Refs and ImportValues with concrete values.

        Raises:
            UnresolvedReference: If a referenced resource or export is not Ready
        """
        if isinstance(value, Ref):
            resource = self.get(value.resource)
            if not resource.is_ready:
                raise UnresolvedReference(
                    f"'{value.resource}' is {resource.state.value}; "
                    f"cannot read {value.attribute}"
                )
            if value.attribute not in resource.attributes:
                raise UnresolvedReference(
                    f"Resource '{resource.name}' has no attribute '{value.attribute}'"
                )
            return resource.attributes[value.attribute]
        if isinstance(value, ImportValue):
            if self.app is None:
                raise UnresolvedReference(f"Cannot import '{value.key}' outside an app")
            return self.app.exports.resolve(value.key).value
        if isinstance(value, dict):
            return {k: self.resolve_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.resolve_value(v) for v in value]
        return value


def _collect_imports(value: Any) -> list[ImportValue]:
    if isinstance(value, ImportValue):
        return [value]
    found: list[ImportValue] = []
    if isinstance(value, dict):
        for v in value.values():
            found.extend(_collect_imports(v))
    elif isinstance(value, (list, tuple)):
        for v in value:
            found.extend(_collect_imports(v))
    return found


class App:
    """Container for the stacks of one environment.

    Owns the cross-stack export registry and the ordering between stacks.
    """

    def __init__(self, environment: EnvironmentConfig):
        self.environment = environment
        self.exports = ExportRegistry()
        self.stack_graph: DependencyGraph[Stack] = DependencyGraph()
        # Stacks named by the caller, as opposed to ones pulled in as requirements
        self.selected: list[str] = []

    def stack(self, name: str, description: str = '', on_error: str = 'stop') -> Stack:
        """Create a stack registered in this app."""
        return Stack(name, self.environment, app=self, description=description, on_error=on_error)

    def register(self, stack: Stack) -> None:
        self.stack_graph.add_node(stack)

    def get_stack(self, name: str) -> Stack:
        return self.stack_graph.get_node(name)

    def has_stack(self, name: str) -> bool:
        return name in self.stack_graph

    @property
    def stacks(self) -> list[Stack]:
        """Stacks in deployment order."""
        return self.stack_graph.create_order()

    def add_dependency(self, stack: Stack, depends_on: Stack) -> None:
        """Deploy depends_on before stack.

        Raises:
            CycleDetected: If the stacks already depend on each other
        """
        self.stack_graph.link(depends_on, stack)

    def synth(self) -> list[SynthesisResult]:
        """Finalize every stack in deployment order.

        Any error aborts the whole synthesis before provisioning starts.
        """
        return [stack.finalize() for stack in self.stacks]
