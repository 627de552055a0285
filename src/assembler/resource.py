"""Resource descriptors for the stack graph.

A resource is either managed (created by the orchestrator from a descriptor)
or imported (a read-only handle to something that already exists). The two
variants expose different capability sets; imported references expose none.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from common import CapabilityUnsupported

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    NETWORK = 'network'
    CLUSTER = 'cluster'
    DATABASE = 'database'
    SECRET = 'secret'
    WORKLOAD = 'workload'
    SERVICE = 'service'
    LOAD_BALANCER = 'load_balancer'

    @classmethod
    def parse(cls, value: Union[str, 'ResourceKind']) -> 'ResourceKind':
        """Parse a kind from its value, tolerating case and dashes."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace('-', '_')
        for kind in cls:
            if kind.value == normalized or kind.name.lower() == normalized:
                return kind
        raise ValueError(
            f"Unknown resource kind '{value}'. "
            f"Valid kinds: {', '.join(k.value for k in cls)}"
        )


class ResourceState(str, Enum):
    PENDING = 'pending'
    PROVISIONING = 'provisioning'
    READY = 'ready'
    FAILED = 'failed'


class Capability(str, Enum):
    ROLE_MAPPING = 'role_mapping'
    USER_MAPPING = 'user_mapping'
    MANIFEST = 'manifest'
    HELM_CHART = 'helm_chart'
    SERVICE_ACCOUNT = 'service_account'
    FARGATE_PROFILE = 'fargate_profile'
    INGRESS_RULE = 'ingress_rule'


MANAGED_CAPABILITIES: dict[ResourceKind, frozenset] = {
    ResourceKind.CLUSTER: frozenset({
        Capability.ROLE_MAPPING,
        Capability.USER_MAPPING,
        Capability.MANIFEST,
        Capability.HELM_CHART,
        Capability.SERVICE_ACCOUNT,
        Capability.FARGATE_PROFILE,
        Capability.INGRESS_RULE,
    }),
    ResourceKind.NETWORK: frozenset({Capability.INGRESS_RULE}),
    ResourceKind.DATABASE: frozenset({Capability.INGRESS_RULE}),
    ResourceKind.LOAD_BALANCER: frozenset({Capability.INGRESS_RULE}),
}


@dataclass(frozen=True)
class Ref:
    """Reference to an attribute of another resource.

    Rendered as ``${name.attribute}`` until the producing resource is Ready.
    """
    resource: str
    attribute: str

    def __str__(self) -> str:
        return f'${{{self.resource}.{self.attribute}}}'


@dataclass(frozen=True)
class ImportValue:
    """Consumer-side reference to another stack's global export."""
    key: str

    def __str__(self) -> str:
        return f'${{import.{self.key}}}'


class _CapabilityChecks:
    """Capability checks shared by both resource variants."""

    name: str
    kind: ResourceKind

    @property
    def capabilities(self) -> frozenset:
        raise NotImplementedError

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        """Raise CapabilityUnsupported unless this resource has the capability."""
        if not self.supports(capability):
            origin = 'imported' if self.imported else 'managed'
            raise CapabilityUnsupported(
                f"Cannot use '{capability.value}' on {origin} "
                f"{self.kind.value} '{self.name}'"
            )

    @property
    def imported(self) -> bool:
        raise NotImplementedError


@dataclass(eq=False)
class ManagedResource(_CapabilityChecks):
    """A resource the orchestrator creates from this descriptor.

    Attributes:
        name: Logical name, unique within the owning stack
        kind: Resource kind
        config: Desired configuration (may contain Ref values)
        state: Lifecycle state, advanced by the orchestrator
        attributes: Provisioned attributes reported back (ARNs, endpoints)
        error: Failure message if state is FAILED
    """
    name: str
    kind: ResourceKind
    config: dict = field(default_factory=dict)
    state: ResourceState = ResourceState.PENDING
    attributes: dict = field(default_factory=dict)
    error: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    @property
    def imported(self) -> bool:
        return False

    @property
    def capabilities(self) -> frozenset:
        return MANAGED_CAPABILITIES.get(self.kind, frozenset())

    @property
    def is_ready(self) -> bool:
        return self.state == ResourceState.READY

    def start(self) -> None:
        if self.state not in (ResourceState.PENDING, ResourceState.FAILED):
            raise ValueError(f"Resource '{self.name}' cannot start from state {self.state.value}")
        self.state = ResourceState.PROVISIONING
        self.error = None
        self.started_at = time.time()

    def complete(self, attributes: Optional[dict] = None) -> None:
        if self.state != ResourceState.PROVISIONING:
            raise ValueError(f"Resource '{self.name}' is not provisioning")
        self.state = ResourceState.READY
        self.completed_at = time.time()
        if attributes:
            self.attributes.update(attributes)

    def fail(self, error: str) -> None:
        self.state = ResourceState.FAILED
        self.completed_at = time.time()
        self.error = error

    def reset(self) -> None:
        """Return to PENDING after the resource has been deleted."""
        self.state = ResourceState.PENDING
        self.attributes = {}
        self.error = None

    def __repr__(self) -> str:
        return f"ManagedResource({self.name}, kind={self.kind.value}, state={self.state.value})"


@dataclass(eq=False)
class ImportedReference(_CapabilityChecks):
    """A read-only handle to a pre-existing external object.

    Always Ready. Metadata (security group id, endpoint, certificate data,
    role ARN) is recorded as supplied and never validated.
    """
    name: str
    kind: ResourceKind
    existing_id: str
    metadata: dict = field(default_factory=dict)

    @property
    def imported(self) -> bool:
        return True

    @property
    def capabilities(self) -> frozenset:
        return frozenset()

    @property
    def state(self) -> ResourceState:
        return ResourceState.READY

    @property
    def is_ready(self) -> bool:
        return True

    @property
    def config(self) -> dict:
        return {}

    @property
    def attributes(self) -> dict[str, Any]:
        attrs: dict[str, Any] = {'id': self.existing_id}
        attrs.update(self.metadata)
        return attrs

    def __repr__(self) -> str:
        return f"ImportedReference({self.name}, kind={self.kind.value}, id={self.existing_id})"


Resource = Union[ManagedResource, ImportedReference]


def render_config(value: Any) -> Any:
    """Render a config value for serialization, turning Refs into tokens."""
    if isinstance(value, (Ref, ImportValue)):
        return str(value)
    if isinstance(value, dict):
        return {k: render_config(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render_config(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


def collect_refs(value: Any) -> list[Ref]:
    """Find every Ref nested in a config value."""
    if isinstance(value, Ref):
        return [value]
    refs: list[Ref] = []
    if isinstance(value, dict):
        for v in value.values():
            refs.extend(collect_refs(v))
    elif isinstance(value, (list, tuple)):
        for v in value:
            refs.extend(collect_refs(v))
    return refs
