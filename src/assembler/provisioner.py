"""Conditional provisioning: import an existing resource or create a new one.

resolve() returns an ImportedReference (Ready, no side effects) when an
existing identifier is supplied, otherwise a ManagedResource carrying the
per-kind default configuration and waiting in Pending for the orchestrator.
"""

import copy
import logging
from typing import Any, Optional

from assembler.resource import (
    Capability,
    ImportedReference,
    ManagedResource,
    Resource,
    ResourceKind,
)

logger = logging.getLogger(__name__)

# Default configuration applied to newly created resources. Caller config
# is merged on top (nested dicts merge key by key).
DEFAULT_CONFIG: dict[ResourceKind, dict[str, Any]] = {
    ResourceKind.CLUSTER: {
        'version': '1.29',
        'subnets': 'private-with-egress',
        'default_capacity': 2,
        'instance_type': 't3.medium',
        'endpoint_access': 'public',
    },
    ResourceKind.DATABASE: {
        'engine': 'postgres',
        'engine_version': '15',
        'instance_type': 't3.small',
        'subnets': 'private-with-egress',
        'port': 5432,
        'backup_retention_days': 7,
        'storage_encrypted': True,
        'deletion_protection': False,
        'removal_policy': 'retain',
    },
    ResourceKind.SECRET: {
        'generate_key': 'password',
        'password_length': 32,
        'exclude_characters': '"@/\\',
        'removal_policy': 'retain',
    },
    ResourceKind.LOAD_BALANCER: {
        'internet_facing': True,
        'subnets': 'public',
        'listener_port': 80,
        'target_port': 8088,
        'target_type': 'ip',
        'health_check': {
            'path': '/health',
            'interval_seconds': 30,
            'timeout_seconds': 5,
            'healthy_threshold': 2,
            'unhealthy_threshold': 3,
        },
    },
    ResourceKind.WORKLOAD: {'namespace': 'default'},
    ResourceKind.SERVICE: {'namespace': 'default'},
    ResourceKind.NETWORK: {},
}

# Kubernetes object kinds that map to a specific resource kind
MANIFEST_KINDS = {
    'Service': ResourceKind.SERVICE,
    'Secret': ResourceKind.SECRET,
}


def merge_config(base: dict, override: Optional[dict]) -> dict:
    """Deep-merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve(
    kind: ResourceKind,
    name: str,
    existing_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    config: Optional[dict] = None,
) -> Resource:
    """Choose between the import path and the create path.

    Args:
        kind: Resource kind
        name: Logical name
        existing_id: Identifier of a pre-existing object (ARN, VPC id,
            cluster name). When given, the result is an ImportedReference.
        metadata: Imported attributes recorded as supplied (ignored on create)
        config: Configuration merged over the kind's defaults (create only)

    Returns:
        ImportedReference in state READY, or ManagedResource in state PENDING
    """
    kind = ResourceKind.parse(kind)
    if existing_id:
        logger.debug(f"Importing {kind.value} '{name}' from {existing_id}")
        return ImportedReference(
            name=name,
            kind=kind,
            existing_id=existing_id,
            metadata=dict(metadata or {}),
        )

    return ManagedResource(
        name=name,
        kind=kind,
        config=merge_config(DEFAULT_CONFIG.get(kind, {}), config),
    )


class ClusterHandle:
    """Uniform handle over an imported or a created cluster.

    Create-only operations check the cluster's capability set first and
    raise CapabilityUnsupported on an imported cluster. Callers that want to
    branch instead of fail use supports().
    """

    def __init__(self, stack, resource: Resource):
        if resource.kind != ResourceKind.CLUSTER:
            raise ValueError(f"'{resource.name}' is a {resource.kind.value}, not a cluster")
        self.stack = stack
        self.resource = resource

    @property
    def name(self) -> str:
        return self.resource.name

    @property
    def imported(self) -> bool:
        return self.resource.imported

    def supports(self, capability: Capability) -> bool:
        return self.resource.supports(capability)

    def _mapping(self, capability: Capability, key: str, arn: str,
                 username: str, groups: list[str]) -> dict:
        self.resource.require(capability)
        entry = {'arn': arn, 'username': username, 'groups': list(groups)}
        self.resource.config.setdefault(key, []).append(entry)
        return entry

    def add_role_mapping(self, role_arn: str, username: str, groups: list[str]) -> dict:
        """Map an IAM role into the cluster's auth config."""
        return self._mapping(Capability.ROLE_MAPPING, 'role_mappings', role_arn, username, groups)

    def add_user_mapping(self, user_arn: str, username: str, groups: list[str]) -> dict:
        """Map an IAM user into the cluster's auth config."""
        return self._mapping(Capability.USER_MAPPING, 'user_mappings', user_arn, username, groups)

    def add_fargate_profile(self, profile: str, namespaces: list[str],
                            execution_role: Optional[str] = None) -> dict:
        self.resource.require(Capability.FARGATE_PROFILE)
        entry: dict[str, Any] = {'name': profile, 'selectors': [{'namespace': ns} for ns in namespaces]}
        if execution_role:
            entry['pod_execution_role'] = execution_role
        self.resource.config.setdefault('fargate_profiles', []).append(entry)
        return entry

    def add_manifest(self, name: str, manifest: dict) -> ManagedResource:
        """Declare a Kubernetes object applied to this cluster.

        The object becomes its own resource (Service and Secret objects keep
        their kind, everything else is a workload) with an edge from the
        cluster.
        """
        self.resource.require(Capability.MANIFEST)
        object_kind = manifest.get('kind', '')
        namespace = (manifest.get('metadata') or {}).get('namespace', 'default')
        resource = self.stack.declare(
            name,
            MANIFEST_KINDS.get(object_kind, ResourceKind.WORKLOAD),
            {'cluster': self.name, 'namespace': namespace, 'manifest': manifest},
        )
        self.stack.link(self.resource, resource)
        return resource

    def add_helm_chart(self, name: str, chart: str, repository: str, namespace: str,
                       release: Optional[str] = None, values: Optional[dict] = None) -> ManagedResource:
        self.resource.require(Capability.HELM_CHART)
        resource = self.stack.declare(name, ResourceKind.WORKLOAD, {
            'cluster': self.name,
            'namespace': namespace,
            'helm_chart': {
                'chart': chart,
                'repository': repository,
                'release': release or chart,
                'values': values or {},
            },
        })
        self.stack.link(self.resource, resource)
        return resource

    def add_service_account(self, name: str, account_name: str, namespace: str,
                            policy_actions: Optional[list[str]] = None) -> ManagedResource:
        self.resource.require(Capability.SERVICE_ACCOUNT)
        resource = self.stack.declare(name, ResourceKind.WORKLOAD, {
            'cluster': self.name,
            'namespace': namespace,
            'service_account': {
                'name': account_name,
                'policy': {'actions': list(policy_actions or []), 'resources': ['*']},
            },
        })
        self.stack.link(self.resource, resource)
        return resource
