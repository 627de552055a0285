"""Orchestrator implementations.

HttpOrchestrator talks to a provisioning control plane over REST:

    PUT    {endpoint}/stacks/{stack}/resources/{name}   create or update
    DELETE {endpoint}/stacks/{stack}/resources/{name}   delete (404 = gone)
    GET    {endpoint}/health                             readiness

SimulatedOrchestrator is an offline control plane that reports
deterministic attributes, for dry pipelines and tests.
"""

import hashlib
import logging
import os
import time
from typing import Any, Optional

import requests
import urllib3

from common import ProvisionResult, ProvisioningFailed
from assembler.resource import ManagedResource, ResourceKind, render_config
from assembler.stack import Stack
from assembler.state import ResourceRecord

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = 'STACKGRAPH_ORCHESTRATOR_TOKEN'


class HttpOrchestrator:
    """REST client for the provisioning control plane.

    Args:
        endpoint: Base URL (e.g. https://orchestrator.internal:8443)
        token: Bearer token (default: $STACKGRAPH_ORCHESTRATOR_TOKEN)
        timeout: Per-request timeout in seconds
        verify: Verify TLS certificates
        session: Optional requests.Session (for connection reuse or tests)
    """

    def __init__(
        self,
        endpoint: str,
        token: Optional[str] = None,
        timeout: int = 30,
        verify: bool = True,
        session: Optional[requests.Session] = None,
    ):
        if not endpoint:
            raise ValueError("HttpOrchestrator requires an endpoint")
        self.endpoint = endpoint.rstrip('/')
        self.token = token if token is not None else os.environ.get(TOKEN_ENV_VAR, '')
        self.timeout = timeout
        self.verify = verify
        if not verify:
            # Self-signed control plane certificates
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        self.session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    def _resource_url(self, stack: Stack, name: str) -> str:
        return f"{self.endpoint}/stacks/{stack.name}/resources/{name}"

    def _request(self, method: str, url: str, resource: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(
                method, url,
                headers=self._headers(),
                timeout=self.timeout,
                verify=self.verify,
                **kwargs,
            )
        except requests.exceptions.ConnectionError:
            raise ProvisioningFailed(resource, f"Cannot connect to {self.endpoint}")
        except requests.exceptions.Timeout:
            raise ProvisioningFailed(resource, f"Timeout after {self.timeout}s talking to {self.endpoint}")
        except requests.exceptions.RequestException as e:
            raise ProvisioningFailed(resource, f"Request to {self.endpoint} failed: {e}")

    def apply(self, stack: Stack, resource: ManagedResource, config: dict) -> ProvisionResult:
        start = time.time()
        env = stack.environment
        payload = {
            'kind': resource.kind.value,
            'environment': {'name': env.name, 'account': env.account, 'region': env.region},
            'tags': dict(stack.tags),
            'config': render_config(config),
        }
        logger.debug(f"PUT {self._resource_url(stack, resource.name)}")
        resp = self._request('PUT', self._resource_url(stack, resource.name), resource.name, json=payload)

        if resp.status_code >= 400:
            raise ProvisioningFailed(resource.name, f"HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            data = resp.json() or {}
        except ValueError:
            raise ProvisioningFailed(resource.name, "Orchestrator returned invalid JSON")

        return ProvisionResult(
            success=True,
            message=data.get('message', f"{resource.name} applied"),
            duration=time.time() - start,
            attributes=dict(data.get('attributes') or {}),
        )

    def delete(self, stack: Stack, record: ResourceRecord) -> ProvisionResult:
        start = time.time()
        resp = self._request('DELETE', self._resource_url(stack, record.name), record.name)

        # Already gone counts as deleted
        if resp.status_code == 404:
            logger.debug(f"'{record.name}' not found on orchestrator; treating as deleted")
        elif resp.status_code >= 400:
            raise ProvisioningFailed(record.name, f"HTTP {resp.status_code}: {resp.text[:200]}")

        return ProvisionResult(
            success=True,
            message=f"{record.name} deleted",
            duration=time.time() - start,
        )

    def health(self) -> list[str]:
        """Check the control plane is reachable and authorized.

        Returns:
            List of error messages (empty if healthy)
        """
        errors = []
        try:
            resp = self.session.get(
                f"{self.endpoint}/health",
                headers=self._headers(),
                timeout=min(self.timeout, 10),
                verify=self.verify,
            )
            if resp.status_code == 401:
                errors.append(
                    f"Orchestrator rejected credentials at {self.endpoint}\n"
                    f"  Check ${TOKEN_ENV_VAR}"
                )
            elif resp.status_code != 200:
                errors.append(
                    f"Unexpected orchestrator response: {resp.status_code}\n"
                    f"  Response: {resp.text[:100]}"
                )
        except requests.exceptions.ConnectionError:
            errors.append(
                f"Cannot connect to orchestrator at {self.endpoint}\n"
                f"  Check: endpoint is correct, service is up, firewall allows access"
            )
        except requests.exceptions.Timeout:
            errors.append(f"Timeout connecting to {self.endpoint}")
        except requests.exceptions.RequestException as e:
            errors.append(f"Cannot query orchestrator at {self.endpoint}: {e}")
        return errors


class SimulatedOrchestrator:
    """Offline control plane with deterministic attributes.

    Args:
        fail_on: Resource names whose apply/delete should fail
    """

    def __init__(self, fail_on: Optional[set[str]] = None):
        self.fail_on = set(fail_on or ())
        self.applied: list[str] = []
        self.deleted: list[str] = []

    def apply(self, stack: Stack, resource: ManagedResource, config: dict) -> ProvisionResult:
        if resource.name in self.fail_on:
            return ProvisionResult(success=False, message=f"simulated failure for {resource.name}")
        self.applied.append(resource.name)
        return ProvisionResult(
            success=True,
            message=f"{resource.name} applied",
            attributes=simulated_attributes(stack, resource.name, resource.kind, config),
        )

    def delete(self, stack: Stack, record: ResourceRecord) -> ProvisionResult:
        if record.name in self.fail_on:
            raise ProvisioningFailed(record.name, "simulated delete failure")
        self.deleted.append(record.name)
        return ProvisionResult(success=True, message=f"{record.name} deleted")


def simulated_attributes(stack: Stack, name: str, kind: ResourceKind, config: dict) -> dict[str, Any]:
    """Attributes an AWS control plane would report for a new resource."""
    env = stack.environment
    region = env.region or 'us-east-1'
    account = env.account or '000000000000'
    token = hashlib.sha256(f'{env.name}/{stack.name}/{name}'.encode()).hexdigest()
    lower = name.lower()
    sg = f'sg-{token[:17]}'

    if kind == ResourceKind.NETWORK:
        return {'id': f'vpc-{token[:17]}', 'security_group_id': sg}
    if kind == ResourceKind.CLUSTER:
        return {
            'name': lower,
            'arn': f'arn:aws:eks:{region}:{account}:cluster/{lower}',
            'endpoint': f'https://{token[:32].upper()}.gr7.{region}.eks.amazonaws.com',
            'security_group_id': sg,
            'role_arn': f'arn:aws:iam::{account}:role/{name}-role',
            'kubectl_role_arn': f'arn:aws:iam::{account}:role/{name}-kubectl',
            'version': config.get('version', ''),
        }
    if kind == ResourceKind.DATABASE:
        return {
            'arn': f'arn:aws:rds:{region}:{account}:db:{lower}',
            'endpoint': f'{lower}.{token[:12]}.{region}.rds.amazonaws.com',
            'port': str(config.get('port', 5432)),
            'security_group_id': sg,
        }
    if kind == ResourceKind.SECRET:
        if 'manifest' in config:
            return {'namespace': config.get('namespace', 'default'), 'uid': token[:36]}
        return {'arn': f'arn:aws:secretsmanager:{region}:{account}:secret:{name}-{token[:6]}'}
    if kind == ResourceKind.LOAD_BALANCER:
        return {
            'arn': f'arn:aws:elasticloadbalancing:{region}:{account}:loadbalancer/app/{lower}/{token[:16]}',
            'dns_name': f'{lower}-{token[:8]}.{region}.elb.amazonaws.com',
            'target_group_arn': f'arn:aws:elasticloadbalancing:{region}:{account}:targetgroup/{lower}/{token[16:32]}',
            'security_group_id': sg,
        }
    # Kubernetes objects (workloads, services)
    return {'namespace': config.get('namespace', 'default'), 'uid': token[:36]}
