"""Superset on EKS blueprints.

superset-infra   VPC lookup, secrets, RDS, EKS with Fargate and the ALB controller
superset-app     Superset, Redis and the init job, on the infra stack's cluster
superset-minimal Node-group cluster fronted by an Application Load Balancer
superset-minimal-v2  Self-contained cluster with in-cluster Postgres
"""

import logging
from typing import Any, Optional

from config import ConfigurationIncomplete
from assembler.provisioner import MANIFEST_KINDS, ClusterHandle
from assembler.resource import Capability, ManagedResource, Ref, Resource, ResourceKind
from assembler.stack import App, Stack
from blueprints import register_blueprint

logger = logging.getLogger(__name__)

DEVOPS_SSO_ROLE_ARN = 'arn:aws:iam::730335418300:role/AWSReservedSSO_Devops_f26912c48bab8699'
INFRA_BETA_USER_ARN = 'arn:aws:iam::730335418300:user/INFRA-BETA-USER'
SYSTEM_MASTERS = ['system:masters']

ALB_CONTROLLER_CHART = 'aws-load-balancer-controller'
EKS_CHARTS_REPOSITORY = 'https://aws.github.io/eks-charts'

SUPERSET_NAMESPACE = 'superset'
SUPERSET_V2_NAMESPACE = 'superset-v2'
SUPERSET_IMAGE = 'apache/superset:latest'
SUPERSET_PORT = 8088

ALB_CONTROLLER_ACTIONS = [
    'iam:CreateServiceLinkedRole',
    'ec2:DescribeAccountAttributes',
    'ec2:DescribeAddresses',
    'ec2:DescribeAvailabilityZones',
    'ec2:DescribeInternetGateways',
    'ec2:DescribeVpcs',
    'ec2:DescribeSubnets',
    'ec2:DescribeSecurityGroups',
    'ec2:DescribeInstances',
    'ec2:DescribeNetworkInterfaces',
    'ec2:DescribeTags',
    'ec2:GetCoipPoolUsage',
    'ec2:DescribeCoipPools',
    'elasticloadbalancing:DescribeLoadBalancers',
    'elasticloadbalancing:DescribeLoadBalancerAttributes',
    'elasticloadbalancing:DescribeListeners',
    'elasticloadbalancing:DescribeListenerCertificates',
    'elasticloadbalancing:DescribeSSLPolicies',
    'elasticloadbalancing:DescribeRules',
    'elasticloadbalancing:DescribeTargetGroups',
    'elasticloadbalancing:DescribeTargetGroupAttributes',
    'elasticloadbalancing:DescribeTargetHealth',
    'elasticloadbalancing:DescribeTags',
    'elasticloadbalancing:CreateLoadBalancer',
    'elasticloadbalancing:CreateTargetGroup',
    'elasticloadbalancing:CreateListener',
    'elasticloadbalancing:DeleteListener',
    'elasticloadbalancing:CreateRule',
    'elasticloadbalancing:DeleteRule',
    'elasticloadbalancing:AddTags',
    'elasticloadbalancing:RemoveTags',
    'elasticloadbalancing:ModifyLoadBalancerAttributes',
    'elasticloadbalancing:ModifyTargetGroup',
    'elasticloadbalancing:ModifyTargetGroupAttributes',
    'elasticloadbalancing:ModifyListener',
    'elasticloadbalancing:ModifyRule',
    'elasticloadbalancing:RegisterTargets',
    'elasticloadbalancing:DeregisterTargets',
    'elasticloadbalancing:SetWebAcl',
    'elasticloadbalancing:SetSecurityGroups',
    'elasticloadbalancing:SetSubnets',
    'elasticloadbalancing:DeleteLoadBalancer',
    'elasticloadbalancing:DeleteTargetGroup',
    'elasticloadbalancing:SetIpAddressType',
]

SUPERSET_CONFIG_PY = """\
import os
from flask_appbuilder.security.manager import AUTH_DB

SQLALCHEMY_DATABASE_URI = os.getenv('SQLALCHEMY_DATABASE_URI')

REDIS_HOST = os.getenv('REDIS_HOST', 'redis')
REDIS_PORT = os.getenv('REDIS_PORT', '6379')

CACHE_CONFIG = {
    'CACHE_TYPE': 'RedisCache',
    'CACHE_DEFAULT_TIMEOUT': 300,
    'CACHE_KEY_PREFIX': 'superset_',
    'CACHE_REDIS_HOST': REDIS_HOST,
    'CACHE_REDIS_PORT': REDIS_PORT,
    'CACHE_REDIS_DB': 1,
}


class CeleryConfig:
    broker_url = f"redis://{REDIS_HOST}:{REDIS_PORT}/0"
    imports = (
        "superset.sql_lab",
        "superset.tasks.cache",
    )
    result_backend = f"redis://{REDIS_HOST}:{REDIS_PORT}/0"
    task_annotations = {
        "sql_lab.get_sql_results": {
            "rate_limit": "100/s",
        },
    }


CELERY_CONFIG = CeleryConfig

SECRET_KEY = os.getenv('SECRET_KEY')
WTF_CSRF_ENABLED = True
WTF_CSRF_TIME_LIMIT = None

FEATURE_FLAGS = {
    "ENABLE_TEMPLATE_PROCESSING": True,
}

AUTH_TYPE = AUTH_DB
AUTH_ROLE_ADMIN = 'Admin'
AUTH_ROLE_PUBLIC = 'Public'

ENABLE_PROXY_FIX = True

LOG_LEVEL = "INFO"
"""

SUPERSET_INIT_SCRIPT = """\
pip install psycopg2-binary
superset db upgrade
superset fab create-admin \\
  --username admin \\
  --firstname Admin \\
  --lastname User \\
  --email admin@superset.com \\
  --password admin123
superset init
superset load_examples
"""

SUPERSET_SERVE_SCRIPT = """\
pip install psycopg2-binary
gunicorn \\
  --bind 0.0.0.0:8088 \\
  --workers 4 \\
  --worker-class gthread \\
  --threads 20 \\
  --timeout 60 \\
  --keep-alive 2 \\
  --max-requests 1000 \\
  --max-requests-jitter 100 \\
  --preload \\
  --limit-request-line 0 \\
  --limit-request-field_size 0 \\
  "superset.app:create_app()"
"""


def namespace_manifest(name: str) -> dict:
    return {'apiVersion': 'v1', 'kind': 'Namespace', 'metadata': {'name': name}}


def add_manifest(stack: Stack, cluster: ClusterHandle, name: str, manifest: dict) -> ManagedResource:
    """Apply a Kubernetes object to a created or an existing cluster.

    A created cluster owns the object through its manifest capability. An
    existing cluster has no create-only capabilities, so the object is
    declared on its own and applied through the cluster's kubectl access.
    """
    if cluster.supports(Capability.MANIFEST):
        return cluster.add_manifest(name, manifest)

    namespace = (manifest.get('metadata') or {}).get('namespace', 'default')
    resource = stack.declare(name, MANIFEST_KINDS.get(manifest.get('kind', ''), ResourceKind.WORKLOAD), {
        'cluster': cluster.resource.existing_id,
        'namespace': namespace,
        'manifest': manifest,
    })
    stack.link(cluster.resource, resource)
    return resource


def lookup_vpc(stack: Stack, name: str) -> Resource:
    """Import the environment's VPC."""
    env = stack.environment
    if not env.vpc_id:
        raise ConfigurationIncomplete(
            f"Environment '{env.name}' has no vpc_id; stack '{stack.name}' needs an existing VPC"
        )
    return stack.resolve(name, ResourceKind.NETWORK, existing_id=env.vpc_id)


def _env_var(name: str, value: str) -> dict:
    return {'name': name, 'value': value}


def _redis_env() -> list[dict]:
    return [_env_var('REDIS_HOST', 'redis'), _env_var('REDIS_PORT', '6379')]


def _config_volume() -> tuple[list[dict], list[dict]]:
    mounts = [{'name': 'superset-config', 'mountPath': '/etc/superset'}]
    volumes = [{'name': 'superset-config', 'configMap': {'name': 'superset-config'}}]
    return mounts, volumes


def _resources(request_mem: str, request_cpu: str, limit_mem: str, limit_cpu: str) -> dict:
    return {
        'requests': {'memory': request_mem, 'cpu': request_cpu},
        'limits': {'memory': limit_mem, 'cpu': limit_cpu},
    }


@register_blueprint
class SupersetInfra:
    """Shared infrastructure: VPC lookup, secrets, RDS, EKS and ALB controller."""

    name = 'superset-infra'
    description = 'VPC lookup, secrets, Postgres RDS and a Fargate EKS cluster with the ALB controller'
    requires: tuple[str, ...] = ()

    def build(self, app: App, options: dict[str, Any]) -> Stack:
        env = app.environment
        stack = app.stack(self.name, description=self.description)

        vpc = lookup_vpc(stack, 'ExistingVPC')

        db_secret = stack.resolve('SupersetDBSecret', ResourceKind.SECRET, config={
            'template': {'username': 'superset'},
        })
        flask_secret = stack.resolve('SupersetFlaskSecret', ResourceKind.SECRET, config={
            'template': {},
            'generate_key': 'SECRET_KEY',
            'password_length': 64,
            'exclude_characters': '',
        })

        database = stack.resolve('SupersetDatabase', ResourceKind.DATABASE, config={
            'vpc': Ref(vpc.name, 'id'),
            'database_name': 'superset',
            'credentials_secret': Ref(db_secret.name, 'arn'),
            'security_group': {'description': 'SG for Superset RDS', 'allow_all_outbound': True},
        })

        cluster = stack.cluster('SupersetCluster', config={
            'version': '1.27',
            'vpc': Ref(vpc.name, 'id'),
            'default_capacity': 0,
            'endpoint_access': 'public-and-private',
            'fargate_execution_role': {
                'assumed_by': 'eks-fargate-pods.amazonaws.com',
                'managed_policies': ['AmazonEKSFargatePodExecutionRolePolicy'],
                'secret_access': [Ref(db_secret.name, 'arn'), Ref(flask_secret.name, 'arn')],
            },
        })
        cluster.add_role_mapping(DEVOPS_SSO_ROLE_ARN, 'devops-sso-user', SYSTEM_MASTERS)
        cluster.add_user_mapping(INFRA_BETA_USER_ARN, 'infra-beta-user', SYSTEM_MASTERS)
        cluster.add_fargate_profile('system', ['kube-system'], execution_role='fargate_execution_role')
        cluster.add_fargate_profile('superset', [SUPERSET_NAMESPACE], execution_role='fargate_execution_role')

        stack.add_ingress_rule(database, 5432, cluster.resource, 'EKS to RDS')

        alb_sa = cluster.add_service_account(
            'alb-sa', ALB_CONTROLLER_CHART, 'kube-system',
            policy_actions=['elasticloadbalancing:*', 'ec2:Describe*', 'iam:CreateServiceLinkedRole'],
        )
        chart = cluster.add_helm_chart(
            'ALBController', ALB_CONTROLLER_CHART, EKS_CHARTS_REPOSITORY, 'kube-system',
            release=ALB_CONTROLLER_CHART,
            values={
                'clusterName': Ref(cluster.name, 'name'),
                'serviceAccount': {'create': False, 'name': ALB_CONTROLLER_CHART},
                'region': env.region,
                'vpcId': Ref(vpc.name, 'id'),
            },
        )
        stack.link(alb_sa, chart)

        namespace = cluster.add_manifest('SupersetNS', namespace_manifest(SUPERSET_NAMESPACE))
        db_uri = cluster.add_manifest('SupersetDBUriSecret', {
            'apiVersion': 'v1',
            'kind': 'Secret',
            'metadata': {'name': 'superset-db-uri', 'namespace': SUPERSET_NAMESPACE},
            'type': 'Opaque',
            'stringData': {
                'DB_HOST': Ref(database.name, 'endpoint'),
                'DB_PORT': '5432',
                'DB_NAME': 'superset',
                'DB_USER': 'superset',
            },
        })
        stack.link(namespace, db_uri)

        cluster.add_manifest('TestManifest', {
            'apiVersion': 'v1',
            'kind': 'ConfigMap',
            'metadata': {'name': 'test-config', 'namespace': 'default'},
            'data': {'test.txt': 'This is a test from InfraStack'},
        })

        stack.export('SupersetClusterName', Ref(cluster.name, 'name'), make_global=True)
        stack.export('SupersetKubectlRoleArn', Ref(cluster.name, 'kubectl_role_arn'), make_global=True)
        stack.export('SupersetClusterSG', Ref(cluster.name, 'security_group_id'), make_global=True)
        stack.export('SupersetDBSecretArn', Ref(db_secret.name, 'arn'), make_global=True)
        stack.export('SupersetFlaskSecretArn', Ref(flask_secret.name, 'arn'), make_global=True)
        stack.export('SupersetDBHost', Ref(database.name, 'endpoint'), make_global=True)
        return stack


@register_blueprint
class SupersetApp:
    """Superset workloads on the cluster exported by superset-infra."""

    name = 'superset-app'
    description = 'Superset, Redis and the init job on the infra cluster'
    requires: tuple[str, ...] = ('superset-infra',)

    def build(self, app: App, options: dict[str, Any]) -> Stack:
        stack = app.stack(self.name, description=self.description)
        cluster_name = stack.import_value('SupersetClusterName')
        kubectl_role = stack.import_value('SupersetKubectlRoleArn')

        def workload(name: str, manifest: dict) -> ManagedResource:
            return stack.declare(name, MANIFEST_KINDS.get(manifest['kind'], ResourceKind.WORKLOAD), {
                'cluster': cluster_name,
                'kubectl_role_arn': kubectl_role,
                'namespace': SUPERSET_NAMESPACE,
                'manifest': manifest,
            })

        mounts, volumes = _config_volume()
        db_env_from = [{'secretRef': {'name': 'superset-db-uri'}}]

        superset_config = workload('SupersetConfig', {
            'apiVersion': 'v1',
            'kind': 'ConfigMap',
            'metadata': {'name': 'superset-config', 'namespace': SUPERSET_NAMESPACE},
            'data': {'superset_config.py': SUPERSET_CONFIG_PY},
        })

        redis_deployment = workload('RedisDeployment', {
            'apiVersion': 'apps/v1',
            'kind': 'Deployment',
            'metadata': {'name': 'redis', 'namespace': SUPERSET_NAMESPACE},
            'spec': {
                'replicas': 1,
                'selector': {'matchLabels': {'app': 'redis'}},
                'template': {
                    'metadata': {'labels': {'app': 'redis'}},
                    'spec': {'containers': [{
                        'name': 'redis',
                        'image': 'redis:7-alpine',
                        'ports': [{'containerPort': 6379}],
                        'resources': _resources('256Mi', '250m', '512Mi', '500m'),
                        'livenessProbe': {
                            'tcpSocket': {'port': 6379},
                            'initialDelaySeconds': 30,
                            'timeoutSeconds': 5,
                        },
                        'readinessProbe': {
                            'tcpSocket': {'port': 6379},
                            'initialDelaySeconds': 5,
                            'timeoutSeconds': 1,
                        },
                    }]},
                },
            },
        })

        redis_service = workload('RedisService', {
            'apiVersion': 'v1',
            'kind': 'Service',
            'metadata': {'name': 'redis', 'namespace': SUPERSET_NAMESPACE},
            'spec': {
                'selector': {'app': 'redis'},
                'ports': [{'port': 6379, 'targetPort': 6379}],
            },
        })

        init_job = workload('SupersetInitJob', {
            'apiVersion': 'batch/v1',
            'kind': 'Job',
            'metadata': {'name': 'superset-init', 'namespace': SUPERSET_NAMESPACE},
            'spec': {
                'template': {'spec': {
                    'restartPolicy': 'Never',
                    'containers': [{
                        'name': 'superset-init',
                        'image': SUPERSET_IMAGE,
                        'command': ['/bin/bash', '-c'],
                        'args': [SUPERSET_INIT_SCRIPT],
                        'envFrom': db_env_from,
                        'env': [_env_var('SUPERSET_CONFIG_PATH', '/etc/superset/superset_config.py')] + _redis_env(),
                        'volumeMounts': mounts,
                        'resources': _resources('1Gi', '500m', '2Gi', '1000m'),
                    }],
                    'volumes': volumes,
                }},
                'backoffLimit': 3,
            },
        })

        health = {'path': '/health', 'port': SUPERSET_PORT}
        superset_deployment = workload('SupersetDeployment', {
            'apiVersion': 'apps/v1',
            'kind': 'Deployment',
            'metadata': {'name': 'superset', 'namespace': SUPERSET_NAMESPACE},
            'spec': {
                'replicas': 2,
                'selector': {'matchLabels': {'app': 'superset'}},
                'template': {
                    'metadata': {'labels': {'app': 'superset'}},
                    'spec': {
                        'containers': [{
                            'name': 'superset',
                            'image': SUPERSET_IMAGE,
                            'ports': [{'containerPort': SUPERSET_PORT}],
                            'command': ['/bin/bash', '-c'],
                            'args': [SUPERSET_SERVE_SCRIPT],
                            'env': [
                                _env_var('SUPERSET_ENV', 'production'),
                                _env_var('SUPERSET_CONFIG_PATH', '/etc/superset/superset_config.py'),
                            ] + _redis_env(),
                            'envFrom': db_env_from,
                            'volumeMounts': mounts,
                            'resources': _resources('2Gi', '1000m', '4Gi', '2000m'),
                            'livenessProbe': {
                                'httpGet': health,
                                'initialDelaySeconds': 60,
                                'periodSeconds': 30,
                                'timeoutSeconds': 10,
                                'failureThreshold': 3,
                            },
                            'readinessProbe': {
                                'httpGet': health,
                                'initialDelaySeconds': 30,
                                'periodSeconds': 10,
                                'timeoutSeconds': 5,
                                'failureThreshold': 3,
                            },
                        }],
                        'volumes': volumes,
                    },
                },
            },
        })

        superset_service = workload('SupersetService', {
            'apiVersion': 'v1',
            'kind': 'Service',
            'metadata': {
                'name': 'superset',
                'namespace': SUPERSET_NAMESPACE,
                'annotations': {
                    'service.beta.kubernetes.io/aws-load-balancer-type': 'nlb',
                    'service.beta.kubernetes.io/aws-load-balancer-scheme': 'internet-facing',
                },
            },
            'spec': {
                'type': 'LoadBalancer',
                'selector': {'app': 'superset'},
                'ports': [{'port': SUPERSET_PORT, 'targetPort': SUPERSET_PORT, 'protocol': 'TCP'}],
            },
        })

        # The ALB controller chart lives in superset-infra, which this stack
        # already follows through its imports.
        stack.link(redis_deployment, redis_service)
        stack.depends_on(init_job, redis_service, superset_config)
        stack.link(init_job, superset_deployment)
        stack.link(superset_deployment, superset_service)

        stack.export(
            'SupersetURLCmd',
            "kubectl get svc -n superset superset -o jsonpath='{.status.loadBalancer.ingress[0].hostname}'",
            description='Command that prints the Superset URL',
        )
        stack.export('SupersetCredentials', 'admin@superset.com / admin123',
                     description='Default Superset credentials')
        stack.export('SupersetPort', str(SUPERSET_PORT), description='Superset port')
        stack.export('SupersetInitJobStatus', 'kubectl get job -n superset superset-init',
                     description='Command that shows the init job status')
        return stack


def _cluster_for(stack: Stack, name: str, vpc_name: str, existing_cluster_name: Optional[str],
                 metadata: Optional[dict] = None) -> ClusterHandle:
    """Import the named cluster, or create a node-group cluster in the VPC."""
    if existing_cluster_name:
        logger.info(f"[{stack.name}] Using existing cluster '{existing_cluster_name}'")
        return stack.cluster(
            name,
            existing_cluster_name=existing_cluster_name,
            metadata={'name': existing_cluster_name, **(metadata or {})},
        )
    return stack.cluster(name, config={'vpc': Ref(vpc_name, 'id')})


def _map_devops_role(stack: Stack, cluster: ClusterHandle) -> None:
    if cluster.supports(Capability.ROLE_MAPPING):
        cluster.add_role_mapping(DEVOPS_SSO_ROLE_ARN, 'devops', SYSTEM_MASTERS)
    else:
        logger.warning(f"[{stack.name}] Existing cluster '{cluster.name}': skipping DevOps role mapping")


@register_blueprint
class SupersetMinimal:
    """Node-group cluster behind an internet-facing Application Load Balancer.

    Options:
        existing_cluster_name: Attach to this cluster instead of creating one
        existing_cluster_metadata: Attributes of the existing cluster
            (endpoint, security_group_id, role_arn)
    """

    name = 'superset-minimal'
    description = 'EKS node-group cluster with an ALB and TargetGroupBinding for Superset'
    requires: tuple[str, ...] = ()

    def build(self, app: App, options: dict[str, Any]) -> Stack:
        stack = app.stack(self.name, description=self.description)

        vpc = lookup_vpc(stack, 'SupersetVpc')
        cluster = _cluster_for(
            stack, 'SupersetCluster', vpc.name,
            options.get('existing_cluster_name'),
            options.get('existing_cluster_metadata'),
        )
        _map_devops_role(stack, cluster)

        namespace = add_manifest(stack, cluster, 'SupersetNS', namespace_manifest(SUPERSET_NAMESPACE))

        alb = stack.resolve('SupersetALB', ResourceKind.LOAD_BALANCER, config={
            'vpc': Ref(vpc.name, 'id'),
            'security_group': {'description': 'Security group for Superset ALB', 'allow_all_outbound': True},
        })
        stack.add_ingress_rule(alb, 80, '0.0.0.0/0', 'Allow HTTP access from internet')
        stack.add_ingress_rule(alb, 443, '0.0.0.0/0', 'Allow HTTPS access from internet')

        if cluster.supports(Capability.INGRESS_RULE):
            stack.add_ingress_rule(cluster.resource, SUPERSET_PORT, alb, 'Allow ALB to access Superset pods')
        else:
            logger.warning(f"[{stack.name}] Existing cluster '{cluster.name}': add the ALB ingress rule manually")

        if cluster.supports(Capability.SERVICE_ACCOUNT):
            cluster.add_service_account(
                'aws-load-balancer-controller', ALB_CONTROLLER_CHART, 'kube-system',
                policy_actions=ALB_CONTROLLER_ACTIONS,
            )

        binding = add_manifest(stack, cluster, 'SupersetTargetGroupBinding', {
            'apiVersion': 'elbv2.k8s.aws/v1beta1',
            'kind': 'TargetGroupBinding',
            'metadata': {'name': 'superset-target-group-binding', 'namespace': SUPERSET_NAMESPACE},
            'spec': {
                'serviceRef': {'name': 'superset', 'port': SUPERSET_PORT},
                'targetGroupARN': Ref(alb.name, 'target_group_arn'),
            },
        })
        stack.link(namespace, binding)

        cluster_outputs = [
            ('ClusterName', 'name', 'EKS cluster name for kubectl'),
            ('ClusterEndpoint', 'endpoint', 'EKS cluster endpoint'),
            ('ClusterSecurityGroupId', 'security_group_id', 'EKS cluster security group'),
            ('ClusterRoleArn', 'role_arn', 'EKS cluster IAM role'),
        ]
        for key, attribute, description in cluster_outputs:
            # An existing cluster only reports what its metadata supplies
            if cluster.imported and attribute not in cluster.resource.attributes:
                continue
            stack.export(key, Ref(cluster.name, attribute), description=description)

        stack.export('NamespaceName', SUPERSET_NAMESPACE, description='Superset namespace')
        stack.export('VpcId', Ref(vpc.name, 'id'), description='VPC the cluster runs in')
        stack.export('SupersetALBDNS', Ref(alb.name, 'dns_name'), description='ALB DNS name')
        stack.export('SupersetURL', Ref(alb.name, 'dns_name'), description='Public Superset URL',
                     template='http://{}')
        stack.export('SupersetTargetGroupArn', Ref(alb.name, 'target_group_arn'),
                     description='Target group bound by the TargetGroupBinding')
        stack.export('ALBSecurityGroupId', Ref(alb.name, 'security_group_id'),
                     description='ALB security group')
        return stack


@register_blueprint
class SupersetMinimalV2:
    """Self-contained cluster running its own Postgres."""

    name = 'superset-minimal-v2'
    description = 'EKS node-group cluster with an in-cluster Postgres StatefulSet'
    requires: tuple[str, ...] = ()

    def build(self, app: App, options: dict[str, Any]) -> Stack:
        stack = app.stack(self.name, description=self.description)

        vpc = lookup_vpc(stack, 'SupersetVpcV2')
        cluster = _cluster_for(
            stack, 'SupersetClusterV2', vpc.name,
            options.get('existing_cluster_name'),
            options.get('existing_cluster_metadata'),
        )
        _map_devops_role(stack, cluster)

        namespace = add_manifest(stack, cluster, 'SupersetNSV2', namespace_manifest(SUPERSET_V2_NAMESPACE))

        password = stack.resolve('PgPasswordV2', ResourceKind.SECRET, config={
            'template': {'username': 'superset'},
            'password_length': 24,
            'exclude_punctuation': True,
            'exclude_characters': '',
            'removal_policy': 'destroy',
        })

        postgres_host = f'postgres.{SUPERSET_V2_NAMESPACE}.svc.cluster.local'
        db_secret = add_manifest(stack, cluster, 'SupersetDbSecretV2', {
            'apiVersion': 'v1',
            'kind': 'Secret',
            'metadata': {'name': 'superset-db', 'namespace': SUPERSET_V2_NAMESPACE},
            'type': 'Opaque',
            'stringData': {
                'DB_USER': 'superset',
                'DB_NAME': 'superset',
                'DB_HOST': 'postgres',
                'DB_PORT': '5432',
                'REDIS_HOST': 'superset-redis-master',
                'REDIS_PORT': '6379',
                'REDIS_CACHE_DB': '1',
                'REDIS_CELERY_DB': '0',
            },
        })
        # Password-bearing keys are filled from the generated secret at apply time
        password_arn = Ref(password.name, 'arn')
        db_secret.config['secret_fields'] = {
            'DB_PASSWORD': {'secret': password_arn, 'key': 'password'},
            'DB_PASS': {'secret': password_arn, 'key': 'password'},
            'SQLALCHEMY_DATABASE_URI': {
                'secret': password_arn,
                'key': 'password',
                'template': f'postgresql+psycopg2://superset:{{}}@{postgres_host}:5432/superset',
            },
        }
        stack.depends_on(db_secret, namespace, password)

        def secret_env(name: str, key: str) -> dict:
            return {'name': name, 'valueFrom': {'secretKeyRef': {'name': 'superset-db', 'key': key}}}

        postgres = add_manifest(stack, cluster, 'PostgresV2', {
            'apiVersion': 'apps/v1',
            'kind': 'StatefulSet',
            'metadata': {'name': 'postgres', 'namespace': SUPERSET_V2_NAMESPACE},
            'spec': {
                'serviceName': 'postgres',
                'replicas': 1,
                'selector': {'matchLabels': {'app': 'postgres'}},
                'template': {
                    'metadata': {'labels': {'app': 'postgres'}},
                    'spec': {
                        'containers': [{
                            'name': 'postgres',
                            'image': 'postgres:15-alpine',
                            'ports': [{'containerPort': 5432}],
                            'env': [
                                secret_env('POSTGRES_USER', 'DB_USER'),
                                secret_env('POSTGRES_PASSWORD', 'DB_PASSWORD'),
                                secret_env('POSTGRES_DB', 'DB_NAME'),
                            ],
                            'volumeMounts': [{'name': 'pgdata', 'mountPath': '/var/lib/postgresql/data'}],
                        }],
                        'volumes': [{'name': 'pgdata', 'emptyDir': {}}],
                    },
                },
            },
        })
        stack.link(db_secret, postgres)

        postgres_service = add_manifest(stack, cluster, 'PostgresSvcV2', {
            'apiVersion': 'v1',
            'kind': 'Service',
            'metadata': {'name': 'postgres', 'namespace': SUPERSET_V2_NAMESPACE},
            'spec': {
                'type': 'ClusterIP',
                'selector': {'app': 'postgres'},
                'ports': [{'port': 5432, 'targetPort': 5432}],
            },
        })
        stack.link(postgres, postgres_service)

        stack.export('PostgresServiceV2', f'{postgres_host}:5432',
                     description='In-cluster Postgres address for the Superset V2 chart')
        return stack
