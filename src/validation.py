"""Pre-flight validation checks for stack deployment.

This module provides readiness checks that run before apply/destroy,
catching configuration issues early with actionable error messages.
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional

from common import StackError
from config import EnvironmentConfig, get_base_dir
from assembler.orchestrators import TOKEN_ENV_VAR, HttpOrchestrator

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Environment Validation
# -----------------------------------------------------------------------------

def validate_environment(env: EnvironmentConfig) -> list[str]:
    """Validate the environment has account, region and VPC.

    Args:
        env: Environment settings (loaded with or without validation)

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []
    missing = env.missing_fields
    if missing:
        hint = (
            "  Export CDK_DEFAULT_ACCOUNT / CDK_DEFAULT_REGION, or set them in environments.yaml"
            if env.is_default else
            f"  Add them under environments.{env.name} in environments.yaml"
        )
        errors.append(
            f"Environment '{env.name}' is missing: {', '.join(missing)}\n{hint}"
        )
    return errors


# -----------------------------------------------------------------------------
# Orchestrator Validation
# -----------------------------------------------------------------------------

def validate_orchestrator(endpoint: str, env_name: str, token: Optional[str] = None,
                          verify: bool = True, timeout: int = 10) -> list[str]:
    """Validate the provisioning control plane is reachable and accepts our token.

    Args:
        endpoint: Control plane base URL
        env_name: Environment name for error messages
        token: Bearer token (default: $STACKGRAPH_ORCHESTRATOR_TOKEN)
        verify: Verify TLS certificates
        timeout: Request timeout in seconds

    Returns:
        List of validation error messages (empty if valid)
    """
    if not endpoint:
        return [
            f"Orchestrator endpoint not configured for environment '{env_name}'\n"
            f"  Add 'orchestrator_endpoint' under environments.{env_name}, or use --simulate"
        ]

    orchestrator = HttpOrchestrator(endpoint, token=token, timeout=timeout, verify=verify)
    if not orchestrator.token:
        logger.warning(f"${TOKEN_ENV_VAR} is not set; calling {endpoint} without credentials")
    errors = orchestrator.health()
    if not errors:
        logger.info(f"Orchestrator reachable at {endpoint}")
    return errors


# -----------------------------------------------------------------------------
# State Directory Validation
# -----------------------------------------------------------------------------

def validate_state_dir(state_dir: Optional[Path] = None) -> list[str]:
    """Validate the execution state directory can be written.

    Returns:
        List of validation error messages (empty if valid)
    """
    if state_dir is None:
        state_dir = get_base_dir() / '.states'
    state_dir = Path(state_dir)

    # Walk up to the first existing ancestor; that is what mkdir will need
    probe = state_dir
    while not probe.exists() and probe.parent != probe:
        probe = probe.parent

    if not os.access(probe, os.W_OK):
        return [
            f"State directory {state_dir} is not writable\n"
            f"  Check permissions on {probe}, or pass --state-dir"
        ]
    return []


# -----------------------------------------------------------------------------
# Stack Validation
# -----------------------------------------------------------------------------

def validate_stacks(app) -> tuple[list[str], list[str]]:
    """Finalize every stack in app without provisioning anything.

    Returns:
        (passed, failed) message lists
    """
    passed: list[str] = []
    failed: list[str] = []
    try:
        stacks = app.stacks
    except StackError as e:
        return passed, [f"Stack ordering: {e}"]

    for stack in stacks:
        try:
            result = stack.finalize()
        except StackError as e:
            failed.append(f"{stack.name}: {e}")
            continue
        imported = sum(1 for r in result.order if r.imported)
        passed.append(
            f"{stack.name}: {len(result.order)} resources "
            f"({imported} imported), {len(result.outputs)} outputs"
        )
    return passed, failed


def run_preflight_checks(
    env: EnvironmentConfig,
    app=None,
    simulate: bool = False,
    state_dir: Optional[Path] = None,
    verify: bool = True,
) -> tuple[bool, dict]:
    """Run preflight checks for an environment and, optionally, its stacks.

    Args:
        env: Environment settings
        app: Assembled app whose stacks should synthesize cleanly
        simulate: Skip the control plane check (offline orchestrator)
        state_dir: Execution state directory override
        verify: Verify TLS certificates of the control plane

    Returns:
        (success, results) tuple where results contains check details
    """
    results: dict[str, dict[str, list[str]]] = {
        'environment': {'passed': [], 'failed': []},
        'stacks': {'passed': [], 'failed': []},
        'orchestrator': {'passed': [], 'failed': []},
        'state': {'passed': [], 'failed': []},
    }

    env_errors = validate_environment(env)
    if env_errors:
        results['environment']['failed'].extend(env_errors)
    else:
        results['environment']['passed'].append(
            f"{env.name}: account {env.account}, region {env.region}, VPC {env.vpc_id}"
        )

    if app is not None:
        passed, failed = validate_stacks(app)
        results['stacks']['passed'].extend(passed)
        results['stacks']['failed'].extend(failed)

    if simulate:
        results['orchestrator']['passed'].append("Simulated orchestrator (no control plane calls)")
    else:
        orch_errors = validate_orchestrator(env.orchestrator_endpoint, env.name, verify=verify)
        if orch_errors:
            results['orchestrator']['failed'].extend(orch_errors)
        else:
            results['orchestrator']['passed'].append(f"Reachable at {env.orchestrator_endpoint}")

    state_errors = validate_state_dir(state_dir)
    if state_errors:
        results['state']['failed'].extend(state_errors)
    else:
        results['state']['passed'].append("State directory writable")

    all_failed: list[Any] = []
    for category in results.values():
        all_failed.extend(category['failed'])

    return len(all_failed) == 0, results


def format_preflight_results(env_name: str, results: dict) -> str:
    """Format preflight check results for display.

    Args:
        env_name: Environment that was checked
        results: Results dict from run_preflight_checks

    Returns:
        Formatted string for display
    """
    lines = [f"\nPreflight checks for environment '{env_name}':\n"]

    category_names = {
        'environment': 'Environment',
        'stacks': 'Stacks',
        'orchestrator': 'Orchestrator',
        'state': 'Execution state',
    }

    for key, name in category_names.items():
        category = results.get(key, {'passed': [], 'failed': []})
        if category['passed'] or category['failed']:
            lines.append(f"{name}:")
            for item in category['passed']:
                lines.append(f"✓ {item}")
            for item in category['failed']:
                # Handle multi-line errors
                first_line = item.split('\n')[0]
                lines.append(f"✗ {first_line}")
                for line in item.split('\n')[1:]:
                    lines.append(f"  {line}")
            lines.append("")

    all_passed = all(
        len(cat['failed']) == 0
        for cat in results.values()
    )

    if all_passed:
        lines.append("All checks passed. Ready to apply.")
    else:
        lines.append("Some checks failed. Fix issues before applying.")

    return '\n'.join(lines)
