"""CLI handlers for stack verb commands (synth, plan, apply, destroy, validate).

Usage:
    stackgraph stack synth -S <stack> [-E <env>] [--output FILE]
    stackgraph stack plan -S <stack> [-E <env>] [--json-output]
    stackgraph stack apply -S <stack> [-E <env>] [--dry-run] [--simulate] [--json-output]
    stackgraph stack destroy -S <stack> [-E <env>] [--dry-run] [--yes]
    stackgraph stack validate -S <stack> [-E <env>] [--simulate]

-S accepts a blueprint name or a stack definition name from <config>/stacks/
and may be repeated. Required stacks are included automatically; destroy
only deletes the stacks named on the command line.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from common import StackError
from config import ConfigError, DEFAULT_ENVIRONMENT, load_environment
from blueprints import build_app, list_blueprints
from assembler.executor import StackExecutor, apply_all, destroy_all, state_file
from assembler.orchestrators import HttpOrchestrator, SimulatedOrchestrator
from validation import format_preflight_results, run_preflight_checks, validate_orchestrator

logger = logging.getLogger(__name__)


def _common_parser(verb: str, description: str) -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'stackgraph stack {verb}',
        description=description,
    )
    parser.add_argument(
        '--stack', '-S',
        action='append',
        default=[],
        help=f'Blueprint or stack definition name (repeatable). Blueprints: {", ".join(list_blueprints())}',
    )
    parser.add_argument(
        '--stack-file',
        action='append',
        default=[],
        help='Path to a stack definition file (repeatable)',
    )
    parser.add_argument(
        '--env', '-E',
        default=DEFAULT_ENVIRONMENT,
        help=f'Target environment (default: {DEFAULT_ENVIRONMENT})',
    )
    parser.add_argument(
        '--existing-cluster',
        help='Attach minimal blueprints to this existing EKS cluster',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _add_execution_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Preview operations without executing',
    )
    parser.add_argument(
        '--simulate',
        action='store_true',
        help='Use the offline orchestrator instead of the control plane',
    )
    parser.add_argument(
        '--insecure', '-k',
        action='store_true',
        help='Skip TLS verification for the control plane',
    )
    parser.add_argument(
        '--state-dir',
        type=Path,
        help='Execution state directory (default: .states/)',
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip pre-flight validation checks',
    )


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _assemble(args, validate_env: bool = True):
    """Load the environment and build the requested stacks.

    Returns:
        (environment, app, exit_code). exit_code is None on success.
    """
    if not args.stack and not args.stack_file:
        print("Error: specify a stack with -S or --stack-file", file=sys.stderr)
        return None, None, 1

    try:
        env = load_environment(args.env, validate=validate_env)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None, None, 1

    options = {}
    if args.existing_cluster:
        options['existing_cluster_name'] = args.existing_cluster

    try:
        app = build_app(env, args.stack, options=options, stack_files=args.stack_file)
    except (StackError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return env, None, 1

    return env, app, None


def _synthesize(app):
    """Finalize every stack, printing the error on failure.

    Returns:
        (results, exit_code). exit_code is None on success.
    """
    try:
        return app.synth(), None
    except StackError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None, 1


def _orchestrator(args, env):
    """Pick the orchestrator for apply/destroy.

    Returns:
        (orchestrator, exit_code). exit_code is None on success.
    """
    if args.simulate or args.dry_run:
        return SimulatedOrchestrator(), None
    if not env.orchestrator_endpoint:
        print(
            f"Error: environment '{env.name}' has no orchestrator_endpoint\n"
            f"  Set it in environments.yaml, or use --simulate",
            file=sys.stderr,
        )
        return None, 1
    return HttpOrchestrator(env.orchestrator_endpoint, verify=not args.insecure), None


def _run_preflight(args, env) -> Optional[int]:
    """Run preflight checks for apply/destroy.

    Returns:
        None if checks pass, exit code (1) if checks fail.
    """
    if args.skip_preflight or args.dry_run or args.simulate:
        return None

    errors = validate_orchestrator(env.orchestrator_endpoint, env.name, verify=not args.insecure)
    if errors:
        print("\nPre-flight validation failed:")
        for error in errors:
            for i, line in enumerate(error.split('\n')):
                prefix = "  ✗ " if i == 0 else "    "
                print(f"{prefix}{line}")
        print("\nUse --skip-preflight to bypass these checks")
        print()
        return 1
    logger.info("Pre-flight validation passed")
    return None


def _emit_json(verb: str, success: bool, env_name: str, states, duration: float) -> None:
    """Emit structured JSON output."""
    stacks = []
    for state in states:
        resources = []
        for name, record in state.resources.items():
            data = {'name': name, 'kind': record.kind, 'status': record.status}
            if record.imported:
                data['imported'] = True
            if record.duration is not None:
                data['duration'] = round(record.duration, 2)
            if record.error is not None:
                data['error'] = record.error
            resources.append(data)
        stacks.append({
            'name': state.stack_name,
            'resources': resources,
            'outputs': dict(state.outputs),
        })

    output = {
        'verb': verb,
        'environment': env_name,
        'success': success,
        'duration_seconds': round(duration, 2),
        'stacks': stacks,
    }
    print(json.dumps(output, indent=2))


def synth_main(argv: list) -> int:
    """Handle 'stack synth' verb."""
    parser = _common_parser('synth', 'Synthesize stacks into a provisioning document')
    parser.add_argument(
        '--output', '-o',
        type=Path,
        help='Write the document to this file instead of stdout',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, True)

    env, app, rc = _assemble(args)
    if rc is not None:
        return rc
    results, rc = _synthesize(app)
    if rc is not None:
        return rc

    document = {
        'environment': env.to_dict(),
        'exports': app.exports.keys(),
        'stacks': [r.to_dict() for r in results],
    }
    text = json.dumps(document, indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text + '\n', encoding='utf-8')
        logger.info(f"Wrote {len(results)} stack(s) to {args.output}")
    else:
        print(text)
    return 0


def plan_main(argv: list) -> int:
    """Handle 'stack plan' verb."""
    parser = _common_parser('plan', 'Show what apply would change')
    parser.add_argument(
        '--state-dir',
        type=Path,
        help='Execution state directory (default: .states/)',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    env, app, rc = _assemble(args)
    if rc is not None:
        return rc
    results, rc = _synthesize(app)
    if rc is not None:
        return rc

    plans = []
    for result in results:
        executor = StackExecutor(result, SimulatedOrchestrator(),
                                 state_path=state_file(args.state_dir, result))
        plans.append((result.name, executor.plan()))

    if args.json_output:
        print(json.dumps({
            'verb': 'plan',
            'environment': env.name,
            'stacks': [
                {'name': name, 'changes': [c.to_dict() for c in changes]}
                for name, changes in plans
            ],
        }, indent=2))
        return 0

    for name, changes in plans:
        print(f"\nStack {name} ({env.name}):")
        for change in changes:
            reason = f"  ({change.reason})" if change.reason else ""
            print(f"  {change.action:<8} {change.name} [{change.kind}]{reason}")
        counts: dict[str, int] = {}
        for change in changes:
            counts[change.action] = counts.get(change.action, 0) + 1
        summary = ', '.join(f"{count} {action}" for action, count in sorted(counts.items()))
        print(f"  Summary: {summary or 'nothing declared'}")
    print()
    return 0


def apply_main(argv: list) -> int:
    """Handle 'stack apply' verb."""
    parser = _common_parser('apply', 'Provision stacks through the orchestrator')
    _add_execution_args(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    env, app, rc = _assemble(args)
    if rc is not None:
        return rc
    results, rc = _synthesize(app)
    if rc is not None:
        return rc

    preflight_rc = _run_preflight(args, env)
    if preflight_rc is not None:
        return preflight_rc

    orchestrator, rc = _orchestrator(args, env)
    if rc is not None:
        return rc

    logger.info(f"Applying {len(results)} stack(s) to environment '{env.name}'")
    start = time.time()
    success, states = apply_all(results, orchestrator, dry_run=args.dry_run, state_dir=args.state_dir)
    duration = time.time() - start

    if args.json_output:
        _emit_json('apply', success, env.name, states, duration)
    elif success and not args.dry_run:
        for state in states:
            for key, value in state.outputs.items():
                print(f"{state.stack_name}.{key} = {value}")

    return 0 if success else 1


def destroy_main(argv: list) -> int:
    """Handle 'stack destroy' verb."""
    parser = _common_parser('destroy', 'Delete managed resources of stacks')
    _add_execution_args(parser)
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Skip confirmation prompt',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    env, app, rc = _assemble(args)
    if rc is not None:
        return rc
    results, rc = _synthesize(app)
    if rc is not None:
        return rc

    # Required stacks are synthesized for their exports but left standing
    results = [r for r in results if r.name in app.selected]

    preflight_rc = _run_preflight(args, env)
    if preflight_rc is not None:
        return preflight_rc

    # Confirmation for destructive operation
    if not args.dry_run and not args.yes:
        names = ', '.join(r.name for r in results)
        print(f"\nWARNING: This will destroy managed resources of: {names}.")
        print(f"Environment: {env.name} ({env.account}/{env.region})")
        print("Imported resources are left untouched. This action cannot be undone.")
        response = input("Continue? [y/N] ").strip().lower()
        if response != 'y':
            print("Aborted.")
            return 1

    orchestrator, rc = _orchestrator(args, env)
    if rc is not None:
        return rc

    logger.info(f"Destroying {len(results)} stack(s) in environment '{env.name}'")
    start = time.time()
    success, states = destroy_all(results, orchestrator, dry_run=args.dry_run, state_dir=args.state_dir)
    duration = time.time() - start

    if args.json_output:
        _emit_json('destroy', success, env.name, states, duration)

    return 0 if success else 1


def validate_main(argv: list) -> int:
    """Handle 'stack validate' verb.

    Checks environment completeness, stack synthesis, control plane
    reachability and the state directory, without provisioning.
    """
    parser = _common_parser('validate', 'Validate environment and stacks without provisioning')
    parser.add_argument(
        '--simulate',
        action='store_true',
        help='Skip the control plane check',
    )
    parser.add_argument(
        '--insecure', '-k',
        action='store_true',
        help='Skip TLS verification for the control plane',
    )
    parser.add_argument(
        '--state-dir',
        type=Path,
        help='Execution state directory (default: .states/)',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    # Incomplete environments are reported by the checks, not raised
    requested = bool(args.stack or args.stack_file)
    if requested:
        env, app, rc = _assemble(args, validate_env=False)
        if env is None:
            return rc or 1
    else:
        try:
            env = load_environment(args.env, validate=False)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        app = None

    success, results = run_preflight_checks(
        env, app=app, simulate=args.simulate, state_dir=args.state_dir, verify=not args.insecure,
    )
    if requested and app is None:
        success = False
        results['stacks']['failed'].append("Stacks could not be assembled (see error above)")

    if args.json_output:
        print(json.dumps({'verb': 'validate', 'environment': env.name,
                          'success': success, 'checks': results}, indent=2))
    else:
        print(format_preflight_results(env.name, results))
    return 0 if success else 1
