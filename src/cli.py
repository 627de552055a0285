#!/usr/bin/env python3
"""CLI entry point for stackgraph.

Supports noun-action subcommands:
- stack: stackgraph stack apply -S superset-minimal -E beta
- env:   stackgraph env show beta

Nouns:
- stack: Stack lifecycle (synth/plan/apply/destroy/validate)
- env: Deployment environments (list/show)
"""

import argparse
import json
import logging
import subprocess
import sys
from pathlib import Path

from config import ConfigError, DEFAULT_ENVIRONMENT, list_environments, load_environment

# Noun commands (noun-action subcommands)
NOUN_COMMANDS = {
    "stack": "Stack lifecycle (synth/plan/apply/destroy/validate)",
    "env": "Deployment environments (list/show)",
}

STACK_ACTIONS = {
    "synth": "Synthesize stacks into a provisioning document",
    "plan": "Show what apply would change",
    "apply": "Provision stacks through the orchestrator",
    "destroy": "Delete managed resources of stacks",
    "validate": "Validate environment and stacks without provisioning",
}


def get_version():
    """Get version from git tags (do not use hardcoded VERSION constant)."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except OSError:
        return 'dev'


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def dispatch_stack(argv: list) -> int:
    """Dispatch 'stack' noun to action-specific handler.

    Args:
        argv: Arguments after 'stack' (e.g., ['apply', '-S', 'superset-infra', '-E', 'beta'])

    Returns:
        Exit code
    """
    if not argv or argv[0].startswith('-'):
        print("Usage: stackgraph stack <action> [options]")
        print()
        print("Actions:")
        for action, desc in STACK_ACTIONS.items():
            print(f"  {action:<9} {desc}")
        print()
        print("Run 'stackgraph stack <action> --help' for action-specific options.")
        return 1 if not argv else 0

    action = argv[0]
    rest = argv[1:]

    if action == "synth":
        from assembler.cli import synth_main
        rc: int = synth_main(rest)
        return rc
    if action == "plan":
        from assembler.cli import plan_main
        rc = plan_main(rest)
        return rc
    if action == "apply":
        from assembler.cli import apply_main
        rc = apply_main(rest)
        return rc
    if action == "destroy":
        from assembler.cli import destroy_main
        rc = destroy_main(rest)
        return rc
    if action == "validate":
        from assembler.cli import validate_main
        rc = validate_main(rest)
        return rc

    print(f"Error: Unknown stack action '{action}'")
    print(f"Available actions: {', '.join(STACK_ACTIONS)}")
    return 1


def env_main(argv: list) -> int:
    """Handle 'env list' and 'env show <name>'."""
    parser = argparse.ArgumentParser(
        prog='stackgraph env',
        description='Inspect deployment environments',
    )
    parser.add_argument('action', choices=['list', 'show'], help='list or show')
    parser.add_argument('name', nargs='?', default=DEFAULT_ENVIRONMENT,
                        help=f'Environment for show (default: {DEFAULT_ENVIRONMENT})')
    parser.add_argument('--json-output', action='store_true', help='Output JSON')
    args = parser.parse_args(argv)

    try:
        if args.action == 'list':
            envs = [load_environment(name, validate=False) for name in list_environments()]
            if args.json_output:
                print(json.dumps([e.to_dict() for e in envs], indent=2))
                return 0
            print("Environments:")
            for env in envs:
                marker = '*' if env.is_default else ' '
                status = 'complete' if env.is_complete else f"missing {', '.join(env.missing_fields)}"
                print(f" {marker} {env.name:<10} {env.account or '-':<14} {env.region or '-':<12} {status}")
            return 0

        env = load_environment(args.name, validate=False)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json_output:
        print(json.dumps(env.to_dict(), indent=2))
    else:
        print(f"Environment: {env.name}{' (default)' if env.is_default else ''}")
        print(f"  account:      {env.account or '(unset)'}")
        print(f"  region:       {env.region or '(unset)'}")
        print(f"  vpc_id:       {env.vpc_id or '(unset)'}")
        print(f"  orchestrator: {env.orchestrator_endpoint or '(unset)'}")
        for key, value in env.stack_tags().items():
            print(f"  tag {key}={value}")
        if not env.is_complete:
            print(f"  incomplete: {', '.join(env.missing_fields)}")
    return 0


def dispatch_noun(noun: str, argv: list) -> int:
    """Dispatch to noun-specific CLI handler.

    Args:
        noun: The noun command (e.g., "stack", "env")
        argv: Remaining command line arguments

    Returns:
        Exit code
    """
    if noun == "stack":
        return dispatch_stack(argv)

    if noun == "env":
        if not argv:
            argv = ['list']
        return env_main(argv)

    print(f"Error: Noun '{noun}' not yet implemented")
    return 1


def print_usage():
    """Print top-level usage showing noun commands."""
    print(f"stackgraph {get_version()}")
    print()
    print("Usage: stackgraph <noun> <action> [options]")
    print()
    print("Commands:")
    for noun, desc in NOUN_COMMANDS.items():
        print(f"  {noun:<12} {desc}")
    print()
    print("Run 'stackgraph <noun> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  stackgraph stack synth -S superset-minimal")
    print("  stackgraph stack plan -S superset-app -E beta")
    print("  stackgraph stack apply -S superset-app -E beta --simulate")
    print("  stackgraph stack destroy -S superset-minimal --dry-run")
    print("  stackgraph env show staging")


def main(argv=None):
    """CLI entry point: dispatch to noun-action handlers."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        print_usage()
        return 0

    first_arg = argv[0]
    if first_arg in ('--version', '-V'):
        print(f"stackgraph {get_version()}")
        return 0
    if first_arg in ('--help', '-h'):
        print_usage()
        return 0
    if first_arg in NOUN_COMMANDS:
        return dispatch_noun(first_arg, argv[1:])

    print(f"Error: Unknown command '{first_arg}'")
    print_usage()
    return 1


if __name__ == '__main__':
    sys.exit(main())
