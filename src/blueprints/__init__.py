"""Blueprint definitions and app assembly."""

import logging
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from common import CycleDetected
from config import EnvironmentConfig
from assembler.stack import App, Stack
from definition import DefinitionLoader, load_definition

logger = logging.getLogger(__name__)


@runtime_checkable
class Blueprint(Protocol):
    """Protocol for blueprint definitions.

    Class attributes:
        name: Blueprint identifier, also used as the stack name (e.g., 'superset-infra')
        description: Human-readable description
        requires: Names of stacks that must be built first (default: ())
    """
    name: str
    description: str
    # requires: tuple[str, ...] = ()

    def build(self, app: App, options: dict[str, Any]) -> Stack:
        """Declare the blueprint's resources in a new stack of app."""
        ...


# Registry of available blueprints
_blueprints: dict[str, type[Blueprint]] = {}


def register_blueprint(cls: type[Blueprint]) -> type[Blueprint]:
    """Decorator to register a blueprint class."""
    _blueprints[cls.name] = cls
    return cls


def get_blueprint(name: str) -> Blueprint:
    """Get a blueprint instance by name."""
    if name not in _blueprints:
        available = list(_blueprints.keys())
        raise ValueError(f"Unknown blueprint: {name}. Available: {available}")
    return _blueprints[name]()


def list_blueprints() -> list[str]:
    """List available blueprint names."""
    return sorted(_blueprints.keys())


def build_app(
    environment: EnvironmentConfig,
    names: list[str],
    options: Optional[dict[str, Any]] = None,
    config_dir: Optional[Path] = None,
    stack_files: Optional[list[str]] = None,
) -> App:
    """Build an app holding the named stacks and everything they require.

    Each name is a registered blueprint or a stack definition under
    <config>/stacks/. Required stacks are built before their dependents.

    Raises:
        ValueError: Unknown blueprint
        ConfigError: Missing or invalid stack definition
        CycleDetected: Stacks that require each other
        StackError: Any synthesis error raised while declaring resources
    """
    options = options or {}
    app = App(environment)
    loader = DefinitionLoader(config_dir)
    building: list[str] = []

    def _build(name: str, definition=None) -> None:
        if app.has_stack(name):
            return
        if name in building:
            cycle = building[building.index(name):] + [name]
            raise CycleDetected(f"Stacks require each other: {' -> '.join(cycle)}", path=cycle)
        building.append(name)

        if definition is None and name in _blueprints:
            blueprint = get_blueprint(name)
            for required in getattr(blueprint, 'requires', ()):
                _build(required)
            logger.debug(f"Building blueprint '{name}'")
            stack = blueprint.build(app, options)
            for required in getattr(blueprint, 'requires', ()):
                stack.add_dependency(app.get_stack(required))
        else:
            if definition is None:
                if name not in loader.list_definitions():
                    raise ValueError(
                        f"Unknown stack: {name}. "
                        f"Blueprints: {list_blueprints()}, "
                        f"definitions: {loader.list_definitions()}"
                    )
                definition = loader.load(name)
            for required in definition.depends_on:
                _build(required)
            logger.debug(f"Building stack definition '{name}'")
            definition.build(app)

        building.pop()

    for name in names:
        _build(name)
        if name not in app.selected:
            app.selected.append(name)
    for path in stack_files or []:
        definition = load_definition(file_path=path)
        _build(definition.name, definition)
        if definition.name not in app.selected:
            app.selected.append(definition.name)

    return app


# Import blueprints to trigger registration
from blueprints import superset  # noqa: E402, F401
