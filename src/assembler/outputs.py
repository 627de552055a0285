"""Stack outputs and cross-stack exports.

Outputs are declared during synthesis and resolved once their producing
resource is Ready. Global outputs are published in the app-wide
ExportRegistry so other stacks can consume them by name.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from common import DuplicateName, UnresolvedReference
from config import ConfigurationIncomplete, EnvironmentConfig
from assembler.resource import Ref, Resource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputDeclaration:
    """An output as declared at synthesis time.

    Attributes:
        key: Output name
        value: Literal string or Ref to a resource attribute
        exported: True if resolvable from other stacks
        description: Human-readable description
        template: Format string applied to a Ref value (e.g. 'http://{}')
    """
    key: str
    value: Union[str, Ref]
    exported: bool = False
    description: str = ''
    template: Optional[str] = None

    @property
    def source(self) -> Optional[str]:
        return self.value.resource if isinstance(self.value, Ref) else None

    def render(self) -> str:
        """Render the value with Refs as ${name.attr} tokens."""
        text = str(self.value)
        return self.template.format(text) if self.template else text

    def to_dict(self) -> dict:
        d = {'key': self.key, 'value': self.render(), 'exported': self.exported}
        if self.description:
            d['description'] = self.description
        return d


@dataclass(frozen=True)
class Output:
    """A resolved output value. Immutable once emitted."""
    key: str
    value: str
    exported: bool = False

    def to_dict(self) -> dict:
        return {'key': self.key, 'value': self.value, 'exported': self.exported}


class ExportRegistry:
    """App-wide table of global exports, keyed by export name."""

    def __init__(self) -> None:
        self._exports: dict[str, tuple[str, 'OutputExporter']] = {}

    def register(self, key: str, stack_name: str, exporter: 'OutputExporter') -> None:
        """Publish key from stack_name.

        Raises:
            DuplicateName: If another stack already exports key
        """
        if key in self._exports and self._exports[key][0] != stack_name:
            raise DuplicateName(
                f"Export '{key}' is already published by stack '{self._exports[key][0]}'"
            )
        self._exports[key] = (stack_name, exporter)

    def producer(self, key: str) -> str:
        """Name of the stack that exports key.

        Raises:
            UnresolvedReference: If nothing exports key
        """
        if key not in self._exports:
            raise UnresolvedReference(f"No stack exports '{key}'")
        return self._exports[key][0]

    def resolve(self, key: str) -> Output:
        """Resolve a global export to its value.

        Raises:
            UnresolvedReference: If unknown or the producer is not Ready
        """
        self.producer(key)
        return self._exports[key][1].resolve(key)

    def keys(self) -> list[str]:
        return sorted(self._exports)


class OutputExporter:
    """Per-stack output table.

    Args:
        stack_name: Owning stack
        environment: Environment used to validate global exports
        lookup: Callable returning a declared resource by name
        registry: App-wide export registry (None for a standalone stack)
    """

    def __init__(
        self,
        stack_name: str,
        environment: EnvironmentConfig,
        lookup: Callable[[str], Resource],
        registry: Optional[ExportRegistry] = None,
    ):
        self.stack_name = stack_name
        self.environment = environment
        self._lookup = lookup
        self._registry = registry
        self._declared: dict[str, OutputDeclaration] = {}
        self._emitted: dict[str, Output] = {}

    @property
    def declarations(self) -> list[OutputDeclaration]:
        return list(self._declared.values())

    def export(
        self,
        key: str,
        value: Union[str, Ref],
        make_global: bool = False,
        description: str = '',
        template: Optional[str] = None,
    ) -> OutputDeclaration:
        """Record a named output.

        Raises:
            ConfigurationIncomplete: Global export from an incomplete
                environment, or with a blank value
            DuplicateName: Key already declared in this stack
            UnresolvedReference: Ref to an undeclared resource
        """
        if make_global:
            self.environment.require_complete()
            if not isinstance(value, Ref) and not str(value).strip():
                raise ConfigurationIncomplete(
                    f"Global export '{key}' in stack '{self.stack_name}' has an empty value"
                )

        if key in self._declared:
            raise DuplicateName(f"Output '{key}' is already declared in stack '{self.stack_name}'")

        if isinstance(value, Ref):
            try:
                self._lookup(value.resource)
            except KeyError:
                raise UnresolvedReference(
                    f"Output '{key}' references undeclared resource '{value.resource}'"
                )

        declaration = OutputDeclaration(
            key=key,
            value=value,
            exported=make_global,
            description=description,
            template=template,
        )
        if make_global and self._registry is not None:
            self._registry.register(key, self.stack_name, self)
        self._declared[key] = declaration
        logger.debug(f"[{self.stack_name}] Declared output {key}={declaration.render()}")
        return declaration

    def resolve(self, key: str) -> Output:
        """Resolve an output for a consumer.

        Raises:
            UnresolvedReference: Unknown key, producer not Ready, or the
                producer never reported the referenced attribute
        """
        if key in self._emitted:
            return self._emitted[key]
        if key not in self._declared:
            raise UnresolvedReference(f"Stack '{self.stack_name}' has no output '{key}'")

        declaration = self._declared[key]
        value = declaration.value
        if isinstance(value, Ref):
            resource = self._lookup(value.resource)
            if not resource.is_ready:
                raise UnresolvedReference(
                    f"Output '{key}' depends on '{resource.name}' which is "
                    f"{resource.state.value}, not ready"
                )
            if value.attribute not in resource.attributes:
                raise UnresolvedReference(
                    f"Resource '{resource.name}' has no attribute '{value.attribute}'"
                )
            text = str(resource.attributes[value.attribute])
        else:
            text = str(value)

        if declaration.template:
            text = declaration.template.format(text)

        output = Output(key=key, value=text, exported=declaration.exported)
        self._emitted[key] = output
        return output

    def reset(self) -> None:
        """Forget resolved values; producers are about to change or go away."""
        self._emitted.clear()

    def emit(self) -> list[Output]:
        """Resolve every declared output.

        Raises:
            UnresolvedReference: If any producing resource is not Ready
        """
        return [self.resolve(key) for key in self._declared]
