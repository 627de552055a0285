"""Stack executor: hands a finalized stack to an orchestrator.

Walks the provisioning order, resolving attribute references against
resources that are already Ready, and records per-resource outcomes in the
execution state. Imported references are never created or deleted.

A failed resource halts its descendants: with on_error='stop' the walk ends
immediately, with on_error='continue' independent branches still proceed
while every descendant of the failure stays Pending.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from common import ProvisionResult, ProvisioningFailed, UnresolvedReference, config_digest
from assembler.resource import ManagedResource, render_config
from assembler.stack import Stack, SynthesisResult
from assembler.state import ExecutionState, ResourceRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class Orchestrator(Protocol):
    """Protocol for the external control plane.

    Both calls are idempotent and keyed by the resource's logical name.
    Implementations report failure either with ProvisionResult(success=False)
    or by raising ProvisioningFailed.
    """

    def apply(self, stack: Stack, resource: ManagedResource, config: dict) -> ProvisionResult:
        """Create or update a resource; return its provisioned attributes."""

    def delete(self, stack: Stack, record: ResourceRecord) -> ProvisionResult:
        """Delete a previously provisioned resource."""


@dataclass
class PlanChange:
    """One line of a plan: what apply would do to a resource."""
    action: str  # create, update, delete, no-op, import
    name: str
    kind: str
    reason: str = ''

    def to_dict(self) -> dict:
        d = {'action': self.action, 'name': self.name, 'kind': self.kind}
        if self.reason:
            d['reason'] = self.reason
        return d


def resource_digest(resource: ManagedResource) -> str:
    return config_digest({'kind': resource.kind.value, 'config': render_config(resource.config)})


@dataclass
class StackExecutor:
    """Executes apply/destroy/plan for one finalized stack.

    Attributes:
        synthesis: Finalized stack from Stack.finalize()
        orchestrator: Control plane performing the provisioning calls
        dry_run: If True, preview operations without calling the orchestrator
        state_path: Override for the execution state file
    """
    synthesis: SynthesisResult
    orchestrator: Orchestrator
    dry_run: bool = False
    state_path: Optional[Path] = None
    _blocked: set = field(default_factory=set, init=False, repr=False)

    @property
    def stack(self) -> Stack:
        return self.synthesis.stack

    def _load_state(self) -> ExecutionState:
        return ExecutionState.load_or_create(
            self.stack.name, self.stack.environment.name, self.state_path,
        )

    # -- plan -------------------------------------------------------------

    def plan(self) -> list[PlanChange]:
        """Diff the synthesized stack against saved execution state."""
        state = self._load_state()
        records = state.resources
        changes: list[PlanChange] = []

        for resource in self.synthesis.order:
            kind = resource.kind.value
            if resource.imported:
                changes.append(PlanChange('import', resource.name, kind, resource.existing_id))
                continue

            record = records.get(resource.name)
            digest = resource_digest(resource)
            if record is None or record.status in ('pending', 'destroyed'):
                changes.append(PlanChange('create', resource.name, kind))
            elif record.status != 'ready':
                changes.append(PlanChange('create', resource.name, kind, f'previous status: {record.status}'))
            elif record.digest != digest:
                changes.append(PlanChange('update', resource.name, kind, 'configuration changed'))
            else:
                changes.append(PlanChange('no-op', resource.name, kind))

        for record in self._orphans(state):
            changes.append(PlanChange('delete', record.name, record.kind, 'no longer declared'))

        return changes

    def _orphans(self, state: ExecutionState) -> list[ResourceRecord]:
        return [r for r in state.live_resources() if r.name not in self.stack.graph]

    # -- create -----------------------------------------------------------

    def create(self) -> tuple[bool, ExecutionState]:
        """Provision every resource in order, then emit outputs."""
        state = self._load_state()
        state.start()
        self.stack.exporter.reset()

        for resource in self.synthesis.order:
            state.ensure_resource(resource.name, resource.kind.value, resource.imported)

        if self.dry_run:
            self._preview_create()
            state.finish()
            return True, state

        on_error = self.stack.on_error
        self._blocked = set()
        success = True

        for resource in self.synthesis.order:
            record = state.get_resource(resource.name)

            if resource.imported:
                record.complete(resource.attributes)
                logger.debug(f"[{self.stack.name}] '{resource.name}' is imported ({resource.existing_id})")
                continue

            if resource.name in self._blocked:
                logger.warning(f"[{self.stack.name}] Skipping '{resource.name}': a dependency failed")
                continue

            digest = resource_digest(resource)
            resource.start()

            try:
                config = self.stack.resolve_value(resource.config)
                # Upstream attributes feed the resolved config; a changed
                # predecessor output forces a re-apply.
                inputs_digest = config_digest(config)
                if (record.status == 'ready' and record.digest == digest
                        and record.inputs_digest == inputs_digest):
                    resource.complete(record.attributes)
                    logger.info(f"[{self.stack.name}] '{resource.name}' unchanged")
                    continue

                record.start()
                result = self._apply(resource, config)
            except (ProvisioningFailed, UnresolvedReference) as e:
                message = e.reason if isinstance(e, ProvisioningFailed) else str(e)
                resource.fail(message)
                record.fail(message)
                success = False
                logger.error(f"[{self.stack.name}] Create failed for '{resource.name}': {message}")
                state.save(self.state_path)
                if on_error == 'stop':
                    break
                self._blocked.update(d.name for d in self.stack.graph.descendants(resource.name))
                continue

            resource.complete(result.attributes)
            record.complete(result.attributes, digest, inputs_digest)
            state.save(self.state_path)
            logger.info(f"[{self.stack.name}] '{resource.name}' ready ({result.duration:.1f}s)")

        if success:
            success = self._delete_orphans(state)
        if success:
            try:
                state.outputs = {o.key: o.value for o in self.stack.exporter.emit()}
            except UnresolvedReference as e:
                logger.error(f"[{self.stack.name}] Cannot emit outputs: {e}")
                success = False

        state.finish()
        state.save(self.state_path)
        return success, state

    def _apply(self, resource: ManagedResource, config: dict) -> ProvisionResult:
        start = time.time()
        result = self.orchestrator.apply(self.stack, resource, config)
        if not result.success:
            raise ProvisioningFailed(resource.name, result.message or 'orchestrator reported failure')
        if not result.duration:
            result.duration = time.time() - start
        return result

    def _delete_orphans(self, state: ExecutionState) -> bool:
        ok = True
        for record in self._orphans(state):
            logger.info(f"[{self.stack.name}] Deleting '{record.name}' (no longer declared)")
            if not self._delete(record):
                ok = False
        return ok

    # -- destroy ----------------------------------------------------------

    def destroy(self) -> tuple[bool, ExecutionState]:
        """Delete managed resources, dependents first."""
        state = self._load_state()
        state.start()

        if self.dry_run:
            self._preview_destroy()
            state.finish()
            return True, state

        self.stack.exporter.reset()
        success = self._delete_orphans(state)
        blocked: set[str] = set()

        for resource in self.synthesis.stack.graph.destroy_order():
            record = state.ensure_resource(resource.name, resource.kind.value, resource.imported)
            if resource.imported:
                continue
            if resource.name in blocked:
                logger.warning(f"[{self.stack.name}] Keeping '{resource.name}': a dependent could not be deleted")
                continue
            if record.status not in ('ready', 'failed', 'provisioning'):
                continue

            if self._delete(record):
                resource.reset()
            else:
                success = False
                blocked.update(a.name for a in self.stack.graph.ancestors(resource.name))

        state.outputs = {}
        state.finish()
        state.save(self.state_path)
        return success, state

    def _delete(self, record: ResourceRecord) -> bool:
        record.start()
        try:
            result = self.orchestrator.delete(self.stack, record)
            if not result.success:
                raise ProvisioningFailed(record.name, result.message or 'orchestrator reported failure')
        except ProvisioningFailed as e:
            record.fail(e.reason)
            logger.error(f"[{self.stack.name}] Destroy failed for '{record.name}': {e.reason}")
            return False
        record.mark_destroyed()
        return True

    # -- preview ----------------------------------------------------------

    def _preview_create(self) -> None:
        """Preview create operations."""
        env = self.stack.environment
        print("")
        print("=" * 65)
        print(f"  DRY-RUN APPLY: {self.stack.name}")
        print(f"  Environment: {env.name} ({env.account or 'any account'}/{env.region or 'any region'})")
        print("=" * 65)
        print("")
        for i, resource in enumerate(self.synthesis.order):
            deps = [p.name for p in self.stack.graph.predecessors(resource.name)]
            dep_info = f" (after: {', '.join(deps)})" if deps else ""
            mode = f"import {resource.existing_id}" if resource.imported else "create"
            print(f"  [{i}] {resource.name}: {resource.kind.value}{dep_info} [{mode}]")
        if self.synthesis.outputs:
            print("")
            print("  Outputs:")
            for output in self.synthesis.outputs:
                scope = "export" if output.exported else "local"
                print(f"    {output.key} = {output.render()} [{scope}]")
        print("")

    def _preview_destroy(self) -> None:
        """Preview destroy operations."""
        print("")
        print("=" * 65)
        print(f"  DRY-RUN DESTROY: {self.stack.name}")
        print(f"  Environment: {self.stack.environment.name}")
        print("=" * 65)
        print("")
        for resource in self.stack.graph.destroy_order():
            action = "keep (imported)" if resource.imported else "destroy"
            print(f"  {resource.name}: {action}")
        print("")


def apply_all(
    results: list[SynthesisResult],
    orchestrator: Orchestrator,
    dry_run: bool = False,
    state_dir: Optional[Path] = None,
) -> tuple[bool, list[ExecutionState]]:
    """Apply stacks in deployment order, stopping at the first failure."""
    states: list[ExecutionState] = []
    for result in results:
        executor = StackExecutor(result, orchestrator, dry_run=dry_run,
                                 state_path=state_file(state_dir, result))
        logger.info(f"Applying stack '{result.name}'")
        ok, state = executor.create()
        states.append(state)
        if not ok:
            logger.error(f"Stack '{result.name}' failed; later stacks not applied")
            return False, states
    return True, states


def destroy_all(
    results: list[SynthesisResult],
    orchestrator: Orchestrator,
    dry_run: bool = False,
    state_dir: Optional[Path] = None,
) -> tuple[bool, list[ExecutionState]]:
    """Destroy stacks in reverse deployment order."""
    states: list[ExecutionState] = []
    success = True
    for result in reversed(results):
        executor = StackExecutor(result, orchestrator, dry_run=dry_run,
                                 state_path=state_file(state_dir, result))
        logger.info(f"Destroying stack '{result.name}'")
        ok, state = executor.destroy()
        states.append(state)
        success = success and ok
    return success, states


def state_file(state_dir: Optional[Path], result: SynthesisResult) -> Optional[Path]:
    if state_dir is None:
        return None
    return Path(state_dir) / result.stack.environment.name / f'{result.name}.json'
