"""Execution state management for stack provisioning.

Tracks per-resource status (pending, provisioning, ready, failed, destroyed)
and persists it to disk so that plan and destroy can see what a previous
apply produced without re-synthesizing its attributes.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from config import get_base_dir

logger = logging.getLogger(__name__)


@dataclass
class ResourceRecord:
    """Per-resource execution record.

    Attributes:
        name: Resource name (matches the stack's logical name)
        kind: Resource kind value
        status: Current status (pending, provisioning, ready, failed, destroyed)
        imported: True for imported references (never created or deleted)
        digest: Digest of the applied config, for change detection
        inputs_digest: Digest of the config with references resolved
        attributes: Provisioned attributes reported by the orchestrator
        started_at: Timestamp when provisioning started
        completed_at: Timestamp when provisioning finished
        error: Error message if failed
    """
    name: str
    kind: str = ''
    status: str = 'pending'
    imported: bool = False
    digest: Optional[str] = None
    inputs_digest: Optional[str] = None
    attributes: dict = field(default_factory=dict)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None

    def start(self) -> None:
        self.status = 'provisioning'
        self.started_at = time.time()
        self.error = None

    def complete(
        self,
        attributes: Optional[dict] = None,
        digest: Optional[str] = None,
        inputs_digest: Optional[str] = None,
    ) -> None:
        self.status = 'ready'
        self.completed_at = time.time()
        if attributes:
            self.attributes.update(attributes)
        if digest is not None:
            self.digest = digest
        if inputs_digest is not None:
            self.inputs_digest = inputs_digest

    def fail(self, error: str) -> None:
        self.status = 'failed'
        self.completed_at = time.time()
        self.error = error

    def mark_destroyed(self) -> None:
        self.status = 'destroyed'
        self.completed_at = time.time()
        self.attributes = {}
        self.digest = None
        self.inputs_digest = None

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'kind': self.kind,
            'status': self.status,
        }
        if self.imported:
            d['imported'] = True
        if self.digest is not None:
            d['digest'] = self.digest
        if self.inputs_digest is not None:
            d['inputs_digest'] = self.inputs_digest
        if self.attributes:
            d['attributes'] = dict(self.attributes)
        if self.started_at is not None:
            d['started_at'] = self.started_at
        if self.completed_at is not None:
            d['completed_at'] = self.completed_at
        if self.error is not None:
            d['error'] = self.error
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'ResourceRecord':
        return cls(
            name=data['name'],
            kind=data.get('kind', ''),
            status=data.get('status', 'pending'),
            imported=data.get('imported', False),
            digest=data.get('digest'),
            inputs_digest=data.get('inputs_digest'),
            attributes=dict(data.get('attributes') or {}),
            started_at=data.get('started_at'),
            completed_at=data.get('completed_at'),
            error=data.get('error'),
        )


class ExecutionState:
    """Stack-level execution state with save/load.

    State is persisted to .states/{environment}/{stack}.json.
    """

    def __init__(self, stack_name: str, environment: str):
        self.stack_name = stack_name
        self.environment = environment
        self._records: dict[str, ResourceRecord] = {}
        self.outputs: dict[str, str] = {}
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def add_resource(self, name: str, kind: str = '', imported: bool = False) -> ResourceRecord:
        """Register a resource for tracking (replaces any existing record)."""
        record = ResourceRecord(name=name, kind=kind, imported=imported)
        self._records[name] = record
        return record

    def ensure_resource(self, name: str, kind: str = '', imported: bool = False) -> ResourceRecord:
        """Get the record for name, registering it if missing."""
        if name in self._records:
            record = self._records[name]
            record.kind = kind or record.kind
            record.imported = imported
            return record
        return self.add_resource(name, kind, imported)

    def get_resource(self, name: str) -> ResourceRecord:
        """Get resource record by name.

        Raises:
            KeyError: If resource not registered
        """
        return self._records[name]

    @property
    def resources(self) -> dict[str, ResourceRecord]:
        return dict(self._records)

    def live_resources(self) -> list[ResourceRecord]:
        """Records of managed resources the orchestrator currently holds."""
        return [
            r for r in self._records.values()
            if not r.imported and r.status in ('ready', 'failed', 'provisioning')
        ]

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    def _state_path(self) -> Path:
        return get_base_dir() / '.states' / self.environment / f'{self.stack_name}.json'

    def save(self, path: Optional[Path] = None) -> Path:
        """Save state to JSON file.

        Args:
            path: Optional override path. Default: .states/{env}/{stack}.json

        Returns:
            Path where state was saved
        """
        if path is None:
            path = self._state_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'stack_name': self.stack_name,
            'environment': self.environment,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'resources': {name: r.to_dict() for name, r in self._records.items()},
            'outputs': dict(self.outputs),
        }
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Saved execution state to {path}")
        return path

    @classmethod
    def load(cls, stack_name: str, environment: str, path: Optional[Path] = None) -> 'ExecutionState':
        """Load state from JSON file.

        Raises:
            FileNotFoundError: If state file doesn't exist
        """
        state = cls(stack_name, environment)
        if path is None:
            path = state._state_path()

        with open(path, encoding='utf-8') as f:
            data = json.load(f)

        state.started_at = data.get('started_at')
        state.completed_at = data.get('completed_at')
        state.outputs = dict(data.get('outputs') or {})
        for name, record_data in data.get('resources', {}).items():
            state._records[name] = ResourceRecord.from_dict(record_data)

        logger.debug(f"Loaded execution state from {path}")
        return state

    @classmethod
    def load_or_create(cls, stack_name: str, environment: str, path: Optional[Path] = None) -> 'ExecutionState':
        """Load saved state, or start empty if none exists."""
        try:
            return cls.load(stack_name, environment, path)
        except FileNotFoundError:
            logger.debug(f"No saved state for {environment}/{stack_name}")
            return cls(stack_name, environment)
