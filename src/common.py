"""Common types and errors for stack assembly and provisioning."""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


class StackError(Exception):
    """Base class for synthesis and provisioning errors."""


class DuplicateName(StackError):
    """A name was registered twice in the same scope."""


class CycleDetected(StackError):
    """A dependency edge would close a cycle in the resource graph."""

    def __init__(self, message: str, path: Optional[list[str]] = None):
        super().__init__(message)
        self.path = path or []


class CapabilityUnsupported(StackError):
    """A create-only capability was invoked on a resource that lacks it."""


class UnresolvedReference(StackError):
    """A reference points at something unknown or not yet Ready."""


class ProvisioningFailed(StackError):
    """The orchestrator reported a failure for a resource."""

    def __init__(self, resource: str, message: str):
        super().__init__(f"Provisioning failed for '{resource}': {message}")
        self.resource = resource
        self.reason = message


@dataclass
class ProvisionResult:
    """Result returned by an orchestrator call."""
    success: bool
    message: str = ''
    duration: float = 0.0
    attributes: dict = field(default_factory=dict)


def config_digest(data: dict) -> str:
    """Stable short digest of a JSON-serializable mapping."""
    encoded = json.dumps(data, sort_keys=True, default=str).encode('utf-8')
    return hashlib.sha256(encoded).hexdigest()[:16]
