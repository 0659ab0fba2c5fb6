"""
Core Hub types and dataclasses.

This module contains the shared types used across the reconciliation core:
object identity, owner references, the Hub resource and its status, and the
manifests produced by the renderer.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

HUB_API_VERSION = "operators.hub.io/v1alpha1"
HUB_KIND = "Hub"
SECRET_KIND = "Secret"
DEPLOYMENT_KIND = "Deployment"


class HubPhase(Enum):
    """Reported phase of a Hub."""

    RUNNING = "Running"
    FAILED = "Failed"


@dataclass(frozen=True)
class ObjectKey:
    """Namespace/name identity of a namespaced object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "ObjectKey":
        """
        Parse a ``namespace/name`` string.

        Raises:
            ValueError: If the value is not of the form ``namespace/name``
        """
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name or "/" in name:
            raise ValueError(f"Expected 'namespace/name', got '{value}'")
        return cls(namespace=namespace, name=name)


@dataclass
class OwnerReference:
    """Back-reference from a child object to the object that owns it."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OwnerReference":
        return cls(
            api_version=data.get("apiVersion", ""),
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            uid=data.get("uid", ""),
            controller=bool(data.get("controller", False)),
        )


def controller_of(owner_references: List[OwnerReference]) -> Optional[OwnerReference]:
    """Return the controlling owner reference, if any."""
    for ref in owner_references:
        if ref.controller:
            return ref
    return None


@dataclass
class DeploymentStatus:
    """Snapshot of one live child deployment at aggregation time."""

    name: str
    status: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "status": copy.deepcopy(self.status)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentStatus":
        status = data.get("status")
        return cls(
            name=data["name"],
            status=copy.deepcopy(status) if isinstance(status, dict) else {},
        )


@dataclass
class HubStatus:
    """Status subresource of a Hub."""

    phase: Optional[HubPhase] = None
    deployments: List[DeploymentStatus] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value if self.phase else None,
            "deployments": [d.to_dict() for d in self.deployments],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "HubStatus":
        """
        Build a status from its stored form.

        Status is written by other clients too, so an unknown phase reads as
        no phase and malformed deployment entries are skipped. The next
        reconciliation overwrites both.
        """
        if not isinstance(data, dict):
            return cls()

        phase = None
        if data.get("phase"):
            try:
                phase = HubPhase(data["phase"])
            except ValueError:
                logger.warning(f"Ignoring unknown Hub phase {data['phase']!r}")

        deployments = data.get("deployments")
        if not isinstance(deployments, list):
            deployments = []
        return cls(
            phase=phase,
            deployments=[
                DeploymentStatus.from_dict(d)
                for d in deployments
                if isinstance(d, dict) and isinstance(d.get("name"), str)
            ],
        )


@dataclass
class HubResource:
    """The top-level object reconciled by the operator."""

    namespace: str
    name: str
    uid: str
    spec: Dict[str, Any] = field(default_factory=dict)
    status: HubStatus = field(default_factory=HubStatus)
    generation: int = 1

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    def owner_reference(self) -> OwnerReference:
        """Build a controller owner reference pointing at this Hub."""
        return OwnerReference(
            api_version=HUB_API_VERSION,
            kind=HUB_KIND,
            name=self.name,
            uid=self.uid,
            controller=True,
        )

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "HubResource":
        """Build a HubResource from a stored object dict."""
        return cls(
            namespace=obj["namespace"],
            name=obj["name"],
            uid=str(obj["uid"]),
            spec=obj.get("body") or {},
            status=HubStatus.from_dict(obj.get("status")),
            generation=obj.get("generation", 1),
        )


@dataclass
class DesiredResource:
    """A fully specified child manifest produced by the renderer."""

    kind: str
    namespace: str
    name: str
    api_version: str = "v1"
    body: Dict[str, Any] = field(default_factory=dict)
    owner_references: List[OwnerReference] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    def describe(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"


def set_controller_reference(owner: HubResource, resource: DesiredResource) -> None:
    """
    Mark ``owner`` as the controller of ``resource``.

    Existing non-controller references are kept. Setting the same owner
    twice is a no-op.

    Raises:
        ValueError: If the resource lives in another namespace or is
            already controlled by a different owner
    """
    if resource.namespace != owner.namespace:
        raise ValueError(
            f"cross-namespace owner references are not allowed: "
            f"{resource.describe()} cannot be owned by {owner.key}"
        )

    ref = owner.owner_reference()
    existing = controller_of(resource.owner_references)
    if existing is not None and existing.uid != ref.uid:
        raise ValueError(
            f"{resource.describe()} is already controlled by "
            f"{existing.kind} {existing.name}"
        )

    resource.owner_references = [
        r for r in resource.owner_references if r.uid != ref.uid
    ] + [ref]


@dataclass
class ReconcileResult:
    """Directive returned to the delivering framework after a pass."""

    requeue: bool = False
    requeue_after: Optional[float] = None


class RequestLogger(logging.LoggerAdapter):
    """Logger adapter that prefixes every message with the request key."""

    def process(self, msg, kwargs):
        return f"[{self.extra['request']}] {msg}", kwargs


def request_logger(
    key: ObjectKey, base: Optional[logging.Logger] = None
) -> RequestLogger:
    """Build the logging handle threaded through one reconciliation."""
    return RequestLogger(base or logger, {"request": str(key)})
