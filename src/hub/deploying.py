"""
Applying child manifests and listing live deployments.

StoreDeployer upserts rendered manifests into the resource store;
DeploymentLister reads back the Deployments of a namespace together with
their live status.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple, Union

from hub.base import (
    DEPLOYMENT_KIND,
    DeploymentStatus,
    DesiredResource,
    OwnerReference,
    controller_of,
)
from hub.errors import AlreadyExistsError, DeployError, HubError, NotFoundError

logger = logging.getLogger(__name__)

Log = Union[logging.Logger, logging.LoggerAdapter]


class Deployer(ABC):
    """Creates or updates one desired manifest. Must be idempotent."""

    @abstractmethod
    async def deploy(self, resource: DesiredResource, log: Log) -> None:
        """
        Apply ``resource``.

        Raises:
            DeployError: If the manifest could not be applied
        """
        pass


class Lister(ABC):
    """Lists the live child deployments of a namespace."""

    @abstractmethod
    async def list_children(self, namespace: str) -> Tuple[bool, List[DeploymentStatus]]:
        """
        Return ``(all_ready, statuses)`` for the namespace.

        Raises:
            TransientStoreError: If the listing failed
        """
        pass


class StoreDeployer(Deployer):
    """Deployer that upserts manifests into the resource store."""

    def __init__(self, store):
        self.store = store

    async def deploy(self, resource: DesiredResource, log: Log) -> None:
        try:
            await self._apply(resource, log)
        except DeployError:
            raise
        except HubError as e:
            raise DeployError(
                f"Failed to deploy: {e.message}",
                resource.kind,
                resource.namespace,
                resource.name,
            ) from e

    async def _apply(self, resource: DesiredResource, log: Log) -> None:
        try:
            existing = await self.store.get_object(
                resource.kind, resource.namespace, resource.name
            )
        except NotFoundError:
            try:
                await self.store.create_object(
                    resource.kind,
                    resource.namespace,
                    resource.name,
                    body=resource.body,
                    api_version=resource.api_version,
                    owner_references=resource.owner_references,
                )
                log.info(f"Created {resource.describe()}")
                return
            except AlreadyExistsError:
                log.debug(f"{resource.describe()} appeared concurrently, updating")
                existing = await self.store.get_object(
                    resource.kind, resource.namespace, resource.name
                )

        check_controller(resource, existing)

        await self.store.update_object(
            resource.kind,
            resource.namespace,
            resource.name,
            body=resource.body,
            api_version=resource.api_version,
            owner_references=resource.owner_references,
        )
        log.debug(f"Applied {resource.describe()}")


def check_controller(resource: DesiredResource, existing: Dict[str, Any]) -> None:
    """
    Refuse to take over an object already controlled by a different owner.

    Raises:
        DeployError: If the stored controller differs from the manifest's
    """
    current = controller_of(
        [OwnerReference.from_dict(r) for r in existing.get("owner_references") or []]
    )
    desired = controller_of(resource.owner_references)
    if current is None or desired is None or current.uid == desired.uid:
        return
    raise DeployError(
        f"{resource.describe()} is already controlled by {current.kind} {current.name}",
        resource.kind,
        resource.namespace,
        resource.name,
    )


def desired_replicas(obj: Dict[str, Any]) -> int:
    spec = (obj.get("body") or {}).get("spec") or {}
    replicas = spec.get("replicas")
    return 1 if replicas is None else int(replicas)


def deployment_ready(obj: Dict[str, Any]) -> bool:
    """
    A deployment is ready when enough replicas report ready and none are
    unavailable.
    """
    status = obj.get("status") or {}
    if (status.get("unavailableReplicas") or 0) > 0:
        return False
    return (status.get("readyReplicas") or 0) >= desired_replicas(obj)


class DeploymentLister(Lister):
    """Lister backed by the Deployment objects in the resource store."""

    def __init__(self, store):
        self.store = store

    async def list_children(self, namespace: str) -> Tuple[bool, List[DeploymentStatus]]:
        deployments = await self.store.list_objects(DEPLOYMENT_KIND, namespace)

        ready = True
        statuses = []
        for deploy in deployments:
            if not deployment_ready(deploy):
                ready = False
            statuses.append(
                DeploymentStatus(name=deploy["name"], status=deploy.get("status") or {})
            )
        return ready, statuses
