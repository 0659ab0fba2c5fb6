"""Status aggregation for Hub child deployments."""

import copy
from typing import List, Tuple

from hub.base import DeploymentStatus, HubPhase
from hub.deploying import Lister, Log
from hub.errors import HubError, TransientStoreError


def phase_for(ready: bool) -> HubPhase:
    return HubPhase.RUNNING if ready else HubPhase.FAILED


class StatusAggregator:
    """Computes the readiness verdict and per-deployment snapshot."""

    def __init__(self, lister: Lister):
        self.lister = lister

    async def compute_status(
        self, namespace: str, log: Log
    ) -> Tuple[bool, List[DeploymentStatus]]:
        """
        List child deployments in ``namespace`` and summarize them.

        Returns:
            ``(ready, deployments)`` where ready is the conjunction over all
            listed deployments and deployments keeps the listing order. The
            snapshots are copies; the listed objects are never modified.

        Raises:
            TransientStoreError: If listing failed
        """
        try:
            ready, listed = await self.lister.list_children(namespace)
        except TransientStoreError:
            raise
        except HubError as e:
            raise TransientStoreError(
                f"Failed to list deployments: {e.message}", "Deployment", namespace
            ) from e

        deployments = [
            DeploymentStatus(name=d.name, status=copy.deepcopy(d.status)) for d in listed
        ]

        if not ready:
            log.info(
                f"Not all deployments in {namespace} are ready "
                f"({len(deployments)} listed)"
            )
        return ready, deployments
