"""
Hub Reconciler - drives the store toward the state a Hub declares.

Each pass runs a fixed pipeline: fetch the Hub, ensure its credential,
render the child manifests, deploy them in order, then aggregate child
status and write it to the Hub's status subresource. Any failing step ends
the pass by raising; earlier side effects are kept and a later pass
converges.
"""

import logging
from typing import Optional

from hub.base import (
    HubResource,
    HubStatus,
    ObjectKey,
    ReconcileResult,
    request_logger,
    set_controller_reference,
)
from hub.credentials import CredentialProvisioner
from hub.deploying import Deployer, DeploymentLister, Log, StoreDeployer
from hub.errors import (
    DeployError,
    HubError,
    NotFoundError,
    RenderError,
    StatusPersistError,
)
from hub.rendering import Renderer, TemplateRenderer
from hub.status import StatusAggregator, phase_for

logger = logging.getLogger(__name__)


class HubReconciler:
    """Reconciles a single Hub per call."""

    def __init__(
        self,
        store,
        credentials: CredentialProvisioner,
        renderer: Renderer,
        deployer: Deployer,
        aggregator: StatusAggregator,
    ):
        self.store = store
        self.credentials = credentials
        self.renderer = renderer
        self.deployer = deployer
        self.aggregator = aggregator

    async def reconcile(
        self, key: ObjectKey, log: Optional[Log] = None
    ) -> ReconcileResult:
        """
        Run one reconciliation pass for the Hub identified by ``key``.

        Returns:
            ReconcileResult. A missing Hub is treated as deleted and
            returns the default (done) result.

        Raises:
            TransientStoreError: Fetch, credential or listing failed
            RenderError: Manifests could not be rendered
            DeployError: A manifest could not be applied
            StatusPersistError: The status write failed
        """
        log = log or request_logger(key, logger)
        log.info("Reconciling Hub")

        try:
            hub = await self.store.get_hub(key)
        except NotFoundError:
            # Owned objects are garbage-collected by the store.
            log.info("Hub resource not found. Ignoring since object must be deleted")
            return ReconcileResult()
        except HubError as e:
            log.error(f"Failed to get Hub: {e}")
            raise

        try:
            await self.credentials.ensure_credential(hub, log)
        except HubError as e:
            log.error(f"Failed to ensure credential: {e}")
            raise

        await self._deploy_all(hub, log)

        hub.status = await self._compute_status(hub, log)
        try:
            await self.store.update_hub_status(hub)
        except HubError as e:
            log.error(f"Failed to update {hub.key} status: {e}")
            raise StatusPersistError(
                f"Failed to update status: {e.message}", "Hub", hub.namespace, hub.name
            ) from e

        log.info(f"Reconciled Hub, phase {hub.status.phase.value}")
        return ReconcileResult()

    async def _deploy_all(self, hub: HubResource, log: Log) -> None:
        try:
            to_deploy = await self.renderer.render(hub)
        except RenderError as e:
            log.error(f"Failed to render Hub templates: {e}")
            raise
        except Exception as e:
            log.error(f"Failed to render Hub templates: {e}")
            raise RenderError(
                f"Failed to render templates: {e}", "Hub", hub.namespace, hub.name
            ) from e

        for res in to_deploy:
            try:
                set_controller_reference(hub, res)
            except ValueError as e:
                log.error(f"Failed to set controller reference: {e}")
                raise DeployError(str(e), res.kind, res.namespace, res.name) from e

            try:
                await self.deployer.deploy(res, log)
            except DeployError as e:
                log.error(f"Failed to deploy {res.describe()}: {e}")
                raise
            except HubError as e:
                log.error(f"Failed to deploy {res.describe()}: {e}")
                raise DeployError(e.message, res.kind, res.namespace, res.name) from e

    async def _compute_status(self, hub: HubResource, log: Log) -> HubStatus:
        # On failure the last persisted status is left as it was.
        try:
            ready, deployments = await self.aggregator.compute_status(hub.namespace, log)
        except HubError as e:
            log.error(f"Failed to list deployments in {hub.namespace}: {e}")
            raise

        return HubStatus(phase=phase_for(ready), deployments=deployments)


def build_reconciler(store, hub_config) -> HubReconciler:
    """Wire a HubReconciler with the store-backed collaborators."""
    return HubReconciler(
        store=store,
        credentials=CredentialProvisioner(
            store,
            secret_name=hub_config.credential_secret_name,
            user=hub_config.credential_user,
            password_length=hub_config.password_length,
        ),
        renderer=TemplateRenderer(
            templates_dir=hub_config.templates_dir,
            secret_name=hub_config.credential_secret_name,
        ),
        deployer=StoreDeployer(store),
        aggregator=StatusAggregator(DeploymentLister(store)),
    )
