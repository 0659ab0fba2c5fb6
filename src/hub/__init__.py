"""
Hub reconciliation core.

This package holds the Hub types, the error taxonomy, the credential
provisioner, the renderer/deployer/lister collaborators, the status
aggregator and the reconciler that ties them together.
"""

from hub.base import (
    DeploymentStatus,
    DesiredResource,
    HubPhase,
    HubResource,
    HubStatus,
    ObjectKey,
    OwnerReference,
    ReconcileResult,
)
from hub.credentials import Credential, CredentialProvisioner, generate_password
from hub.deploying import DeploymentLister, StoreDeployer
from hub.errors import (
    AlreadyExistsError,
    DeployError,
    HubError,
    NotFoundError,
    RenderError,
    StatusPersistError,
    TransientStoreError,
)
from hub.reconciler import HubReconciler
from hub.rendering import TemplateRenderer
from hub.status import StatusAggregator

__all__ = [
    "AlreadyExistsError",
    "Credential",
    "CredentialProvisioner",
    "DeployError",
    "DeploymentLister",
    "DeploymentStatus",
    "DesiredResource",
    "HubError",
    "HubPhase",
    "HubReconciler",
    "HubResource",
    "HubStatus",
    "NotFoundError",
    "ObjectKey",
    "OwnerReference",
    "ReconcileResult",
    "RenderError",
    "StatusAggregator",
    "StatusPersistError",
    "StoreDeployer",
    "TemplateRenderer",
    "TransientStoreError",
    "generate_password",
]
