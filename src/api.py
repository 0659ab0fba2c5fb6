"""
Status API - health probes and read-only Hub status.

A small FastAPI application served by uvicorn next to the controller. It
exposes liveness/readiness probes, the reported status of each Hub, and a
manual reconcile trigger.
"""

import logging
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from hub.base import HubResource, ObjectKey
from hub.errors import HubError, NotFoundError

logger = logging.getLogger(__name__)


class DeploymentStatusResponse(BaseModel):
    """Status of one child deployment."""

    name: str
    status: Dict[str, Any] = Field(default_factory=dict)


class HubResponse(BaseModel):
    """Response model for a Hub."""

    namespace: str
    name: str
    uid: str
    generation: int
    spec: Dict[str, Any] = Field(default_factory=dict)
    phase: Optional[str] = None
    deployments: List[DeploymentStatusResponse] = Field(default_factory=list)

    @classmethod
    def from_hub(cls, hub: HubResource) -> "HubResponse":
        return cls(
            namespace=hub.namespace,
            name=hub.name,
            uid=hub.uid,
            generation=hub.generation,
            spec=hub.spec,
            phase=hub.status.phase.value if hub.status.phase else None,
            deployments=[
                DeploymentStatusResponse(name=d.name, status=d.status)
                for d in hub.status.deployments
            ],
        )


class StatusAPI:
    """HTTP server exposing probes and Hub status."""

    def __init__(self, store, controller=None, host: str = "0.0.0.0", port: int = 8080):
        self.store = store
        self.controller = controller
        self.host = host
        self.port = port
        self.server: Optional[uvicorn.Server] = None
        self.app = FastAPI(
            title="Hub Operator API",
            description="Health probes and status for reconciled Hubs",
            version="0.1.0",
        )
        self._setup_routes()

    def _setup_routes(self) -> None:
        """
        Register routes:
        - GET /healthz
        - GET /readyz
        - GET /api/v1/hubs
        - GET /api/v1/namespaces/{namespace}/hubs/{name}
        - POST /api/v1/namespaces/{namespace}/hubs/{name}/reconcile
        """

        @self.app.get("/healthz")
        async def healthz():
            return {"status": "ok"}

        @self.app.get("/readyz")
        async def readyz():
            if not self.store.connected:
                raise HTTPException(status_code=503, detail="Store not connected")
            return {"status": "ready"}

        @self.app.get("/api/v1/hubs", response_model=List[HubResponse])
        async def list_hubs(namespace: Optional[str] = None):
            try:
                hubs = await self.store.list_objects("Hub", namespace)
            except HubError as e:
                logger.error(f"Error listing Hubs: {e}")
                raise HTTPException(status_code=503, detail=str(e))
            return [HubResponse.from_hub(HubResource.from_object(h)) for h in hubs]

        @self.app.get(
            "/api/v1/namespaces/{namespace}/hubs/{name}", response_model=HubResponse
        )
        async def get_hub(namespace: str, name: str):
            try:
                hub = await self.store.get_hub(ObjectKey(namespace, name))
            except NotFoundError:
                raise HTTPException(status_code=404, detail="Hub not found")
            except HubError as e:
                logger.error(f"Error getting Hub {namespace}/{name}: {e}")
                raise HTTPException(status_code=503, detail=str(e))
            return HubResponse.from_hub(hub)

        @self.app.post(
            "/api/v1/namespaces/{namespace}/hubs/{name}/reconcile", status_code=202
        )
        async def reconcile_hub(namespace: str, name: str):
            if self.controller is None:
                raise HTTPException(status_code=503, detail="Controller not running")
            key = ObjectKey(namespace, name)
            await self.controller.trigger_reconciliation(key)
            return {"message": "Reconciliation triggered", "hub": str(key)}

    async def start(self) -> None:
        """Serve until stop() is called."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info",
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting status API on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        logger.info("Stopping status API")
        if self.server:
            self.server.should_exit = True
