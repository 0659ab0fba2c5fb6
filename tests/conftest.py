"""Pytest configuration and fixtures."""

import copy
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from hub.base import (
    HUB_API_VERSION,
    HUB_KIND,
    HubResource,
    ObjectKey,
    OwnerReference,
    controller_of,
)
from hub.errors import AlreadyExistsError, NotFoundError


class FakeStore:
    """
    In-memory stand-in for ResourceStore with the same error behaviour.

    ``fail_on`` maps a method name to an exception raised on the next call.
    """

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.fail_on: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, Tuple]] = []

    def _maybe_fail(self, method: str, *args) -> None:
        self.calls.append((method, args))
        error = self.fail_on.pop(method, None)
        if error is not None:
            raise error

    @property
    def connected(self) -> bool:
        return True

    def add_hub(
        self, namespace: str = "ns", name: str = "foo", spec: Optional[Dict] = None
    ) -> Dict[str, Any]:
        return self._insert(
            HUB_KIND, namespace, name, spec or {}, HUB_API_VERSION, [], {}
        )

    def _insert(self, kind, namespace, name, body, api_version, owner_refs, status):
        obj = {
            "uid": str(uuid.uuid4()),
            "kind": kind,
            "namespace": namespace,
            "name": name,
            "api_version": api_version,
            "body": copy.deepcopy(body),
            "status": copy.deepcopy(status),
            "owner_references": [ref.to_dict() for ref in owner_refs],
            "owner_uid": controller_of(owner_refs).uid if controller_of(owner_refs) else None,
            "generation": 1,
            "resource_version": 1,
        }
        self.objects[(kind, namespace, name)] = obj
        return copy.deepcopy(obj)

    async def get_object(self, kind, namespace, name):
        self._maybe_fail("get_object", kind, namespace, name)
        obj = self.objects.get((kind, namespace, name))
        if obj is None:
            raise NotFoundError("object not found", kind, namespace, name)
        return copy.deepcopy(obj)

    async def create_object(
        self,
        kind,
        namespace,
        name,
        body=None,
        api_version="v1",
        owner_references: Optional[List[OwnerReference]] = None,
        status=None,
    ):
        self._maybe_fail("create_object", kind, namespace, name)
        if (kind, namespace, name) in self.objects:
            raise AlreadyExistsError("object already exists", kind, namespace, name)
        return self._insert(
            kind, namespace, name, body or {}, api_version, owner_references or [], status or {}
        )

    async def update_object(
        self, kind, namespace, name, body, api_version="v1", owner_references=None
    ):
        self._maybe_fail("update_object", kind, namespace, name)
        obj = self.objects.get((kind, namespace, name))
        if obj is None:
            raise NotFoundError("object not found", kind, namespace, name)
        owner_references = owner_references or []
        if obj["body"] != body:
            obj["generation"] += 1
        obj["body"] = copy.deepcopy(body)
        obj["api_version"] = api_version
        obj["owner_references"] = [ref.to_dict() for ref in owner_references]
        owner = controller_of(owner_references)
        obj["owner_uid"] = owner.uid if owner else None
        return copy.deepcopy(obj)

    async def update_status(self, kind, namespace, name, status):
        self._maybe_fail("update_status", kind, namespace, name)
        obj = self.objects.get((kind, namespace, name))
        if obj is None:
            raise NotFoundError("object not found", kind, namespace, name)
        obj["status"] = copy.deepcopy(status)
        return copy.deepcopy(obj)

    async def list_objects(self, kind, namespace=None, limit=1000):
        self._maybe_fail("list_objects", kind, namespace)
        found = [
            copy.deepcopy(obj)
            for (k, ns, _), obj in self.objects.items()
            if k == kind and (namespace is None or ns == namespace)
        ]
        return sorted(found, key=lambda o: (o["namespace"], o["name"]))[:limit]

    async def delete_object(self, kind, namespace, name):
        self._maybe_fail("delete_object", kind, namespace, name)
        obj = self.objects.pop((kind, namespace, name), None)
        if obj is None:
            return False
        self._cascade(obj["uid"])
        return True

    def _cascade(self, uid):
        owned = [key for key, obj in self.objects.items() if obj["owner_uid"] == uid]
        for key in owned:
            child = self.objects.pop(key)
            self._cascade(child["uid"])

    async def get_hub(self, key: ObjectKey) -> HubResource:
        obj = await self.get_object(HUB_KIND, key.namespace, key.name)
        return HubResource.from_object(obj)

    async def update_hub_status(self, hub: HubResource) -> HubResource:
        obj = await self.update_status(
            HUB_KIND, hub.namespace, hub.name, hub.status.to_dict()
        )
        return HubResource.from_object(obj)

    async def list_hub_keys(self):
        hubs = await self.list_objects(HUB_KIND)
        return [ObjectKey(h["namespace"], h["name"]) for h in hubs]


@pytest.fixture
def fake_store():
    """In-memory resource store."""
    return FakeStore()


@pytest.fixture
def log():
    """Request-scoped logger handle for core calls."""
    return logging.LoggerAdapter(logging.getLogger("tests"), {})


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def sample_hub():
    """Sample Hub resource for testing."""
    return HubResource(
        namespace="ns",
        name="foo",
        uid="11111111-2222-3333-4444-555555555555",
        spec={"imageRepository": "quay.io/example", "version": "1.0.0"},
    )


@pytest.fixture
def ready_status():
    """Live status of a fully available single-replica deployment."""
    return {"replicas": 1, "readyReplicas": 1, "availableReplicas": 1}
