"""
Resource Store - PostgreSQL-backed desired-state store.

Stores every object the operator reads or writes (Hubs, Secrets,
Deployments, Services, ...) keyed by kind, namespace and name. Each object
has a desired ``body``, a separately written ``status`` subresource and
owner references. Deleting an owner cascades to the objects it controls.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Set

import asyncpg

from events import EventBus, ObjectEvent
from hub.base import (
    HUB_KIND,
    HubResource,
    ObjectKey,
    OwnerReference,
    controller_of,
)
from hub.errors import (
    AlreadyExistsError,
    HubError,
    NotFoundError,
    TransientStoreError,
)
from migrate import run_migrations

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = "hub_objects"


class ResourceStore:
    """Manages PostgreSQL operations for the operator's objects."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None
        self._listen_conn: Optional[asyncpg.Connection] = None
        self._event_bus: Optional[EventBus] = None
        self._publish_tasks: Set[asyncio.Task] = set()

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Stop listening and close the connection pool."""
        await self.unlisten()
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Closed PostgreSQL connection")

    @property
    def connected(self) -> bool:
        return self.pool is not None

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Store not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Store schema initialized")

    @asynccontextmanager
    async def _connection(
        self,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
    ) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a pooled connection and translate driver errors.

        Unique violations become AlreadyExistsError; any other driver or
        connection failure becomes TransientStoreError.
        """
        self._ensure_connected()
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except HubError:
            raise
        except asyncpg.UniqueViolationError as e:
            raise AlreadyExistsError(
                "object already exists", kind, namespace, name
            ) from e
        except (
            asyncpg.PostgresError,
            asyncpg.InterfaceError,
            OSError,
            asyncio.TimeoutError,
        ) as e:
            raise TransientStoreError(
                f"store operation failed: {e}", kind, namespace, name
            ) from e

    # ==================== Generic Object Methods ====================

    async def get_object(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        """
        Get an object by kind, namespace and name.

        Raises:
            NotFoundError: If no such object exists
            TransientStoreError: If the lookup itself failed
        """
        async with self._connection(kind, namespace, name) as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM objects
                WHERE kind = $1 AND namespace = $2 AND name = $3
                """,
                kind,
                namespace,
                name,
            )
        if not row:
            raise NotFoundError("object not found", kind, namespace, name)
        return self._parse_object_row(row)

    async def create_object(
        self,
        kind: str,
        namespace: str,
        name: str,
        body: Optional[Dict[str, Any]] = None,
        api_version: str = "v1",
        owner_references: Optional[List[OwnerReference]] = None,
        status: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a new object.

        The controlling owner reference, if present, is also recorded as
        ``owner_uid`` so that deleting the owner deletes this object.

        Raises:
            AlreadyExistsError: If the object already exists
            TransientStoreError: On any other failure
        """
        if body is None:
            body = {}
        if owner_references is None:
            owner_references = []
        if status is None:
            status = {}

        owner = controller_of(owner_references)

        async with self._connection(kind, namespace, name) as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO objects (
                    kind, namespace, name, api_version,
                    body, status, owner_references, owner_uid
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING *
                """,
                kind,
                namespace,
                name,
                api_version,
                json.dumps(body),
                json.dumps(status),
                json.dumps([ref.to_dict() for ref in owner_references]),
                owner.uid if owner else None,
            )

        logger.info(f"Created {kind} {namespace}/{name}")
        return self._parse_object_row(row)

    async def update_object(
        self,
        kind: str,
        namespace: str,
        name: str,
        body: Dict[str, Any],
        api_version: str = "v1",
        owner_references: Optional[List[OwnerReference]] = None,
    ) -> Dict[str, Any]:
        """
        Replace an object's body and owner references.

        The status subresource is left untouched. The generation is bumped
        only when the body changes; nothing is written when neither body
        nor owners differ.

        Raises:
            NotFoundError: If the object does not exist
            TransientStoreError: On any other failure
        """
        if owner_references is None:
            owner_references = []

        owner = controller_of(owner_references)
        body_json = json.dumps(body)
        owners_json = json.dumps([ref.to_dict() for ref in owner_references])

        async with self._connection(kind, namespace, name) as conn:
            row = await conn.fetchrow(
                """
                UPDATE objects
                SET generation = CASE
                        WHEN body = $4::jsonb THEN generation
                        ELSE generation + 1
                    END,
                    body = $4::jsonb,
                    api_version = $5,
                    owner_references = $6::jsonb,
                    owner_uid = $7,
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE kind = $1 AND namespace = $2 AND name = $3
                  AND (
                    body IS DISTINCT FROM $4::jsonb
                    OR api_version IS DISTINCT FROM $5
                    OR owner_references IS DISTINCT FROM $6::jsonb
                  )
                RETURNING *
                """,
                kind,
                namespace,
                name,
                body_json,
                api_version,
                owners_json,
                owner.uid if owner else None,
            )

        if row is None:
            # Either unchanged or missing; get_object tells them apart.
            return await self.get_object(kind, namespace, name)

        logger.info(f"Updated {kind} {namespace}/{name}")
        return self._parse_object_row(row)

    async def update_status(
        self, kind: str, namespace: str, name: str, status: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Write the status subresource of an object.

        The body is never modified here. Nothing is written if the status
        is unchanged.

        Raises:
            NotFoundError: If the object does not exist
            TransientStoreError: On any other failure
        """
        status_json = json.dumps(status)

        async with self._connection(kind, namespace, name) as conn:
            row = await conn.fetchrow(
                """
                UPDATE objects
                SET status = $4::jsonb,
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE kind = $1 AND namespace = $2 AND name = $3
                  AND status IS DISTINCT FROM $4::jsonb
                RETURNING *
                """,
                kind,
                namespace,
                name,
                status_json,
            )

        if row is None:
            return await self.get_object(kind, namespace, name)

        logger.debug(f"Updated status of {kind} {namespace}/{name}")
        return self._parse_object_row(row)

    async def list_objects(
        self, kind: str, namespace: Optional[str] = None, limit: int = 1000
    ) -> List[Dict[str, Any]]:
        """List objects of a kind, optionally within one namespace, ordered by name."""
        async with self._connection(kind, namespace) as conn:
            query = "SELECT * FROM objects WHERE kind = $1"
            params: List[Any] = [kind]
            param_count = 1

            if namespace is not None:
                param_count += 1
                query += f" AND namespace = ${param_count}"
                params.append(namespace)

            param_count += 1
            query += f" ORDER BY namespace, name LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
        return [self._parse_object_row(row) for row in rows]

    async def delete_object(self, kind: str, namespace: str, name: str) -> bool:
        """
        Delete an object and, through ``owner_uid``, everything it controls.

        Returns:
            True if the object existed and was deleted
        """
        async with self._connection(kind, namespace, name) as conn:
            uid = await conn.fetchval(
                """
                DELETE FROM objects
                WHERE kind = $1 AND namespace = $2 AND name = $3
                RETURNING uid
                """,
                kind,
                namespace,
                name,
            )
        if uid:
            logger.info(f"Deleted {kind} {namespace}/{name}")
            return True
        return False

    # ==================== Hub Methods ====================

    async def get_hub(self, key: ObjectKey) -> HubResource:
        """Get a Hub by key. Raises NotFoundError if it does not exist."""
        obj = await self.get_object(HUB_KIND, key.namespace, key.name)
        return HubResource.from_object(obj)

    async def update_hub_status(self, hub: HubResource) -> HubResource:
        """Persist ``hub.status`` through the status subresource."""
        obj = await self.update_status(
            HUB_KIND, hub.namespace, hub.name, hub.status.to_dict()
        )
        return HubResource.from_object(obj)

    async def list_hub_keys(self) -> List[ObjectKey]:
        """Return the keys of every Hub in the store."""
        hubs = await self.list_objects(HUB_KIND)
        return [ObjectKey(namespace=h["namespace"], name=h["name"]) for h in hubs]

    # ==================== Change Notifications ====================

    async def listen(self, event_bus: EventBus) -> None:
        """
        Forward change notifications from PostgreSQL to ``event_bus``.

        Holds one pooled connection for LISTEN until unlisten() is called.
        """
        self._ensure_connected()
        if self._listen_conn is not None:
            return
        self._event_bus = event_bus
        self._listen_conn = await self.pool.acquire()
        await self._listen_conn.add_listener(NOTIFY_CHANNEL, self._on_notification)
        logger.info(f"Listening for object changes on channel '{NOTIFY_CHANNEL}'")

    async def unlisten(self) -> None:
        """Stop forwarding change notifications."""
        if self._listen_conn is None:
            return
        try:
            await self._listen_conn.remove_listener(
                NOTIFY_CHANNEL, self._on_notification
            )
        finally:
            await self.pool.release(self._listen_conn)
            self._listen_conn = None
            self._event_bus = None

    def _on_notification(
        self, conn: asyncpg.Connection, pid: int, channel: str, payload: str
    ) -> None:
        """asyncpg listener callback; parses the payload and publishes it."""
        if self._event_bus is None:
            return
        try:
            event = ObjectEvent.from_notification(payload)
        except (ValueError, KeyError) as e:
            logger.warning(f"Ignoring malformed notification on {channel}: {e}")
            return
        task = asyncio.get_running_loop().create_task(self._event_bus.publish(event))
        self._publish_tasks.add(task)
        task.add_done_callback(self._publish_tasks.discard)

    def _parse_object_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """
        Parse an objects row, converting JSON fields.

        asyncpg returns JSONB columns as strings unless a codec is set, so
        body, status and owner_references are decoded here. The uid is
        returned as a string.
        """
        result = dict(row)
        for column, empty in (("body", dict), ("status", dict), ("owner_references", list)):
            value = result.get(column)
            if isinstance(value, str):
                result[column] = json.loads(value)
            elif value is None:
                result[column] = empty()
        result["uid"] = str(result["uid"])
        if result.get("owner_uid") is not None:
            result["owner_uid"] = str(result["owner_uid"])
        return result
