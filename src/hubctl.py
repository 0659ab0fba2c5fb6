#!/usr/bin/env python3
"""
hubctl - command line client for the Hub operator store.

Provides a kubectl-like interface for creating Hubs, inspecting their
reported status and reporting live status of child objects.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Dict, Tuple

import click
import yaml
from tabulate import tabulate

from config import DatabaseConfig, HubConfig
from hub.base import HUB_API_VERSION, HUB_KIND, HubResource, ObjectKey
from hub.errors import HubError, NotFoundError
from hub.reconciler import build_reconciler
from store import ResourceStore
from validation import validate_hub_spec


@asynccontextmanager
async def open_store():
    """Connect to the store configured in the environment."""
    db_config = DatabaseConfig.from_env()
    store = ResourceStore(
        host=db_config.host,
        port=db_config.port,
        database=db_config.database,
        user=db_config.user,
        password=db_config.password,
        min_pool_size=1,
        max_pool_size=2,
    )
    await store.connect()
    try:
        yield store
    finally:
        await store.close()


def run_with_store(fn):
    """Run ``fn(store)`` in a fresh event loop, mapping errors to click errors."""

    async def runner():
        async with open_store() as store:
            return await fn(store)

    try:
        return asyncio.run(runner())
    except NotFoundError as e:
        raise click.ClickException(f"Not found: {e.target}")
    except HubError as e:
        raise click.ClickException(str(e))


def load_manifest(filename: str) -> Dict[str, Any]:
    """Read a YAML or JSON file into a dict."""
    with open(filename, "r") as f:
        if filename.endswith(".json"):
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise click.ClickException(f"{filename} does not contain a mapping")
    return data


def parse_hub_manifest(data: Dict[str, Any]) -> Tuple[ObjectKey, Dict[str, Any]]:
    """
    Extract the key and spec of a Hub manifest.

    Raises:
        click.ClickException: If the manifest is not a valid Hub
    """
    if data.get("kind") != HUB_KIND:
        raise click.ClickException(f"Expected kind {HUB_KIND}, got {data.get('kind')}")

    metadata = data.get("metadata") or {}
    name = metadata.get("name")
    if not name:
        raise click.ClickException("metadata.name is required")
    namespace = metadata.get("namespace") or "default"

    spec = data.get("spec") or {}
    is_valid, error = validate_hub_spec(spec)
    if not is_valid:
        raise click.ClickException(f"Invalid Hub spec: {error}")

    return ObjectKey(namespace=namespace, name=name), spec


def parse_key(value: str) -> ObjectKey:
    try:
        return ObjectKey.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


@click.group()
def cli():
    """hubctl - kubectl-like interface for Hub resources"""
    pass


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
def apply(filename):
    """Create or update a Hub from a YAML/JSON file"""
    key, spec = parse_hub_manifest(load_manifest(filename))

    async def do_apply(store: ResourceStore) -> str:
        try:
            await store.get_object(HUB_KIND, key.namespace, key.name)
        except NotFoundError:
            await store.create_object(
                HUB_KIND, key.namespace, key.name, body=spec, api_version=HUB_API_VERSION
            )
            return "created"
        await store.update_object(
            HUB_KIND, key.namespace, key.name, body=spec, api_version=HUB_API_VERSION
        )
        return "configured"

    action = run_with_store(do_apply)
    click.echo(f"hub/{key} {action}")


@cli.command()
@click.option("--namespace", "-n", default=None, help="Only list this namespace")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
def get(namespace, output):
    """List Hubs and their phase"""

    async def do_list(store: ResourceStore):
        return await store.list_objects(HUB_KIND, namespace)

    hubs = [HubResource.from_object(obj) for obj in run_with_store(do_list)]

    if output == "json":
        click.echo(json.dumps([hub_summary(h) for h in hubs], indent=2))
        return
    if output == "yaml":
        click.echo(yaml.safe_dump([hub_summary(h) for h in hubs], sort_keys=False))
        return

    if not hubs:
        click.echo("No Hubs found")
        return

    rows = [
        [
            h.namespace,
            h.name,
            h.status.phase.value if h.status.phase else "-",
            len(h.status.deployments),
            h.generation,
        ]
        for h in hubs
    ]
    click.echo(
        tabulate(
            rows,
            headers=["NAMESPACE", "NAME", "PHASE", "DEPLOYMENTS", "GENERATION"],
            tablefmt="plain",
        )
    )


def hub_summary(hub: HubResource) -> Dict[str, Any]:
    return {
        "namespace": hub.namespace,
        "name": hub.name,
        "uid": hub.uid,
        "generation": hub.generation,
        "spec": hub.spec,
        "status": hub.status.to_dict(),
    }


@cli.command()
@click.argument("key")
def describe(key):
    """Show a Hub and the status of its deployments (KEY is namespace/name)"""
    object_key = parse_key(key)

    async def do_get(store: ResourceStore) -> HubResource:
        return await store.get_hub(object_key)

    hub = run_with_store(do_get)

    click.echo(f"Name:        {hub.name}")
    click.echo(f"Namespace:   {hub.namespace}")
    click.echo(f"UID:         {hub.uid}")
    click.echo(f"Generation:  {hub.generation}")
    click.echo(f"Phase:       {hub.status.phase.value if hub.status.phase else '-'}")
    click.echo("Spec:")
    click.echo(yaml.safe_dump(hub.spec, sort_keys=False).rstrip() or "  {}")

    if not hub.status.deployments:
        click.echo("Deployments: <none>")
        return

    rows = [
        [
            d.name,
            d.status.get("readyReplicas", 0),
            d.status.get("availableReplicas", 0),
            d.status.get("unavailableReplicas", 0),
        ]
        for d in hub.status.deployments
    ]
    click.echo("Deployments:")
    click.echo(
        tabulate(rows, headers=["NAME", "READY", "AVAILABLE", "UNAVAILABLE"], tablefmt="plain")
    )


@cli.command()
@click.argument("key")
@click.option("--kind", default=HUB_KIND, show_default=True, help="Object kind")
@click.confirmation_option(prompt="Are you sure you want to delete this object?")
def delete(key, kind):
    """Delete an object and everything it owns (KEY is namespace/name)"""
    object_key = parse_key(key)

    async def do_delete(store: ResourceStore) -> bool:
        return await store.delete_object(kind, object_key.namespace, object_key.name)

    if run_with_store(do_delete):
        click.echo(f"{kind.lower()}/{object_key} deleted")
    else:
        raise click.ClickException(f"{kind} {object_key} not found")


@cli.command("set-status")
@click.argument("kind")
@click.argument("key")
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
def set_status(kind, key, filename):
    """Write the status subresource of an object from a YAML/JSON file"""
    object_key = parse_key(key)
    status = load_manifest(filename)

    async def do_set(store: ResourceStore):
        return await store.update_status(kind, object_key.namespace, object_key.name, status)

    run_with_store(do_set)
    click.echo(f"{kind.lower()}/{object_key} status updated")


@cli.command()
@click.argument("key")
def reconcile(key):
    """Run a single reconciliation pass for a Hub (KEY is namespace/name)"""
    object_key = parse_key(key)
    hub_config = HubConfig.from_env()

    async def do_reconcile(store: ResourceStore) -> HubResource:
        reconciler = build_reconciler(store, hub_config)
        await reconciler.reconcile(object_key)
        return await store.get_hub(object_key)

    hub = run_with_store(do_reconcile)
    phase = hub.status.phase.value if hub.status.phase else "-"
    click.echo(f"hub/{object_key} reconciled, phase {phase}")


if __name__ == "__main__":
    cli()
