"""
Template rendering for Hub child resources.

Templates are YAML files (optionally holding several documents) with
``${placeholder}`` substitutions, rendered in file-name order. The values
come from the Hub's identity and spec.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from string import Template
from typing import Any, Dict, List, Optional

import yaml

from hub.base import DesiredResource, HubResource
from hub.credentials import DEFAULT_SECRET_NAME
from hub.errors import RenderError
from validation import IMAGE_REF, OBJECT_NAME, validate_hub_spec

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

DEFAULT_IMAGE_REPOSITORY = "quay.io/open-cluster-management"
DEFAULT_PULL_POLICY = "IfNotPresent"
DEFAULT_VERSION = "latest"


class Renderer(ABC):
    """Produces the ordered set of desired child manifests for a Hub."""

    @abstractmethod
    async def render(self, hub: HubResource) -> List[DesiredResource]:
        """
        Render manifests for ``hub``.

        Raises:
            RenderError: If manifests cannot be produced
        """
        pass


def template_values(hub: HubResource, secret_name: str) -> Dict[str, str]:
    """Build the substitution mapping for a Hub."""
    spec = hub.spec
    foundation = spec.get("foundation") or {}
    mongo = spec.get("mongo") or {}

    def replicas(section: Dict[str, Any]) -> str:
        return str(section.get("replicas", 1))

    tag = spec.get("version", DEFAULT_VERSION) + spec.get("imageTagSuffix", "")

    return {
        "namespace": hub.namespace,
        "name": hub.name,
        "imageRepository": spec.get("imageRepository", DEFAULT_IMAGE_REPOSITORY),
        "imageTag": tag,
        "imagePullPolicy": spec.get("imagePullPolicy", DEFAULT_PULL_POLICY),
        # JSON is valid YAML flow syntax, so these embed as-is.
        "imagePullSecrets": json.dumps(
            [{"name": spec["imagePullSecret"]}] if spec.get("imagePullSecret") else []
        ),
        "nodeSelector": json.dumps(spec.get("nodeSelector") or {}),
        "apiserverReplicas": replicas(foundation.get("apiserver") or {}),
        "controllerReplicas": replicas(foundation.get("controller") or {}),
        "mongoReplicas": replicas(mongo),
        "credentialSecret": secret_name,
    }


def require_match(pattern: str, value: str, what: str, hub: HubResource) -> None:
    """Values are pasted into YAML text, so they must be plain scalars."""
    if not re.fullmatch(pattern, value):
        raise RenderError(f"Invalid {what} {value!r}", "Hub", hub.namespace, hub.name)


class TemplateRenderer(Renderer):
    """Renders ``*.yaml`` templates from a directory."""

    def __init__(
        self,
        templates_dir: Optional[Path] = None,
        secret_name: str = DEFAULT_SECRET_NAME,
    ):
        self.templates_dir = Path(templates_dir) if templates_dir else TEMPLATES_DIR
        self.secret_name = secret_name

    def template_files(self) -> List[Path]:
        if not self.templates_dir.is_dir():
            raise RenderError(f"Templates directory not found: {self.templates_dir}")
        return sorted(p for p in self.templates_dir.glob("*.yaml") if p.is_file())

    async def render(self, hub: HubResource) -> List[DesiredResource]:
        is_valid, error = validate_hub_spec(hub.spec)
        if not is_valid:
            raise RenderError(f"Invalid Hub spec: {error}", "Hub", hub.namespace, hub.name)

        require_match(OBJECT_NAME, hub.namespace, "namespace", hub)
        require_match(OBJECT_NAME, hub.name, "name", hub)

        values = template_values(hub, self.secret_name)
        require_match(IMAGE_REF, values["imageRepository"], "imageRepository", hub)
        require_match(IMAGE_REF, values["imageTag"], "image tag", hub)

        resources: List[DesiredResource] = []
        for path in self.template_files():
            resources.extend(self._render_file(path, hub, values))

        logger.debug(f"Rendered {len(resources)} manifests for Hub {hub.key}")
        return resources

    def _render_file(
        self, path: Path, hub: HubResource, values: Dict[str, str]
    ) -> List[DesiredResource]:
        try:
            text = Template(path.read_text(encoding="utf-8")).substitute(values)
        except KeyError as e:
            raise RenderError(f"Unknown placeholder {e} in template {path.name}") from e
        except ValueError as e:
            raise RenderError(f"Malformed placeholder in template {path.name}: {e}") from e

        try:
            documents = [doc for doc in yaml.safe_load_all(text) if doc]
        except yaml.YAMLError as e:
            raise RenderError(f"Template {path.name} is not valid YAML: {e}") from e

        return [self._to_resource(doc, path, hub) for doc in documents]

    def _to_resource(
        self, doc: Any, path: Path, hub: HubResource
    ) -> DesiredResource:
        if not isinstance(doc, dict):
            raise RenderError(f"Template {path.name} produced a non-mapping document")

        metadata = doc.get("metadata") or {}
        kind = doc.get("kind")
        name = metadata.get("name")
        if not kind or not name:
            raise RenderError(
                f"Template {path.name} produced a document without kind or metadata.name"
            )

        body = {
            k: v for k, v in doc.items() if k not in ("apiVersion", "kind", "metadata")
        }
        extra_metadata = {k: v for k, v in metadata.items() if k not in ("name", "namespace")}
        if extra_metadata:
            body["metadata"] = extra_metadata

        return DesiredResource(
            kind=kind,
            namespace=metadata.get("namespace") or hub.namespace,
            name=name,
            api_version=doc.get("apiVersion", "v1"),
            body=body,
        )
