"""
Hub spec validation.

Validates Hub specs against the JSON Schema (Draft 7, as used by OpenAPI
v3 / CRD structural schemas) that describes the fields the templates
consume.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

_REPLICAS = {"type": "integer", "minimum": 0}

# Image fields are substituted into templates as plain YAML scalars.
IMAGE_REF = r"[A-Za-z0-9._/:@-]*"
IMAGE_REF_PATTERN = f"^{IMAGE_REF}$"

# DNS-1123 subdomain, as used for object names and namespaces.
OBJECT_NAME = r"[a-z0-9]([-a-z0-9.]*[a-z0-9])?"

HUB_SPEC_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "version": {"type": "string", "pattern": IMAGE_REF_PATTERN},
        "imageRepository": {
            "type": "string",
            "minLength": 1,
            "pattern": IMAGE_REF_PATTERN,
        },
        "imageTagSuffix": {"type": "string", "pattern": IMAGE_REF_PATTERN},
        "imagePullPolicy": {
            "type": "string",
            "enum": ["Always", "IfNotPresent", "Never"],
        },
        "imagePullSecret": {"type": "string"},
        "nodeSelector": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
        "foundation": {
            "type": "object",
            "properties": {
                "apiserver": {
                    "type": "object",
                    "properties": {"replicas": _REPLICAS},
                },
                "controller": {
                    "type": "object",
                    "properties": {"replicas": _REPLICAS},
                },
            },
        },
        "mongo": {
            "type": "object",
            "properties": {
                "replicas": _REPLICAS,
                "storageClass": {"type": "string"},
            },
        },
    },
}


def validate_spec_against_schema(
    spec: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a spec against a JSON Schema.

    Args:
        spec: The specification to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message). All violations are reported,
        joined by "; ", each prefixed with its dotted path.
    """
    validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
    errors = sorted(
        validator.iter_errors(spec), key=lambda e: [str(p) for p in e.absolute_path]
    )

    if not errors:
        return True, None

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    return False, "; ".join(error_messages)


def validate_hub_spec(spec: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """Validate a Hub spec against HUB_SPEC_SCHEMA."""
    return validate_spec_against_schema(spec, HUB_SPEC_SCHEMA)
