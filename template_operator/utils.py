"""
Common utilities shared across components in the library
"""

# Standard
from datetime import datetime, timezone
from typing import Any, List, Optional
import copy

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("OPUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    If both the base and overrides have a key and both values are dicts, they
    are merged recursively. Otherwise the override value replaces the base
    value, so lists are replaced wholesale.

    Args:
        base:  dict
            The base config that will be updated with the overrides
        overrides:  dict
            The override config

    Returns:
        merged:  dict
            The merged results of overrides merged onto base
    """
    for key, value in overrides.items():
        if (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)
    return base


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to search
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} is not a dict"
            )
    return dct.get(parts[-1], dflt)


## Time ########################################################################


def now_timestamp() -> str:
    """Current UTC time formatted the way the store formats timestamps"""
    return datetime.now(timezone.utc).strftime(constants.TIMESTAMP_FORMAT)


## Manifests ###################################################################


def resource_identifiers(resource_definition: dict) -> str:
    """Human readable identity of a manifest for logs and error messages"""
    metadata = resource_definition.get("metadata") or {}
    return "{}/{}/{}/{}".format(  # pylint: disable=consider-using-f-string
        metadata.get("namespace") or "",
        resource_definition.get("apiVersion"),
        resource_definition.get("kind"),
        metadata.get("name"),
    )


def metadata_manifest(
    resource_definition: dict,
    finalizers: List[str],
    resource_version: Optional[str] = None,
) -> dict:
    """Build a manifest scoped to the identity and finalizers of the given
    resource. Applying it touches nothing else on the object.
    """
    metadata = resource_definition.get("metadata", {})
    manifest = {
        "apiVersion": resource_definition.get("apiVersion"),
        "kind": resource_definition.get("kind"),
        "metadata": {
            "name": metadata.get("name"),
            "finalizers": list(finalizers),
        },
    }
    if metadata.get("namespace"):
        manifest["metadata"]["namespace"] = metadata["namespace"]
    if resource_version:
        manifest["metadata"]["resourceVersion"] = resource_version
    return manifest


def add_finalizer_manifest(resource_definition: dict, finalizer: str) -> dict:
    """Manifest that adds the finalizer while keeping any others in place"""
    finalizers = copy.copy(
        resource_definition.get("metadata", {}).get("finalizers") or []
    )
    if finalizer not in finalizers:
        log.debug("Adding finalizer: %s", finalizer)
        finalizers.append(finalizer)
    return metadata_manifest(
        resource_definition,
        finalizers,
        resource_definition.get("metadata", {}).get("resourceVersion"),
    )


def remove_finalizer_manifest(resource_definition: dict, finalizer: str) -> dict:
    """Manifest that removes the finalizer while keeping any others in place"""
    log.debug("Removing finalizer: %s", finalizer)
    finalizers = [
        name
        for name in resource_definition.get("metadata", {}).get("finalizers") or []
        if name != finalizer
    ]
    return metadata_manifest(
        resource_definition,
        finalizers,
        resource_definition.get("metadata", {}).get("resourceVersion"),
    )
