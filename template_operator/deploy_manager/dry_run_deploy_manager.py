"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from threading import RLock
from typing import Dict, List, Optional, Set
import copy
import itertools
import uuid

# First Party
import alog

# Local
from ..exceptions import ConflictError, NotFoundError, StoreError
from ..utils import merge_configs, now_timestamp, resource_identifiers
from .base import DeployManagerBase

log = alog.use_channel("DRY-RUN")

# Fields owned by the store itself which apply never overwrites
_STORE_OWNED_METADATA = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "deletionTimestamp",
)


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy! All objects live in a nested
    map keyed by namespace, kind, apiVersion and name.
    """

    def __init__(
        self,
        resources: Optional[List[dict]] = None,
        strict_resource_version: bool = True,
    ):
        """Construct with an optional set of objects that already exist

        Args:
            resources:  Optional[List[dict]]
                Objects to load into the store as-is
            strict_resource_version:  bool
                If true, writes that carry a resourceVersion which does not
                match the stored object are rejected with a ConflictError
        """
        self.strict_resource_version = strict_resource_version
        self._cluster_content = {}
        self._events = []
        self._field_managers: Dict[tuple, Set[str]] = {}
        self._version_counter = itertools.count(1)
        self._lock = RLock()

        for resource in resources or []:
            self._load(copy.deepcopy(resource))

    ## Interface ###############################################################

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        with self._lock:
            matches = [
                entries[name]
                for api_ver, entries in self._cluster_content.get(namespace, {})
                .get(kind, {})
                .items()
                if name in entries and api_version in (None, api_ver)
            ]
            log.debug3(
                "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
            )
            if len(matches) == 1:
                return copy.deepcopy(matches[0])
            return None

    def filter_objects_current_state(self, kind, namespace=None, api_version=None):
        log.debug(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        matches = []
        with self._lock:
            for ns_name, ns_entries in self._cluster_content.items():
                if namespace is not None and ns_name != namespace:
                    continue
                for api_ver, entries in ns_entries.get(kind, {}).items():
                    if api_version not in (None, api_ver):
                        continue
                    matches.extend(copy.deepcopy(list(entries.values())))
        return matches

    def apply(
        self,
        resource_definition,
        field_manager,
        force_conflicts=True,
        dry_run=False,
    ):
        api_version, kind, name, namespace = self._identifiers(resource_definition)
        log.debug(
            "DRY RUN apply [%s] as [%s] (dry_run=%s)",
            resource_identifiers(resource_definition),
            field_manager,
            dry_run,
        )
        log.debug4(resource_definition)

        applied = copy.deepcopy(resource_definition)
        applied.pop("status", None)
        applied_metadata = applied.setdefault("metadata", {})
        requested_version = applied_metadata.get("resourceVersion")
        for field in _STORE_OWNED_METADATA:
            applied_metadata.pop(field, None)

        with self._lock:
            current = self._get_entry(namespace, kind, api_version, name)
            self._check_resource_version(current, requested_version)

            updated = merge_configs(copy.deepcopy(current or {}), applied)
            if current is None:
                updated["metadata"]["uid"] = str(uuid.uuid4())
                updated["metadata"]["creationTimestamp"] = now_timestamp()
                updated["metadata"]["generation"] = 1
                updated["metadata"]["resourceVersion"] = self._next_version()
            elif updated != current:
                if updated.get("spec") != current.get("spec"):
                    updated["metadata"]["generation"] = (
                        current["metadata"].get("generation", 0) + 1
                    )
                updated["metadata"]["resourceVersion"] = self._next_version()
            else:
                log.debug2("No change for [%s]", resource_identifiers(updated))

            if dry_run:
                return copy.deepcopy(updated)

            self._set_entry(namespace, kind, api_version, name, updated)
            self._field_managers.setdefault(
                (namespace, kind, api_version, name), set()
            ).add(field_manager)
            self._collect_if_released(namespace, kind, api_version, name)
            return copy.deepcopy(updated)

    def delete(self, resource_definition):
        api_version, kind, name, namespace = self._identifiers(resource_definition)
        log.debug("DRY RUN delete [%s]", resource_identifiers(resource_definition))
        with self._lock:
            current = self._get_entry(namespace, kind, api_version, name)
            if current is None:
                raise NotFoundError(
                    f"Object [{resource_identifiers(resource_definition)}] not found"
                )

            # Objects with finalizers are only marked for deletion
            if current.get("metadata", {}).get("finalizers"):
                if not current["metadata"].get("deletionTimestamp"):
                    current["metadata"]["deletionTimestamp"] = now_timestamp()
                    current["metadata"]["resourceVersion"] = self._next_version()
                log.debug2(
                    "Marked [%s] for deletion pending finalizers %s",
                    resource_identifiers(current),
                    current["metadata"]["finalizers"],
                )
                return
            self._delete_key(namespace, kind, api_version, name)

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
        field_manager=None,
        resource_version=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN set_status of [%s.%s/%s] in %s: %s",
            api_version,
            kind,
            name,
            namespace,
            status,
        )
        with self._lock:
            current = self.get_object_current_state(kind, name, namespace, api_version)
            if current is None:
                raise NotFoundError(f"Object [{kind}/{name}] not found in {namespace}")
            self._check_resource_version(current, resource_version)

            if current.get("status") != status:
                current["status"] = copy.deepcopy(status)
                current["metadata"]["resourceVersion"] = self._next_version()
                self._set_entry(
                    namespace, kind, current.get("apiVersion"), name, current
                )
            if field_manager:
                self._field_managers.setdefault(
                    (namespace, kind, current.get("apiVersion"), name), set()
                ).add(field_manager)
            return copy.deepcopy(current)

    def create_event(self, event):
        log.debug2(
            "DRY RUN event [%s] %s: %s",
            event.get("type"),
            event.get("reason"),
            event.get("message"),
        )
        with self._lock:
            self._events.append(copy.deepcopy(event))

    ## Dry Run Methods #########################################################

    def get_events(self, name: Optional[str] = None) -> List[dict]:
        """Get all recorded events, optionally only those about the object with
        the given name
        """
        with self._lock:
            return [
                copy.deepcopy(event)
                for event in self._events
                if name is None or event.get("involvedObject", {}).get("name") == name
            ]

    def get_field_managers(
        self, kind, name, namespace=None, api_version=None
    ) -> Set[str]:
        """Get the set of field managers that have written to an object"""
        with self._lock:
            for (ns_name, kind_name, api_ver, obj_name), managers in (
                self._field_managers.items()
            ):
                if (ns_name, kind_name, obj_name) == (namespace, kind, name) and (
                    api_version in (None, api_ver)
                ):
                    return set(managers)
        return set()

    ## Implementation Details ##################################################

    @staticmethod
    def _identifiers(resource_definition):
        metadata = resource_definition.get("metadata") or {}
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = metadata.get("name")
        if None in [api_version, kind, name]:
            raise StoreError(
                "Cannot operate on resource without apiVersion, kind, and name"
            )
        return api_version, kind, name, metadata.get("namespace")

    def _next_version(self) -> str:
        return str(next(self._version_counter))

    def _check_resource_version(self, current, requested_version):
        if not (self.strict_resource_version and requested_version):
            return
        current_version = (current or {}).get("metadata", {}).get("resourceVersion")
        if current_version != requested_version:
            log.debug(
                "Rejecting stale write: requested [%s], current [%s]",
                requested_version,
                current_version,
            )
            raise ConflictError(
                "the object has been modified; please apply your changes to the "
                "latest version and try again"
            )

    def _get_entry(self, namespace, kind, api_version, name) -> Optional[dict]:
        return (
            self._cluster_content.get(namespace, {})
            .get(kind, {})
            .get(api_version, {})
            .get(name)
        )

    def _set_entry(self, namespace, kind, api_version, name, content):
        self._cluster_content.setdefault(namespace, {}).setdefault(
            kind, {}
        ).setdefault(api_version, {})[name] = content

    def _load(self, resource):
        api_version, kind, name, namespace = self._identifiers(resource)
        metadata = resource["metadata"]
        metadata.setdefault("uid", str(uuid.uuid4()))
        metadata.setdefault("creationTimestamp", now_timestamp())
        metadata.setdefault("generation", 1)
        metadata.setdefault("resourceVersion", self._next_version())
        self._set_entry(namespace, kind, api_version, name, resource)

    def _collect_if_released(self, namespace, kind, api_version, name):
        """Remove an object that is marked for deletion and has no finalizers
        left
        """
        metadata = self._get_entry(namespace, kind, api_version, name)["metadata"]
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            log.debug2("Finalizers released for [%s/%s], removing", kind, name)
            self._delete_key(namespace, kind, api_version, name)

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        self._field_managers.pop((namespace, kind, api_version, name), None)
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]
